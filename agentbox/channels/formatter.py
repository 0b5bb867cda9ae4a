"""
消息格式化 - 把 Agent 的 Markdown 回复转换为各渠道的标记方言。

- slack: Markdown -> Slack mrkdwn（代码块和行内代码先保护起来，不参与替换）
- teams / webhook / 其他: 原样返回

format_for_channel() 是纯函数：输出只取决于文本和渠道类型。
"""

import re

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_PLACEHOLDER_RE = re.compile(r"\x00(BLOCK|INLINE)(\d+)\x00")


def format_for_slack(text: str) -> str:
    """
    Markdown -> Slack mrkdwn。

    - **粗体** -> *粗体*
    - ~~删除线~~ -> ~删除线~
    - [文本](url) -> <url|文本>
    - # 标题 -> *标题*
    - 代码块去掉语言标识，内容保持不变
    """
    blocks: list[str] = []
    inline: list[str] = []

    def stash_block(m: re.Match) -> str:
        blocks.append(m.group(0))
        return f"\x00BLOCK{len(blocks) - 1}\x00"

    def stash_inline(m: re.Match) -> str:
        inline.append(m.group(0))
        return f"\x00INLINE{len(inline) - 1}\x00"

    result = _CODE_BLOCK_RE.sub(stash_block, text)
    result = _INLINE_CODE_RE.sub(stash_inline, result)

    result = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"<\2|\1>", result)
    result = re.sub(r"^#{1,6}\s+(.+)$", r"*\1*", result, flags=re.MULTILINE)
    result = re.sub(r"\*\*(.+?)\*\*", r"*\1*", result)
    result = re.sub(r"~~(.+?)~~", r"~\1~", result)

    def restore(m: re.Match) -> str:
        kind, idx = m.group(1), int(m.group(2))
        if kind == "INLINE":
            return inline[idx]
        return re.sub(r"^```\w*\n", "```\n", blocks[idx])

    return _PLACEHOLDER_RE.sub(restore, result)


def format_for_channel(text: str, channel_type: str) -> str:
    if channel_type == "slack":
        return format_for_slack(text)
    return text
