"""
渠道消息类型定义模块 - 定义渠道层中传输的数据结构。

本模块定义了三个核心数据类：
- ChannelMessage：出站消息（从 Agent 到渠道）
- InboundMessage：入站消息（从渠道到 Agent）
- WebhookRequest：平台推送过来的原始 HTTP 请求（HTTP 层之外的最小抽象）

所有适配器都通过这几个统一的数据结构与路由层通信，实现了渠道与 Agent 的解耦。

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- field(default_factory=...) 等价于 Java 中在构造器里 new HashMap<>()
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChannelMessage:
    """
    出站消息 - Agent 要发送到渠道的内容。

    属性:
        text: 消息正文（发送前由路由层按目标渠道格式化）
        agent_id: 发出消息的 Agent
        conversation_id: 关联的会话（主动推送时为空）
        metadata: 渠道特有的附加数据（如 Slack 的 thread_ts）
        channel_id: 发送所用的渠道实例 ID，适配器据此选用该实例的凭据
    """
    text: str
    agent_id: str
    conversation_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    channel_id: str = ""


@dataclass
class InboundMessage:
    """
    入站消息 - 适配器从平台事件中解析出的用户消息。

    属性:
        text: 消息文本
        sender_id: 平台内的发送者 ID
        channel_type: 渠道类型（slack / teams / webhook）
        channel_id: 渠道实例 ID（存储层 ChannelConfig.id 的字符串形式），由路由层补齐
        sender_name: 发送者显示名
        thread_id: 线程 / 会话 ID，作为回复目标的候选
        metadata: 适配器附加的数据，replyChannelId 是最高优先级的回复目标
    """
    text: str
    sender_id: str
    channel_type: str
    channel_id: str = ""
    sender_name: str | None = None
    thread_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookRequest:
    """
    入站 webhook 请求。

    headers 的键统一转为小写；body 保留原始字节，签名校验必须基于原始字节。
    适配器需要同步返回给平台的内容（如 Slack 的 challenge）写入 response。
    channel_id 由路由层填入（请求所属的渠道实例），适配器据此选用该实例的密钥。
    """
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    query: dict[str, str] = field(default_factory=dict)
    response: dict[str, Any] | None = None
    channel_id: str = ""

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        """把请求体解析为 JSON；空请求体返回空字典。"""
        if not self.body:
            return {}
        return json.loads(self.body)

    @classmethod
    def from_json(cls, payload: Any, headers: dict[str, str] | None = None, **kwargs: Any) -> "WebhookRequest":
        return cls(headers=headers or {}, body=json.dumps(payload).encode("utf-8"), **kwargs)
