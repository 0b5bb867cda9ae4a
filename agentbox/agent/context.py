"""
上下文构建器模块 - 为一轮对话组装模型可见的提示词和历史消息。

系统提示词按以下顺序拼接：
  1. 基础身份
     - soul_memory 开启且 soul.md 有内容：soul.md + "\\n\\n---\\n\\n" + context.md（如果有）
     - 否则：Agent 的静态指令；再否则：默认身份句
  2. 工具使用策略（本轮启用工具时）：要求模型对时效性问题优先使用工具
  3. 历史会话摘要（soul_memory 开启时）：最近几个其他会话的摘要，带日期和渠道
  4. 渠道提示：会话绑定在非默认渠道（不是 widget）时，说明对话经由哪个渠道
  5. 相关记忆（soul_memory 开启时）：用当前用户消息检索记忆，相似度超过阈值的片段

历史消息：
  - 启用工具时取最近 4 条，否则 20 条（工具结果本身已经带了上下文）
  - 存储按"最新在前"返回，这里翻转回时间顺序
  - 超过 1500 字符的消息截断并加 "...[truncated]" 标记
  - 空消息和 tool 角色消息不进入历史

所有"锦上添花"的部分（记忆召回、会话摘要）失败时只记录警告，降级为空，不影响本轮对话。

【Java 类比】类似于一个 PromptTemplateService，
把模板 + 多个数据源（档案、文档、会话、记忆）渲染成最终的 List<Message>。
"""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from agentbox.agent.cache import AgentCache
from agentbox.agent.features import AgentFeatures, FeatureResolver
from agentbox.agent.memory import CONTEXT_DOC, SOUL_DOC, MemoryRecall, MemoryStore
from agentbox.config.schema import ContextConfig
from agentbox.storage.base import Storage
from agentbox.storage.models import DEFAULT_CHANNEL_TYPE, AgentRecord
from agentbox.utils.helpers import format_date

DEFAULT_IDENTITY = (
    "You are an Agent-in-a-Box assistant. Use the provided context and tools when relevant. "
    "Always cite your sources."
)

TOOLS_POLICY = (
    "## Tools\n"
    "You have tools available and MUST use them proactively. "
    "For ANY question about current events, news, prices, live data, weather, or anything that "
    "requires up-to-date information, you MUST call the appropriate tool. Do NOT answer from your "
    "training data alone.\n\n"
    "Key tools:\n"
    "- web: Search the web (action \"search\") or read a specific URL (action \"fetch\")\n"
    "- memory__read / memory__write: Read or update your persistent memory\n"
    "- Capability tools: pick an \"action\" from the tool's enum and pass its \"params\"\n\n"
    "When in doubt, USE A TOOL rather than guessing. Always prefer tool results over your "
    "training data for anything time-sensitive."
)

TRUNCATED_MARKER = "...[truncated]"

# 进入历史的角色（tool 角色的消息不回放）
_HISTORY_ROLES = {"user", "assistant", "system"}


@dataclass
class BuiltContext:
    system_prompt: str
    history_messages: list[dict[str, Any]] = field(default_factory=list)
    tools_enabled: bool = False
    model: str | None = None

    def to_messages(self, user_message: str) -> list[dict[str, Any]]:
        """系统提示词 + 历史 + 当前用户消息。"""
        return build_messages(self.system_prompt, self.history_messages, user_message)


class ContextBuilder:
    """
    上下文构建器。

    属性:
        storage: 读取会话与历史消息
        agents: Agent 档案缓存
        features: 有效特性解析器
        documents: soul.md / context.md 所在的文档存储
        recall: 记忆召回实现（默认就是 documents 的词法检索）
        config: 历史条数、截断长度、召回阈值等参数
    """

    def __init__(
        self,
        storage: Storage,
        agents: AgentCache,
        features: FeatureResolver,
        documents: MemoryStore,
        recall: MemoryRecall | None = None,
        config: ContextConfig | None = None,
        default_model: str | None = None,
    ):
        self.storage = storage
        self.agents = agents
        self.features = features
        self.documents = documents
        self.recall = recall or documents
        self.config = config or ContextConfig()
        self.default_model = default_model

    async def build(
        self,
        agent_id: str,
        conversation_id: int,
        user_message: str,
        tools_enabled: bool | None = None,
    ) -> BuiltContext:
        """
        组装一轮对话的上下文。

        参数:
            tools_enabled: 本轮是否启用工具；为 None 时根据 Agent 的能力和特性推断
        """
        agent = await self.agents.get(agent_id)
        features = await self.features.for_agent(agent_id)
        if tools_enabled is None:
            tools_enabled = bool(agent and agent.capabilities) or any(
                (features.soul_memory, features.proactive, features.background_agents, features.deep_tools)
            )

        parts = [self._base_identity(agent_id, agent, features)]
        if tools_enabled:
            parts.append(TOOLS_POLICY)

        if features.soul_memory:
            summaries = await self._session_summaries(agent_id, conversation_id)
            if summaries:
                parts.append(summaries)

        system_prompt = "\n\n".join(parts)

        channel_note = await self._channel_note(conversation_id)
        if channel_note:
            system_prompt += channel_note

        if features.soul_memory:
            memory = await self.recall_memory(agent_id, user_message)
            if memory:
                system_prompt += "\n\n" + memory

        limit = self.config.max_history_with_tools if tools_enabled else self.config.max_history_without_tools
        history = await self.load_history(conversation_id, limit)

        return BuiltContext(
            system_prompt=system_prompt,
            history_messages=history,
            tools_enabled=tools_enabled,
            model=(agent.model if agent and agent.model else None) or self.default_model,
        )

    def _base_identity(self, agent_id: str, agent: AgentRecord | None, features: AgentFeatures) -> str:
        if features.soul_memory:
            soul = self.documents.read(agent_id, SOUL_DOC) or ""
            if soul.strip():
                context = self.documents.read(agent_id, CONTEXT_DOC) or ""
                if context.strip():
                    return soul + "\n\n---\n\n" + context
                return soul
        return (agent.instructions if agent else "") or DEFAULT_IDENTITY

    async def recall_memory(self, agent_id: str, query: str) -> str:
        """检索相关记忆并格式化为 "## Relevant Memory" 块；失败或无结果时返回空字符串。"""
        try:
            results = await self.recall.search(agent_id, query, self.config.memory_top_k)
        except Exception as e:
            logger.warning(f"Memory recall failed for agent {agent_id}: {e}")
            return ""

        relevant = [r for r in results if r.similarity > self.config.memory_min_similarity]
        if not relevant:
            return ""
        lines = ["## Relevant Memory"]
        lines.extend(f"- [{r.source_key}] {r.text}" for r in relevant)
        return "\n".join(lines)

    async def _session_summaries(self, agent_id: str, conversation_id: int) -> str:
        try:
            recent = await self.storage.list_conversations(agent_id, self.config.summary_fetch_limit)
        except Exception as e:
            logger.warning(f"Failed to load session summaries for agent {agent_id}: {e}")
            return ""

        prior = [c for c in recent if c.id != conversation_id and c.session_summary]
        if not prior:
            return ""
        lines = ["## Prior Conversation Summaries"]
        for conv in prior[: self.config.summary_limit]:
            when = format_date(conv.last_message_at)
            lines.append(f"- [{when} via {conv.channel_type or 'unknown'}] {conv.session_summary}")
        return "\n".join(lines)

    async def _channel_note(self, conversation_id: int) -> str:
        try:
            conv = await self.storage.get_conversation(conversation_id)
        except Exception as e:
            logger.warning(f"Failed to load session #{conversation_id} for channel note: {e}")
            return ""
        if not conv.channel_type or conv.channel_type == DEFAULT_CHANNEL_TYPE:
            return ""
        return f"\n\n---\nThis conversation is via {conv.channel_type}."

    async def load_history(self, conversation_id: int, limit: int) -> list[dict[str, Any]]:
        """最近 limit 条消息，按时间顺序返回。"""
        rows = await self.storage.recent_messages(conversation_id, limit)
        cap = self.config.message_char_cap
        history = []
        for msg in reversed(rows):
            if msg.role not in _HISTORY_ROLES or not msg.content.strip():
                continue
            content = msg.content if len(msg.content) <= cap else msg.content[:cap] + TRUNCATED_MARKER
            history.append({"role": msg.role, "content": content})
        return history


def build_messages(
    system_prompt: str,
    history: list[dict[str, Any]],
    current_message: str,
) -> list[dict[str, Any]]:
    """组装发给模型的消息列表：[system, *history, user]。"""
    return [
        {"role": "system", "content": system_prompt},
        *history,
        {"role": "user", "content": current_message},
    ]


def add_assistant_message(
    messages: list[dict[str, Any]],
    content: str | None,
    tool_calls: list[dict[str, Any]] | None = None,
    reasoning_content: str | None = None,
) -> list[dict[str, Any]]:
    """
    追加一条助手消息。

    带工具调用时附上 tool_calls；思维链模型（如 DeepSeek-R1）要求保留 reasoning_content，
    否则后续调用会被拒绝。
    """
    msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
    if tool_calls:
        msg["tool_calls"] = tool_calls
    if reasoning_content:
        msg["reasoning_content"] = reasoning_content
    messages.append(msg)
    return messages


def add_tool_result(
    messages: list[dict[str, Any]],
    tool_call_id: str,
    tool_name: str,
    result: str,
) -> list[dict[str, Any]]:
    """追加一条 tool 角色消息，tool_call_id 与助手消息中的调用配对。"""
    messages.append({
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": result,
    })
    return messages
