"""
Agent 运行时 - 一条用户消息变成一条回复的完整流水线。

handle_turn() 的步骤：
  1. ContextBuilder 组装系统提示词 + 历史消息
  2. 记录用户消息（在组装之后写入，避免当前消息同时出现在历史里）
  3. ToolLoopExecutor 执行工具循环
  4. 记录助手回复（metadata 中附带 tools_used）
  5. 尽力而为的惰性摘要：失败只记录警告

模型调用失败（ProviderError）直接抛给调用方，不会伪造一条回复。

渠道路由、后台任务、定时任务、CLI 都只通过这个类驱动对话。

【Java 开发者类比】
AgentRuntime 相当于应用层的 Facade（ChatApplicationService），
把 SessionManager / ContextBuilder / ToolLoopExecutor 这些领域服务编排成一个用例。
"""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from agentbox.agent.cache import AgentCache
from agentbox.agent.context import ContextBuilder
from agentbox.agent.features import FeatureResolver
from agentbox.agent.loop import ProgressCallback, ToolLoopExecutor
from agentbox.agent.tools.base import ToolUsage
from agentbox.session.manager import SessionManager
from agentbox.storage.base import Storage
from agentbox.storage.models import DEFAULT_CHANNEL_TYPE, Conversation


@dataclass
class TurnResult:
    reply: str
    conversation_id: int
    tools_used: list[ToolUsage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reply": self.reply,
            "conversationId": self.conversation_id,
            "toolsUsed": [u.to_dict() for u in self.tools_used],
        }


class AgentRuntime:
    """
    对话运行时。

    属性:
        storage: 消息持久化
        sessions: 会话管理（亲和性、计数、摘要）
        context: 上下文构建器
        executor: 工具循环执行器
        agents / features: Agent 档案缓存与有效特性解析
    """

    def __init__(
        self,
        storage: Storage,
        sessions: SessionManager,
        context: ContextBuilder,
        executor: ToolLoopExecutor,
        agents: AgentCache,
        features: FeatureResolver,
    ):
        self.storage = storage
        self.sessions = sessions
        self.context = context
        self.executor = executor
        self.agents = agents
        self.features = features

    async def resolve_or_create_session(
        self,
        agent_id: str,
        channel_type: str | None = None,
        channel_id: str | None = None,
        external_user_id: str | None = None,
    ) -> Conversation:
        return await self.sessions.resolve_or_create(agent_id, channel_type, channel_id, external_user_id)

    async def start_conversation(
        self,
        agent_id: str,
        external_user_id: str | None = None,
        title: str | None = None,
        channel_type: str = DEFAULT_CHANNEL_TYPE,
    ) -> Conversation:
        """新建一个与用户会话隔离的会话（后台任务、定时任务）。"""
        return await self.sessions.start_conversation(agent_id, external_user_id, title, channel_type)

    async def record_turn(self, conversation_id: int) -> Conversation:
        return await self.sessions.record_turn(conversation_id)

    async def handle_turn(
        self,
        agent_id: str,
        conversation_id: int,
        user_text: str,
        *,
        on_progress: ProgressCallback | None = None,
        tools_enabled: bool | None = None,
        model: str | None = None,
    ) -> TurnResult:
        """
        处理一轮对话。

        参数:
            on_progress: 每次执行工具前以工具名回调
            tools_enabled: 强制开启/关闭工具；None 时按 Agent 配置推断
            model: 本轮使用的模型，覆盖 Agent 配置（定时任务可以指定自己的模型）

        异常:
            ProviderError: 模型调用失败
        """
        preview = user_text[:80] + "..." if len(user_text) > 80 else user_text
        logger.info(f"Turn agent={agent_id} session=#{conversation_id}: {preview}")

        built = await self.context.build(agent_id, conversation_id, user_text, tools_enabled)
        messages = built.to_messages(user_text)

        await self.storage.add_message(conversation_id, "user", user_text)
        await self.sessions.record_turn(conversation_id)

        agent = await self.agents.get(agent_id)
        features = await self.features.for_agent(agent_id)
        result = await self.executor.run(
            messages,
            model=model or built.model,
            agent_id=agent_id,
            conversation_id=conversation_id,
            agent=agent,
            features=features,
            tools_enabled=built.tools_enabled,
            on_progress=on_progress,
        )

        metadata: dict[str, Any] = {}
        if result.tools_used:
            metadata["tools_used"] = [u.to_dict() for u in result.tools_used]
        await self.storage.add_message(conversation_id, "assistant", result.reply, metadata)
        await self.sessions.record_turn(conversation_id)

        await self._maybe_summarize(conversation_id)

        preview = result.reply[:120] + "..." if len(result.reply) > 120 else result.reply
        logger.info(f"Reply session=#{conversation_id} ({result.iterations} iteration(s)): {preview}")
        return TurnResult(reply=result.reply, conversation_id=conversation_id, tools_used=result.tools_used)

    async def _maybe_summarize(self, conversation_id: int) -> None:
        try:
            if await self.sessions.maybe_summarize(conversation_id):
                await self.sessions.summarize(conversation_id)
        except Exception as e:
            logger.warning(f"Summarization check failed for session #{conversation_id}: {e}")
