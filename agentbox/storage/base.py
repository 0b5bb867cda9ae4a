"""
持久化接口 (storage/base.py)

运行时只通过 Storage 抽象访问持久化层：会话/消息的增改查、Agent 档案、
渠道实例和任务执行记录。实现者需要保证单行更新的原子性
（尤其是 touch_conversation 的"计数 +1 + 更新时间戳"）。

【Java 开发者类比】
Storage 相当于一组 Repository 接口的合集（ConversationRepository、MessageRepository ...），
InMemoryStorage / JsonStorage 则是不同的实现。
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from agentbox.storage.models import AgentRecord, ChannelConfig, Conversation, Message, TaskRun


class NotFoundError(LookupError):
    """按 ID 查找的记录不存在。"""


class Storage(ABC):
    """运行时依赖的持久化抽象（全部为异步方法）。"""

    # ---- 会话 ----

    @abstractmethod
    async def find_conversation(
        self,
        agent_id: str,
        channel_type: str | None,
        channel_id: str | None,
        active_since: datetime,
    ) -> Conversation | None:
        """查找 last_message_at >= active_since 的会话中最近活跃的一个（渠道参数为 None 时不参与过滤）。"""

    @abstractmethod
    async def find_unused_conversation(
        self,
        agent_id: str,
        channel_type: str | None,
        channel_id: str | None,
    ) -> Conversation | None:
        """查找 last_message_at 为空的会话中最新创建的一个。"""

    @abstractmethod
    async def create_conversation(
        self,
        agent_id: str,
        *,
        title: str | None,
        channel_type: str,
        channel_id: str | None,
        external_user_id: str | None,
    ) -> Conversation:
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> Conversation:
        """异常: NotFoundError"""

    @abstractmethod
    async def touch_conversation(self, conversation_id: int, at: datetime) -> Conversation:
        """原子地 message_count += 1 并把 last_message_at 设为 at。"""

    @abstractmethod
    async def set_summary(self, conversation_id: int, summary: str) -> None:
        pass

    @abstractmethod
    async def list_conversations(self, agent_id: str, limit: int = 20) -> list[Conversation]:
        """按 last_message_at 倒序（未使用的会话排在最后）。"""

    # ---- 消息 ----

    @abstractmethod
    async def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        pass

    @abstractmethod
    async def recent_messages(self, conversation_id: int, limit: int) -> list[Message]:
        """最近 limit 条消息，最新的在前（调用方负责翻转成时间顺序）。"""

    # ---- Agent ----

    @abstractmethod
    async def get_agent(self, agent_id: str) -> AgentRecord | None:
        pass

    @abstractmethod
    async def save_agent(self, agent: AgentRecord) -> None:
        pass

    @abstractmethod
    async def list_agents(self) -> list[AgentRecord]:
        pass

    # ---- 渠道 ----

    @abstractmethod
    async def get_channel(self, channel_id: int) -> ChannelConfig | None:
        pass

    @abstractmethod
    async def save_channel(self, channel: ChannelConfig) -> None:
        pass

    @abstractmethod
    async def list_channels(self, agent_id: str | None = None, enabled_only: bool = True) -> list[ChannelConfig]:
        pass

    # ---- 任务执行记录 ----

    @abstractmethod
    async def create_task_run(
        self,
        agent_id: str,
        run_type: str,
        task_text: str,
        source_id: str | None = None,
    ) -> TaskRun:
        pass

    @abstractmethod
    async def finish_task_run(
        self,
        run_id: int,
        *,
        status: str,
        result: str | None = None,
        error: str | None = None,
        conversation_id: int | None = None,
    ) -> TaskRun:
        pass

    @abstractmethod
    async def list_task_runs(self, agent_id: str | None = None, limit: int = 20) -> list[TaskRun]:
        pass
