"""
内存存储实现 (storage/memory.py)

InMemoryStorage 把所有记录放在进程内的字典里，写操作由一把 asyncio.Lock 串行化，
保证单行更新（计数 +1、追加消息）不会丢失。

它同时是 JsonStorage 的基类：所有写操作结束前都会调用 _on_*_changed() 钩子，
子类在钩子里把变更写回磁盘。
"""

import asyncio
import itertools
from datetime import datetime
from typing import Any

from agentbox.storage.base import NotFoundError, Storage
from agentbox.storage.models import AgentRecord, ChannelConfig, Conversation, Message, TaskRun
from agentbox.utils.helpers import utc_now


def _matches_channel(conv: Conversation, channel_type: str | None, channel_id: str | None) -> bool:
    if channel_type and conv.channel_type != channel_type:
        return False
    if channel_id and conv.channel_id != channel_id:
        return False
    return True


class InMemoryStorage(Storage):
    """进程内存储。测试和单进程 CLI 场景直接使用。"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, list[Message]] = {}
        self._agents: dict[str, AgentRecord] = {}
        self._channels: dict[int, ChannelConfig] = {}
        self._task_runs: dict[int, TaskRun] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._task_run_ids = itertools.count(1)

    # ---- 持久化钩子（子类覆盖） ----

    def _on_conversation_changed(self, conversation_id: int) -> None:
        pass

    def _on_agents_changed(self) -> None:
        pass

    def _on_channels_changed(self) -> None:
        pass

    def _on_task_runs_changed(self) -> None:
        pass

    # ---- 会话 ----

    async def find_conversation(
        self,
        agent_id: str,
        channel_type: str | None,
        channel_id: str | None,
        active_since: datetime,
    ) -> Conversation | None:
        candidates = [
            c for c in self._conversations.values()
            if c.agent_id == agent_id
            and c.last_message_at is not None
            and c.last_message_at >= active_since
            and _matches_channel(c, channel_type, channel_id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: (c.last_message_at, c.id))

    async def find_unused_conversation(
        self,
        agent_id: str,
        channel_type: str | None,
        channel_id: str | None,
    ) -> Conversation | None:
        candidates = [
            c for c in self._conversations.values()
            if c.agent_id == agent_id
            and c.last_message_at is None
            and _matches_channel(c, channel_type, channel_id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: (c.created_at, c.id))

    async def create_conversation(
        self,
        agent_id: str,
        *,
        title: str | None,
        channel_type: str,
        channel_id: str | None,
        external_user_id: str | None,
    ) -> Conversation:
        async with self._lock:
            now = utc_now()
            conv = Conversation(
                id=next(self._conversation_ids),
                agent_id=agent_id,
                external_user_id=external_user_id,
                title=title,
                channel_type=channel_type,
                channel_id=channel_id,
                created_at=now,
                updated_at=now,
            )
            self._conversations[conv.id] = conv
            self._messages[conv.id] = []
            self._on_conversation_changed(conv.id)
            return conv

    async def get_conversation(self, conversation_id: int) -> Conversation:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conv

    async def touch_conversation(self, conversation_id: int, at: datetime) -> Conversation:
        async with self._lock:
            conv = await self.get_conversation(conversation_id)
            conv.message_count = (conv.message_count or 0) + 1
            conv.last_message_at = at
            conv.updated_at = at
            self._on_conversation_changed(conversation_id)
            return conv

    async def set_summary(self, conversation_id: int, summary: str) -> None:
        async with self._lock:
            conv = await self.get_conversation(conversation_id)
            conv.session_summary = summary
            conv.updated_at = utc_now()
            self._on_conversation_changed(conversation_id)

    async def list_conversations(self, agent_id: str, limit: int = 20) -> list[Conversation]:
        convs = [c for c in self._conversations.values() if c.agent_id == agent_id]
        convs.sort(
            key=lambda c: (c.last_message_at is not None, c.last_message_at or c.created_at, c.id),
            reverse=True,
        )
        return convs[:limit]

    # ---- 消息 ----

    async def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        async with self._lock:
            await self.get_conversation(conversation_id)
            msg = Message(
                id=next(self._message_ids),
                conversation_id=conversation_id,
                role=role,
                content=content,
                metadata=metadata or {},
            )
            self._messages.setdefault(conversation_id, []).append(msg)
            self._on_conversation_changed(conversation_id)
            return msg

    async def recent_messages(self, conversation_id: int, limit: int) -> list[Message]:
        messages = self._messages.get(conversation_id, [])
        return sorted(messages, key=lambda m: m.id, reverse=True)[:limit]

    # ---- Agent ----

    async def get_agent(self, agent_id: str) -> AgentRecord | None:
        return self._agents.get(agent_id)

    async def save_agent(self, agent: AgentRecord) -> None:
        async with self._lock:
            self._agents[agent.id] = agent
            self._on_agents_changed()

    async def list_agents(self) -> list[AgentRecord]:
        return list(self._agents.values())

    # ---- 渠道 ----

    async def get_channel(self, channel_id: int) -> ChannelConfig | None:
        return self._channels.get(channel_id)

    async def save_channel(self, channel: ChannelConfig) -> None:
        async with self._lock:
            self._channels[channel.id] = channel
            self._on_channels_changed()

    async def list_channels(self, agent_id: str | None = None, enabled_only: bool = True) -> list[ChannelConfig]:
        return [
            ch for ch in sorted(self._channels.values(), key=lambda ch: ch.id)
            if (agent_id is None or ch.agent_id == agent_id)
            and (ch.enabled or not enabled_only)
        ]

    # ---- 任务执行记录 ----

    async def create_task_run(
        self,
        agent_id: str,
        run_type: str,
        task_text: str,
        source_id: str | None = None,
    ) -> TaskRun:
        async with self._lock:
            run = TaskRun(
                id=next(self._task_run_ids),
                agent_id=agent_id,
                run_type=run_type,
                task_text=task_text,
                source_id=source_id,
            )
            self._task_runs[run.id] = run
            self._on_task_runs_changed()
            return run

    async def finish_task_run(
        self,
        run_id: int,
        *,
        status: str,
        result: str | None = None,
        error: str | None = None,
        conversation_id: int | None = None,
    ) -> TaskRun:
        async with self._lock:
            run = self._task_runs.get(run_id)
            if run is None:
                raise NotFoundError(f"Task run {run_id} not found")
            run.status = status
            run.result = result
            run.error = error
            if conversation_id is not None:
                run.conversation_id = conversation_id
            run.completed_at = utc_now()
            self._on_task_runs_changed()
            return run

    async def list_task_runs(self, agent_id: str | None = None, limit: int = 20) -> list[TaskRun]:
        runs = [r for r in self._task_runs.values() if agent_id is None or r.agent_id == agent_id]
        runs.sort(key=lambda r: r.id, reverse=True)
        return runs[:limit]
