"""
会话管理器实现模块 - 会话亲和性、活跃度跟踪与惰性摘要。

【会话亲和性】
同一个渠道身份 (Agent, 渠道类型, 渠道 ID) 上，最后一条消息在活跃窗口
（默认 30 分钟）内的会话视为"活跃"。resolve_or_create() 分两阶段查找：
  1. 活跃会话：last_message_at >= now - 窗口，取最近活跃的一个
  2. 未使用会话：last_message_at 为空（刚创建还没收到消息），取最新创建的一个
两阶段都未命中时才新建会话。同一渠道身份的"查找 + 创建"在一把 asyncio.Lock 内完成，
锁内会重新查找一次，因此并发的首次接触不会建出两个会话。

【惰性摘要】
消息数超过阈值（默认 20）且尚无摘要时，maybe_summarize() 返回 True；
summarize() 让 LLM 生成 2-4 句的事实性摘要并写回会话。摘要只生成一次，
失败时保持为空，下一轮对话会再次尝试。

【Java 开发者类比】
- SessionManager 类似于 Spring Session 的 SessionRepository + 一个摘要定时策略
- _locks 类似于按 key 分段的 ReentrantLock（ConcurrentHashMap<Key, Lock>）
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from agentbox.providers.base import GenerateOptions, LLMProvider
from agentbox.storage.base import Storage
from agentbox.storage.models import DEFAULT_CHANNEL_TYPE, Conversation
from agentbox.utils.helpers import utc_now

SUMMARY_SYSTEM_PROMPT = (
    "You are a concise summarizer. Summarize the following conversation in 2-4 sentences, "
    "capturing the key topics discussed, any decisions made, and important context. "
    "Be factual and brief."
)

# 摘要时每条消息最多保留的字符数
_TRANSCRIPT_CHAR_CAP = 500


class SessionManager:
    """
    会话管理器。

    属性:
        storage: 持久化层
        provider: 生成摘要用的 LLM 提供者（为 None 时不生成摘要）
        active_window: 活跃窗口
        summarize_threshold: 触发摘要的消息数阈值（严格大于）
        clock: 注入的时钟，返回带时区的当前时间（测试中替换为假时钟）
    """

    def __init__(
        self,
        storage: Storage,
        provider: LLMProvider | None = None,
        *,
        active_window: timedelta = timedelta(minutes=30),
        summarize_threshold: int = 20,
        summary_message_window: int = 30,
        summary_max_tokens: int = 300,
        summary_model: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.provider = provider
        self.active_window = active_window
        self.summarize_threshold = summarize_threshold
        self.summary_message_window = summary_message_window
        self.summary_max_tokens = summary_max_tokens
        self.summary_model = summary_model
        self.clock = clock
        self._locks: dict[tuple[str, str | None, str | None], asyncio.Lock] = {}

    def _lock_for(self, key: tuple[str, str | None, str | None]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _find_existing(
        self,
        agent_id: str,
        channel_type: str | None,
        channel_id: str | None,
    ) -> Conversation | None:
        cutoff = self.clock() - self.active_window
        conv = await self.storage.find_conversation(agent_id, channel_type, channel_id, cutoff)
        if conv is not None:
            return conv
        return await self.storage.find_unused_conversation(agent_id, channel_type, channel_id)

    async def resolve_or_create(
        self,
        agent_id: str,
        channel_type: str | None = None,
        channel_id: str | None = None,
        external_user_id: str | None = None,
    ) -> Conversation:
        """
        为渠道身份找到活跃/未使用的会话，或新建一个。

        channel_type / channel_id 为空时不参与过滤（网页挂件的默认行为）。
        """
        conv = await self._find_existing(agent_id, channel_type, channel_id)
        if conv is not None:
            return conv

        async with self._lock_for((agent_id, channel_type, channel_id)):
            # 拿到锁后再查一次：并发请求可能刚刚建好了会话
            conv = await self._find_existing(agent_id, channel_type, channel_id)
            if conv is not None:
                return conv

            conv = await self.storage.create_conversation(
                agent_id,
                title=f"{channel_type} session" if channel_type else "Chat session",
                channel_type=channel_type or DEFAULT_CHANNEL_TYPE,
                channel_id=channel_id,
                external_user_id=external_user_id,
            )
            logger.info(
                f"Session created: #{conv.id} agent={agent_id} "
                f"channel={conv.channel_type}:{channel_id or '-'}"
            )
            return conv

    async def start_conversation(
        self,
        agent_id: str,
        external_user_id: str | None = None,
        title: str | None = None,
        channel_type: str = DEFAULT_CHANNEL_TYPE,
    ) -> Conversation:
        """无条件新建一个隔离会话（后台任务、定时任务使用）。"""
        return await self.storage.create_conversation(
            agent_id,
            title=title,
            channel_type=channel_type,
            channel_id=None,
            external_user_id=external_user_id,
        )

    async def record_turn(self, conversation_id: int) -> Conversation:
        """消息数 +1，last_message_at 更新为当前时间（存储层保证原子性）。"""
        return await self.storage.touch_conversation(conversation_id, self.clock())

    async def maybe_summarize(self, conversation_id: int) -> bool:
        """消息数超过阈值且尚无摘要时返回 True。一旦有了摘要就永远返回 False。"""
        conv = await self.storage.get_conversation(conversation_id)
        return (conv.message_count or 0) > self.summarize_threshold and not conv.session_summary

    async def summarize(self, conversation_id: int) -> str | None:
        """
        为会话生成摘要并写回。

        读取最近 N 条消息（去掉 system 角色），拼成 "ROLE: 内容" 的对话记录交给 LLM。
        任何失败都只记录警告并返回 None，不影响本轮对话。
        """
        if self.provider is None:
            return None

        try:
            recent = await self.storage.recent_messages(conversation_id, self.summary_message_window)
            chronological = [m for m in reversed(recent) if m.role != "system"]
            if not chronological:
                return None

            transcript = "\n".join(
                f"{m.role.upper()}: {m.content[:_TRANSCRIPT_CHAR_CAP]}" for m in chronological
            )
            summary = await self.provider.generate(
                [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Summarize this conversation:\n\n{transcript}"},
                ],
                GenerateOptions(model=self.summary_model, max_tokens=self.summary_max_tokens),
            )
            summary = summary.strip()
            if not summary:
                return None

            await self.storage.set_summary(conversation_id, summary)
            logger.info(f"Session #{conversation_id} summarized ({len(summary)} chars)")
            return summary
        except Exception as e:
            logger.warning(f"Failed to summarize session #{conversation_id}: {e}")
            return None

    async def recent_sessions(self, agent_id: str, limit: int = 5) -> list[Conversation]:
        """Agent 最近活跃的会话（按 last_message_at 倒序）。"""
        return await self.storage.list_conversations(agent_id, limit)
