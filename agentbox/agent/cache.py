"""
Agent 档案缓存 (agent/cache.py)

每一轮对话都要读取 Agent 档案（指令、模型、能力、特性覆盖），
AgentCache 把结果按 agent_id 缓存一个短时间窗口（默认 60 秒），窗口内接受陈旧数据。

时钟通过构造参数注入（返回单调秒数的函数），测试中可以用假时钟推进时间；
档案更新后调用 invalidate() 立即失效。

【Java 开发者类比】
相当于 Caffeine 的 expireAfterWrite 缓存 + 可替换的 Ticker。
"""

import time
from typing import Callable, Generic, TypeVar

from loguru import logger

from agentbox.storage.base import Storage
from agentbox.storage.models import AgentRecord

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """简单的写入后过期缓存，读多写少，并发下最多读到陈旧值。"""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[K, tuple[float, V]] = {}

    def get(self, key: K) -> tuple[bool, V | None]:
        """返回 (是否命中, 值)。值本身可以是 None（缓存"不存在"这一结果）。"""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expiry, value = entry
        if expiry <= self.clock():
            del self._entries[key]
            return False, None
        return True, value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (self.clock() + self.ttl, value)

    def invalidate(self, key: K | None = None) -> None:
        """失效单个 key；key 为 None 时清空全部。"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class AgentCache:
    """按 agent_id 缓存 Agent 档案。"""

    def __init__(self, storage: Storage, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.storage = storage
        self._cache: TTLCache[str, AgentRecord | None] = TTLCache(ttl, clock)

    async def get(self, agent_id: str) -> AgentRecord | None:
        hit, agent = self._cache.get(agent_id)
        if hit:
            logger.debug(f"Agent cache hit: {agent_id}")
            return agent
        agent = await self.storage.get_agent(agent_id)
        self._cache.set(agent_id, agent)
        return agent

    def invalidate(self, agent_id: str | None = None) -> None:
        self._cache.invalidate(agent_id)
