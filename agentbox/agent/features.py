"""
Agent 特性开关解析 (agent/features.py)

有效特性 = 全局开关 AND (Agent 覆盖值不是 False)

- 全局关闭 -> 一定关闭（Agent 不能突破全局上限）
- 全局开启且 Agent 未设置 -> 开启
- 全局开启且 Agent 设置为 False -> 关闭

解析结果按 agent_id 缓存 30 秒，修改 Agent 特性后调用 invalidate()。
"""

import time
from dataclasses import dataclass
from typing import Callable

from agentbox.agent.cache import AgentCache, TTLCache
from agentbox.config.schema import FeaturesConfig

FEATURE_KEYS = ("soul_memory", "deep_tools", "proactive", "background_agents", "multi_channel")


@dataclass(frozen=True)
class AgentFeatures:
    soul_memory: bool = True
    deep_tools: bool = True
    proactive: bool = True
    background_agents: bool = True
    multi_channel: bool = True


def resolve_features(global_flags: FeaturesConfig, overrides: dict[str, bool] | None) -> AgentFeatures:
    overrides = overrides or {}
    return AgentFeatures(**{
        key: bool(getattr(global_flags, key)) and overrides.get(key) is not False
        for key in FEATURE_KEYS
    })


class FeatureResolver:
    """计算并缓存每个 Agent 的有效特性。"""

    def __init__(
        self,
        global_flags: FeaturesConfig,
        agents: AgentCache,
        ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.global_flags = global_flags
        self.agents = agents
        self._cache: TTLCache[str, AgentFeatures] = TTLCache(ttl, clock)

    async def for_agent(self, agent_id: str) -> AgentFeatures:
        hit, features = self._cache.get(agent_id)
        if hit and features is not None:
            return features
        agent = await self.agents.get(agent_id)
        features = resolve_features(self.global_flags, agent.features if agent else None)
        self._cache.set(agent_id, features)
        return features

    def invalidate(self, agent_id: str | None = None) -> None:
        self._cache.invalidate(agent_id)
