"""Shared test fixtures: in-memory storage, a scripted provider and a fake clock.

No test touches the network. The provider replays a queue of canned
responses and records every call so tests can count provider round trips.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from agentbox.agent.cache import AgentCache
from agentbox.agent.context import ContextBuilder
from agentbox.agent.features import FeatureResolver
from agentbox.agent.loop import ToolLoopExecutor
from agentbox.agent.memory import MemoryStore
from agentbox.agent.runtime import AgentRuntime
from agentbox.agent.tools.dispatcher import ToolDispatcher
from agentbox.agent.tools.memory import memory_tools
from agentbox.agent.tools.registry import ToolRegistry
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.config.schema import FeaturesConfig
from agentbox.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from agentbox.session.manager import SessionManager
from agentbox.storage.memory import InMemoryStorage
from agentbox.storage.models import AgentRecord

ALL_FEATURES_OFF = {
    "soul_memory": False,
    "deep_tools": False,
    "proactive": False,
    "background_agents": False,
    "multi_channel": False,
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Timezone-aware clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedProvider(LLMProvider):
    """Replays queued responses in order; falls back to a plain text reply."""

    def __init__(self, responses: list[LLMResponse | str] | None = None, default: str = "ok") -> None:
        super().__init__()
        self.responses: list[LLMResponse | str] = list(responses or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> LLMResponse:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools, "model": model})
        if not self.responses:
            return LLMResponse(content=self.default)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return LLMResponse(content=item)
        return item

    def get_default_model(self) -> str:
        return "test/model"


class LoopingProvider(LLMProvider):
    """Always asks for another tool call."""

    def __init__(self, tool_name: str = "memory__read") -> None:
        super().__init__()
        self.tool_name = tool_name
        self.calls = 0

    async def chat(self, messages, tools=None, model=None, max_tokens=2048, temperature=0.7) -> LLMResponse:
        self.calls += 1
        return tool_call_response(self.tool_name, {"doc_key": "notes"}, call_id=f"call_{self.calls}")

    def get_default_model(self) -> str:
        return "test/model"


def tool_call_response(name: str, arguments: dict[str, Any], call_id: str = "call_1") -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    storage: InMemoryStorage
    provider: LLMProvider
    clock: FakeClock
    memory: MemoryStore
    registry: ToolRegistry
    capabilities: CapabilityRegistry
    agents: AgentCache
    features: FeatureResolver
    sessions: SessionManager
    context: ContextBuilder
    executor: ToolLoopExecutor
    runtime: AgentRuntime
    extra: dict[str, Any] = field(default_factory=dict)

    async def add_agent(self, agent_id: str = "agent-1", **kwargs: Any) -> AgentRecord:
        agent = AgentRecord(id=agent_id, name=agent_id, **kwargs)
        await self.storage.save_agent(agent)
        self.agents.invalidate(agent_id)
        self.features.invalidate(agent_id)
        return agent


def build_harness(
    workspace: Path,
    provider: LLMProvider,
    *,
    flags: FeaturesConfig | None = None,
    max_iterations: int = 10,
    summarize_threshold: int = 20,
) -> Harness:
    storage = InMemoryStorage()
    clock = FakeClock()
    memory = MemoryStore(workspace)
    registry = ToolRegistry()
    registry.register_all(memory_tools(memory))
    capabilities = CapabilityRegistry()
    agents = AgentCache(storage, ttl=60)
    features = FeatureResolver(flags or FeaturesConfig(), agents, ttl=30)
    sessions = SessionManager(storage, provider, summarize_threshold=summarize_threshold, clock=clock)
    context = ContextBuilder(storage, agents, features, memory)
    dispatcher = ToolDispatcher(registry, capabilities)
    executor = ToolLoopExecutor(provider, dispatcher, max_iterations=max_iterations)
    runtime = AgentRuntime(storage, sessions, context, executor, agents, features)
    return Harness(
        storage=storage,
        provider=provider,
        clock=clock,
        memory=memory,
        registry=registry,
        capabilities=capabilities,
        agents=agents,
        features=features,
        sessions=sessions,
        context=context,
        executor=executor,
        runtime=runtime,
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def harness(tmp_path: Path, provider: ScriptedProvider) -> Harness:
    return build_harness(tmp_path / "workspace", provider)
