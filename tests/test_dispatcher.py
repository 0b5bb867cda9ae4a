"""Unit tests for tool routing, the tool registry and ToolDispatcher."""

from __future__ import annotations

import json
from typing import Any

import pytest

from agentbox.agent.features import AgentFeatures
from agentbox.agent.tools.base import (
    TRUNCATION_MARKER,
    Tool,
    ToolContext,
    ToolError,
    current_context,
    truncate_output,
)
from agentbox.agent.tools import dispatcher as dispatcher_module
from agentbox.agent.tools.dispatcher import ToolDispatcher
from agentbox.agent.tools.registry import ToolRegistry
from agentbox.agent.tools.routing import (
    BuiltinCron,
    BuiltinFilesystem,
    BuiltinMemory,
    LegacyNamespaced,
    ProviderRouted,
    Unknown,
    resolve_tool_call,
)
from agentbox.capabilities.base import CapabilityContext, CapabilityError, CapabilityProvider
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.providers.base import ToolCallRequest
from agentbox.storage.models import AgentRecord


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class EchoCapability(CapabilityProvider):
    name = "crm"
    description = "Customer records"
    actions = {
        "lookup": {"description": "Find a customer", "parameters": {"properties": {"email": {}}}},
        "note": {"description": "Add a note", "parameters": {"properties": {"text": {}}}},
        "fail": {"description": "Always fails", "parameters": {}},
    }

    def __init__(self) -> None:
        self.seen: list[tuple[str, dict[str, Any], CapabilityContext]] = []

    async def execute(self, action: str, params: dict[str, Any], context: CapabilityContext) -> Any:
        self.seen.append((action, params, context))
        if action == "fail":
            raise CapabilityError("crm backend unavailable")
        if action == "note":
            return "noted"
        return {"email": params.get("email"), "plan": "pro"}


class BigOutputTool(Tool):
    name = "fs__big"
    description = "Returns a lot of text"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        return "y" * 500


class ContextTool(Tool):
    name = "memory__whoami"
    description = "Reports the calling agent"
    parameters = {"type": "object", "properties": {"n": {"type": "integer", "minimum": 1}}}

    async def execute(self, n: int = 1, **kwargs: Any) -> str:
        ctx = current_context()
        return f"{ctx.agent_id}#{ctx.conversation_id}"


class FailingTool(Tool):
    name = "cron__boom"
    description = "Raises"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        raise ValueError("kaboom")


class RefusingTool(Tool):
    name = "cron__refuse"
    description = "Raises ToolError"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        raise ToolError("Cron job 7 not found or not owned by this agent.")


def make_dispatcher(max_output_chars: int = 20000) -> tuple[ToolDispatcher, EchoCapability]:
    registry = ToolRegistry()
    registry.register_all([BigOutputTool(), ContextTool(), FailingTool(), RefusingTool()])
    capabilities = CapabilityRegistry()
    crm = EchoCapability()
    capabilities.register(crm)
    return ToolDispatcher(registry, capabilities, max_output_chars=max_output_chars), crm


def call(name: str, arguments: dict[str, Any] | None = None) -> ToolCallRequest:
    return ToolCallRequest(id="call_1", name=name, arguments=arguments or {})


CTX = ToolContext(agent_id="a1", conversation_id=42)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def test_builtin_prefixes_route_to_builtins() -> None:
    assert resolve_tool_call("memory__read", {}, ["memory"]) == BuiltinMemory("memory__read")
    assert resolve_tool_call("cron__list", None, []) == BuiltinCron("cron__list")
    assert resolve_tool_call("fs__read_file", {}, []) == BuiltinFilesystem("fs__read_file")


def test_provider_name_routes_with_action_and_params() -> None:
    route = resolve_tool_call("crm", {"action": "lookup", "params": {"email": "a@b.c"}}, ["crm"])

    assert route == ProviderRouted("crm", "lookup", {"email": "a@b.c"})


def test_provider_without_action_or_params() -> None:
    route = resolve_tool_call("crm", {"params": "not a dict"}, ["crm"])

    assert route == ProviderRouted("crm", None, {})


def test_legacy_namespaced_call() -> None:
    route = resolve_tool_call("crm__lookup", {"email": "a@b.c"}, ["crm"])

    assert route == LegacyNamespaced("crm", "lookup", {"email": "a@b.c"})


def test_unrecognised_names_are_unknown() -> None:
    assert resolve_tool_call("crm__lookup__x", {}, ["crm"]) == Unknown("crm__lookup__x")
    assert resolve_tool_call("other__lookup", {}, ["crm"]) == Unknown("other__lookup")
    assert resolve_tool_call("memory__", {}, []) == Unknown("memory__")
    assert resolve_tool_call("", {}, []) == Unknown("")


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------


def test_truncate_output_exact_length() -> None:
    out = truncate_output("z" * 150, 100)

    assert out == "z" * 100 + TRUNCATION_MARKER
    assert len(out) == 100 + len(TRUNCATION_MARKER)


def test_truncate_output_is_idempotent() -> None:
    once = truncate_output("z" * 150, 100)

    assert truncate_output(once, 100) == once
    assert truncate_output("short", 100) == "short"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


async def test_registry_reports_validation_errors() -> None:
    registry = ToolRegistry()
    registry.register(ContextTool())

    output, success = await registry.execute("memory__whoami", {"n": 0})

    assert success is False
    assert output.startswith("Error: Invalid parameters for tool 'memory__whoami': ")


async def test_registry_definitions_filter_by_group() -> None:
    registry = ToolRegistry()
    registry.register_all([ContextTool(), FailingTool()])

    names = [d["function"]["name"] for d in registry.definitions(["memory"])]

    assert names == ["memory__whoami"]


async def test_tool_outside_context_reports_error() -> None:
    registry = ToolRegistry()
    registry.register(ContextTool())

    output, success = await registry.execute("memory__whoami", {})

    assert success is False
    assert output == "Error: no agent context for this tool call"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def test_builtin_receives_tool_context() -> None:
    dispatcher, _ = make_dispatcher()

    result = await dispatcher.dispatch(call("memory__whoami"), CTX)

    assert result.success is True
    assert result.output == "a1#42"
    assert result.tool_call_id == "call_1"


async def test_disabled_group_looks_like_unknown_tool() -> None:
    dispatcher, _ = make_dispatcher()

    result = await dispatcher.dispatch(call("memory__whoami"), CTX, features=AgentFeatures(soul_memory=False))

    assert result.success is False
    assert result.output == "Error: Tool 'memory__whoami' not found"


async def test_unknown_tool() -> None:
    dispatcher, _ = make_dispatcher()

    result = await dispatcher.dispatch(call("launch_rockets", {"count": 3}), CTX)

    assert result.success is False
    assert result.output == "Error: Tool 'launch_rockets' not found"


async def test_unhandled_route_type_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    dispatcher, _ = make_dispatcher()
    monkeypatch.setattr(dispatcher_module, "resolve_tool_call", lambda name, arguments, providers: object())

    with pytest.raises(TypeError, match="Unhandled tool route: object"):
        await dispatcher.dispatch(call("launch_rockets"), CTX)


async def test_tool_exceptions_become_failed_results() -> None:
    dispatcher, _ = make_dispatcher()

    boom = await dispatcher.dispatch(call("cron__boom"), CTX)
    refused = await dispatcher.dispatch(call("cron__refuse"), CTX)

    assert boom.success is False
    assert boom.output == "Error executing cron__boom: kaboom"
    assert refused.output == "Cron job 7 not found or not owned by this agent."


async def test_builtin_output_is_truncated() -> None:
    dispatcher, _ = make_dispatcher(max_output_chars=100)

    result = await dispatcher.dispatch(call("fs__big"), CTX)

    assert result.output == "y" * 100 + TRUNCATION_MARKER


async def test_capability_structured_data_is_pretty_json() -> None:
    dispatcher, crm = make_dispatcher()

    result = await dispatcher.dispatch(call("crm", {"action": "lookup", "params": {"email": "a@b.c"}}), CTX)

    assert result.success is True
    assert json.loads(result.output) == {"email": "a@b.c", "plan": "pro"}
    assert "\n  " in result.output
    assert crm.seen[0][2] == CapabilityContext("a1", 42)


async def test_capability_string_data_passes_through() -> None:
    dispatcher, _ = make_dispatcher()

    result = await dispatcher.dispatch(call("crm__note", {"text": "hi"}), CTX)

    assert result.output == "noted"


async def test_capability_missing_action() -> None:
    dispatcher, _ = make_dispatcher()

    result = await dispatcher.dispatch(call("crm", {"params": {}}), CTX)

    assert result.success is False
    assert result.output == "Missing required parameter: action"


async def test_capability_unknown_action_and_failure() -> None:
    dispatcher, _ = make_dispatcher()

    unknown = await dispatcher.dispatch(call("crm", {"action": "delete"}), CTX)
    failed = await dispatcher.dispatch(call("crm", {"action": "fail"}), CTX)

    assert unknown.output == "Unknown action 'delete' for crm. Available: lookup, note, fail"
    assert failed.success is False
    assert failed.output == "crm backend unavailable"


async def test_capability_not_enabled_for_agent_is_unknown() -> None:
    dispatcher, _ = make_dispatcher()
    agent = AgentRecord(id="a1", capabilities=[])

    result = await dispatcher.dispatch(call("crm", {"action": "lookup"}), CTX, agent=agent)

    assert result.output == "Error: Tool 'crm' not found"


@pytest.mark.parametrize("capabilities, expected", [([], 0), (["crm"], 1), (["crm", "ghost"], 1)])
def test_definitions_include_enabled_capabilities(capabilities: list[str], expected: int) -> None:
    dispatcher, _ = make_dispatcher()
    agent = AgentRecord(id="a1", capabilities=capabilities)

    defs = dispatcher.definitions(agent, AgentFeatures(soul_memory=False, deep_tools=False, proactive=False))

    assert len(defs) == expected
