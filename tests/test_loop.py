"""Unit tests for ToolLoopExecutor."""

from __future__ import annotations

from agentbox.agent.features import AgentFeatures
from agentbox.agent.loop import MAX_ITERATIONS_REPLY

from tests.conftest import Harness, LoopingProvider, ScriptedProvider, build_harness, tool_call_response

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]


# ---------------------------------------------------------------------------
# Plain generation
# ---------------------------------------------------------------------------


async def test_tools_disabled_makes_single_plain_call(tmp_path) -> None:
    provider = ScriptedProvider(["hello there"])
    h = build_harness(tmp_path, provider)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1", tools_enabled=False)

    assert result.reply == "hello there"
    assert result.tools_used == []
    assert len(provider.calls) == 1
    assert provider.calls[0]["tools"] is None


async def test_no_tool_definitions_falls_back_to_plain_call(tmp_path) -> None:
    provider = ScriptedProvider(["plain"])
    h = build_harness(tmp_path, provider)
    no_memory = AgentFeatures(soul_memory=False)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1", features=no_memory)

    assert result.reply == "plain"
    assert provider.calls[0]["tools"] is None


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


async def test_tool_call_then_text(tmp_path) -> None:
    provider = ScriptedProvider([
        tool_call_response("memory__write", {"doc_key": "notes", "content": "remember me"}),
        "Saved.",
    ])
    h = build_harness(tmp_path, provider)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1", conversation_id=1)

    assert result.reply == "Saved."
    assert result.iterations == 2
    assert len(provider.calls) == 2
    assert [u.name for u in result.tools_used] == ["memory__write"]
    assert result.tools_used[0].success is True
    assert h.memory.read("a1", "notes") == "remember me"

    second_call = provider.calls[1]["messages"]
    assert second_call[-2]["role"] == "assistant"
    assert second_call[-2]["tool_calls"][0]["id"] == "call_1"
    assert second_call[-1] == {
        "role": "tool",
        "tool_call_id": "call_1",
        "name": "memory__write",
        "content": "Document 'notes' updated (11 chars).",
    }


async def test_input_messages_are_not_mutated(tmp_path) -> None:
    provider = ScriptedProvider([tool_call_response("memory__read", {"doc_key": "x"}), "done"])
    h = build_harness(tmp_path, provider)
    messages = list(MESSAGES)

    await h.executor.run(messages, model=None, agent_id="a1")

    assert messages == MESSAGES


async def test_unknown_tool_is_reported_and_loop_continues(tmp_path) -> None:
    provider = ScriptedProvider([tool_call_response("does_not_exist", {}), "recovered"])
    h = build_harness(tmp_path, provider)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1")

    assert result.reply == "recovered"
    usage = result.tools_used[0]
    assert usage.success is False
    assert usage.output == "Error: Tool 'does_not_exist' not found"


async def test_progress_callback_receives_tool_names(tmp_path) -> None:
    provider = ScriptedProvider([tool_call_response("memory__read", {"doc_key": "x"}), "done"])
    h = build_harness(tmp_path, provider)
    seen: list[str] = []

    async def on_progress(name: str) -> None:
        seen.append(name)

    await h.executor.run(MESSAGES, model=None, agent_id="a1", on_progress=on_progress)

    assert seen == ["memory__read"]


# ---------------------------------------------------------------------------
# Iteration cap
# ---------------------------------------------------------------------------


async def test_iteration_cap_returns_fixed_reply(tmp_path) -> None:
    provider = LoopingProvider()
    h = build_harness(tmp_path, provider)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1")

    assert result.reply == MAX_ITERATIONS_REPLY
    assert provider.calls == 10
    assert result.iterations == 10
    assert len(result.tools_used) == 10


async def test_custom_iteration_cap(tmp_path) -> None:
    provider = LoopingProvider()
    h: Harness = build_harness(tmp_path, provider, max_iterations=3)

    result = await h.executor.run(MESSAGES, model=None, agent_id="a1")

    assert result.reply == MAX_ITERATIONS_REPLY
    assert provider.calls == 3
