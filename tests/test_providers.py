"""Unit tests for the provider abstraction and LiteLLM model resolution."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from agentbox.providers import litellm_provider
from agentbox.providers.base import GenerateOptions, LLMResponse, ProviderError, ToolCallRequest
from agentbox.providers.litellm_provider import LiteLLMProvider
from agentbox.providers.registry import find_by_model, find_gateway, normalize_model

from tests.conftest import ScriptedProvider, tool_call_response


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------


def test_response_kind() -> None:
    text = LLMResponse(content="hi")
    tool = tool_call_response("memory__read", {"doc_key": "x"})

    assert (text.type, text.text, text.stop_reason) == ("text", "hi", "stop")
    assert (tool.type, tool.text, tool.stop_reason) == ("tool_use", "", "tool_calls")
    assert tool.has_tool_calls is True


def test_tool_call_serializes_arguments() -> None:
    call = ToolCallRequest(id="c1", name="web", arguments={"action": "search"})

    assert call.to_openai()["function"]["arguments"] == json.dumps({"action": "search"})


async def test_generate_variants() -> None:
    provider = ScriptedProvider(["plain", "with tools"])

    text = await provider.generate([{"role": "user", "content": "x"}], GenerateOptions(model="m1"))
    response = await provider.generate_with_tools([{"role": "user", "content": "y"}], [])

    assert text == "plain"
    assert response.text == "with tools"
    assert provider.calls[0]["tools"] is None and provider.calls[0]["model"] == "m1"
    assert provider.calls[1]["tools"] is None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_lookup() -> None:
    assert normalize_model("ollama:llama3") == "ollama/llama3"
    assert find_by_model("anthropic/claude-sonnet-4-20250514").name == "anthropic"
    assert find_by_model("grok-2").name == "xai"
    assert find_by_model("mystery-model") is None
    assert find_gateway("openrouter").name == "openrouter"
    assert find_gateway(None, "sk-or-123").name == "openrouter"
    assert find_gateway("anthropic", "sk-ant") is None


@pytest.mark.parametrize(
    "model, resolved",
    [
        ("ollama:llama3", "ollama_chat/llama3"),
        ("gemini-2.0-flash", "gemini/gemini-2.0-flash"),
        ("gemini/gemini-2.0-flash", "gemini/gemini-2.0-flash"),
        ("anthropic/claude-sonnet-4-20250514", "anthropic/claude-sonnet-4-20250514"),
    ],
)
def test_model_prefix_resolution(model: str, resolved: str) -> None:
    assert LiteLLMProvider()._resolve_model(model) == resolved


def test_gateway_prefixes_every_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    provider = LiteLLMProvider(api_key="sk-or-test", provider_name="openrouter")

    assert provider._resolve_model("anthropic/claude-sonnet-4-20250514") == "openrouter/anthropic/claude-sonnet-4-20250514"


# ---------------------------------------------------------------------------
# LiteLLM calls
# ---------------------------------------------------------------------------


async def test_chat_parses_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict = {}

    async def fake_acompletion(**kwargs):
        seen.update(kwargs)
        call = SimpleNamespace(id="c1", function=SimpleNamespace(name="memory__read", arguments='{"doc_key": "soul"}'))
        message = SimpleNamespace(content=None, tool_calls=[call])
        usage = SimpleNamespace(prompt_tokens=10, completion_tokens=2, total_tokens=12)
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="tool_calls")], usage=usage)

    monkeypatch.setattr(litellm_provider, "acompletion", fake_acompletion)
    provider = LiteLLMProvider(default_model="gemini-2.0-flash", request_timeout=5)

    response = await provider.chat([{"role": "user", "content": "hi"}], tools=[{"type": "function"}])

    assert seen["model"] == "gemini/gemini-2.0-flash"
    assert seen["tool_choice"] == "auto"
    assert seen["timeout"] == 5
    assert response.tool_calls == [ToolCallRequest(id="c1", name="memory__read", arguments={"doc_key": "soul"})]
    assert response.usage["total_tokens"] == 12


async def test_chat_failure_raises_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing(**kwargs):
        raise TimeoutError("request timed out")

    monkeypatch.setattr(litellm_provider, "acompletion", failing)

    with pytest.raises(ProviderError, match="request timed out"):
        await LiteLLMProvider().chat([{"role": "user", "content": "hi"}])


async def test_malformed_response_raises_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def empty_choices(**kwargs):
        return SimpleNamespace(choices=[], usage=None)

    monkeypatch.setattr(litellm_provider, "acompletion", empty_choices)

    with pytest.raises(ProviderError, match="Error calling LLM"):
        await LiteLLMProvider().chat([{"role": "user", "content": "hi"}])
