"""Unit tests for CapabilityRegistry and the built-in web capability."""

from __future__ import annotations

import json

import httpx
import pytest

from agentbox.capabilities.base import CapabilityContext
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.capabilities.web import WebCapability, html_to_markdown, strip_tags

CTX = CapabilityContext(agent_id="a1", conversation_id=7)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def web_with(handler, api_key: str | None = "test-key") -> WebCapability:
    return WebCapability(api_key=api_key, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_descriptor_lists_actions() -> None:
    registry = CapabilityRegistry()
    registry.register(WebCapability(api_key="k"))

    descriptor = registry.descriptor("web")

    fn = descriptor["function"]
    assert fn["name"] == "web"
    assert fn["parameters"]["properties"]["action"]["enum"] == ["search", "fetch"]
    assert fn["parameters"]["required"] == ["action"]
    assert "- search: " in fn["description"]
    assert "search(query, count)" in fn["parameters"]["properties"]["params"]["description"]
    assert registry.descriptor("missing") is None
    assert registry.descriptors(["missing", "web"]) == [descriptor]


async def test_execute_never_raises() -> None:
    registry = CapabilityRegistry()
    registry.register(WebCapability(api_key="k"))

    missing = await registry.execute("crm", "lookup", {}, CTX)
    unknown = await registry.execute("web", "crawl", {}, CTX)
    bad_param = await registry.execute("web", "fetch", {}, CTX)

    assert missing.success is False
    assert missing.error == "Capability 'crm' not found"
    assert unknown.error == "Unknown action 'crawl' for web. Available: search, fetch"
    assert bad_param.error == "Missing required parameter: url"


# ---------------------------------------------------------------------------
# Web search
# ---------------------------------------------------------------------------


async def test_search_formats_results() -> None:
    seen: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"web": {"results": [
            {"title": "Python", "url": "https://python.org", "description": "The language"},
            {"title": "PyPI", "url": "https://pypi.org"},
        ]}})

    output = await web_with(handler).execute("search", {"query": "python", "count": 2}, CTX)

    assert output.startswith("Results for: python\n")
    assert "1. Python\n   https://python.org\n   The language" in output
    assert "2. PyPI\n   https://pypi.org" in output
    assert seen["request"].headers["X-Subscription-Token"] == "test-key"
    assert seen["request"].url.params["count"] == "2"


async def test_search_without_results() -> None:
    output = await web_with(lambda r: httpx.Response(200, json={})).search("nothing")

    assert output == "No results for: nothing"


async def test_search_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BRAVE_API_KEY", raising=False)
    registry = CapabilityRegistry()
    registry.register(web_with(lambda r: httpx.Response(200), api_key=None))

    result = await registry.execute("web", "search", {"query": "x"}, CTX)

    assert result.success is False
    assert result.error == "BRAVE_API_KEY not configured"


# ---------------------------------------------------------------------------
# Web fetch
# ---------------------------------------------------------------------------


async def test_fetch_json_is_pretty_printed() -> None:
    web = web_with(lambda r: httpx.Response(200, json={"ok": True}))

    result = await web.fetch("https://api.example.com/status")

    assert result["extractor"] == "json"
    assert json.loads(result["text"]) == {"ok": True}
    assert result["status"] == 200


async def test_fetch_plain_text_is_truncated() -> None:
    web = web_with(lambda r: httpx.Response(200, text="a" * 500, headers={"content-type": "text/plain"}))

    result = await web.fetch("https://example.com/file.txt", max_chars=100)

    assert result["extractor"] == "raw"
    assert result["truncated"] is True
    assert result["length"] == 100


async def test_fetch_rejects_non_http_urls() -> None:
    registry = CapabilityRegistry()
    registry.register(web_with(lambda r: httpx.Response(200)))

    result = await registry.execute("web", "fetch", {"url": "file:///etc/passwd"}, CTX)

    assert result.success is False
    assert result.error == "Only http/https allowed, got 'file'"


# ---------------------------------------------------------------------------
# HTML helpers
# ---------------------------------------------------------------------------


def test_html_helpers() -> None:
    fragment = '<h2>Title</h2><p>See <a href="https://x.y">the docs</a></p><ul><li>one</li></ul>'

    assert strip_tags("<b>bold</b> &amp; <script>x()</script>plain") == "bold & plain"
    markdown = html_to_markdown(fragment)
    assert "## Title" in markdown
    assert "[the docs](https://x.y)" in markdown
    assert "- one" in markdown
