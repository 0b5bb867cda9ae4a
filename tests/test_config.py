"""Tests for config loading, key conversion and provider matching."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agentbox.config.loader import camel_to_snake, convert_keys, convert_to_camel, load_config, save_config, snake_to_camel
from agentbox.config.schema import Config, ProviderConfig, ProvidersConfig


# ---------------------------------------------------------------------------
# Key conversion
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("camel, snake", [("maxTokens", "max_tokens"), ("apiBase", "api_base"), ("model", "model")])
def test_key_name_conversion(camel: str, snake: str) -> None:
    assert camel_to_snake(camel) == snake
    assert snake_to_camel(snake) == camel


def test_extra_headers_are_left_alone() -> None:
    data = {"providers": {"openai": {"apiKey": "k", "extraHeaders": {"X-Team-Id": "42"}}}}

    converted = convert_keys(data)

    assert converted["providers"]["openai"] == {"api_key": "k", "extra_headers": {"X-Team-Id": "42"}}
    assert convert_to_camel(converted) == data


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_load_config_from_camel_case_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "agents": {
            "defaults": {"workspace": str(tmp_path / "ws"), "maxTokens": 1024},
            "profiles": [{
                "id": "support",
                "instructions": "Help customers.",
                "features": {"deepTools": False},
                "channels": [{"id": 3, "type": "webhook", "config": {"callback_url": "https://example.com/hook"}}],
                "heartbeat": {"enabled": True, "intervalMinutes": 15, "quietHoursStart": "23:00", "quietHoursEnd": "08:00"},
            }],
        },
        "features": {"multiChannel": False},
        "heartbeat": {"pollIntervalSeconds": 30},
        "session": {"activeWindowMinutes": 10},
        "tools": {"maxIterations": 4, "filesystem": {"allowedDirectories": ["/srv/shared"]}},
    }))

    config = load_config(path)

    assert config.agents.defaults.max_tokens == 1024
    assert config.workspace_path == tmp_path / "ws"
    assert config.data_path == tmp_path / "ws" / "data"
    profile = config.get_profile("support")
    assert profile is not None
    assert profile.features == {"deep_tools": False}
    assert profile.channels[0].type == "webhook"
    assert profile.heartbeat is not None
    assert (profile.heartbeat.interval_minutes, profile.heartbeat.quiet_hours_start) == (15, "23:00")
    assert config.heartbeat.poll_interval_seconds == 30
    assert config.features.multi_channel is False
    assert config.session.active_window_minutes == 10
    assert config.session.summarize_threshold == 20
    assert config.tools.max_iterations == 4
    assert config.tools.filesystem.allowed_directories == ["/srv/shared"]
    assert config.get_profile("missing") is None


def test_missing_or_broken_file_gives_defaults(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    for path in (tmp_path / "absent.json", broken):
        config = load_config(path)
        assert config.tools.max_iterations == 10
        assert config.features.soul_memory is True


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.agents.defaults.model = "openai/gpt-4o"
    config.context.memory_top_k = 8

    save_config(config, path)

    raw = json.loads(path.read_text())
    assert raw["context"]["memoryTopK"] == 8
    assert load_config(path).agents.defaults.model == "openai/gpt-4o"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTBOX_AGENTS__DEFAULTS__MODEL", "gemini/gemini-2.0-flash")

    assert Config().agents.defaults.model == "gemini/gemini-2.0-flash"


# ---------------------------------------------------------------------------
# Provider matching
# ---------------------------------------------------------------------------


def test_provider_matched_by_model_keyword() -> None:
    config = Config(providers=ProvidersConfig(
        anthropic=ProviderConfig(api_key="sk-ant"),
        openai=ProviderConfig(api_key="sk-oai"),
    ))

    assert config.get_provider_name("anthropic/claude-sonnet-4-20250514") == "anthropic"
    assert config.get_api_key("openai/gpt-4o") == "sk-oai"


def test_gateway_fallback_uses_default_api_base() -> None:
    config = Config(providers=ProvidersConfig(openrouter=ProviderConfig(api_key="sk-or")))

    assert config.get_provider_name("anthropic/claude-sonnet-4-20250514") == "openrouter"
    assert config.get_api_base("anthropic/claude-sonnet-4-20250514") == "https://openrouter.ai/api/v1"


def test_no_provider_configured() -> None:
    config = Config()

    assert config.get_provider() is None
    assert config.get_api_key() is None
    assert config.get_api_base() is None
