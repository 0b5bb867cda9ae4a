"""Tests for service wiring: profile sync, cron jobs and heartbeats with channel broadcast."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from agentbox.channels.base import ChannelAdapter
from agentbox.channels.events import ChannelMessage
from agentbox.config.schema import (
    AgentDefaults,
    AgentProfile,
    AgentsConfig,
    ChannelBinding,
    Config,
    FeaturesConfig,
    HeartbeatBinding,
)
from agentbox.services import Services, build_services, run_cron_job, sync_profiles
from agentbox.storage.memory import InMemoryStorage

from tests.conftest import ScriptedProvider


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class CapturingSlack(ChannelAdapter):
    name = "slack"

    def __init__(self) -> None:
        self.sent: list[tuple[str, ChannelMessage]] = []

    async def initialize(self, config: dict[str, Any], channel_id: str = "") -> None:
        pass

    async def send_message(self, target_id: str, message: ChannelMessage) -> None:
        self.sent.append((target_id, message))


def make_config(tmp_path: Path, profiles: list[AgentProfile] | None = None, **features: bool) -> Config:
    return Config(
        agents=AgentsConfig(defaults=AgentDefaults(workspace=str(tmp_path)), profiles=profiles or []),
        features=FeaturesConfig(**features),
    )


def ops_profile(**kwargs: Any) -> AgentProfile:
    return AgentProfile(
        id="ops",
        name="Ops Bot",
        instructions="You report on operations.",
        channels=[ChannelBinding(id=1, type="slack", config={"bot_token": "xoxb-1", "default_channel": "C42"})],
        **kwargs,
    )


async def make_services(
    tmp_path: Path,
    provider: ScriptedProvider,
    profile: AgentProfile | None = None,
    **features: bool,
) -> tuple[Services, CapturingSlack]:
    config = make_config(tmp_path, [profile or ops_profile()], **features)
    services = build_services(config, provider, storage=InMemoryStorage())
    await sync_profiles(services.storage, services.config)
    slack = CapturingSlack()
    services.router.register_adapter(slack)
    return services, slack


# ---------------------------------------------------------------------------
# Profile sync
# ---------------------------------------------------------------------------


async def test_sync_profiles_writes_agents_and_channels(tmp_path: Path) -> None:
    storage = InMemoryStorage()
    config = make_config(tmp_path, [ops_profile(features={"deep_tools": False})])

    count = await sync_profiles(storage, config)

    agent = await storage.get_agent("ops")
    channels = await storage.list_channels("ops")
    assert count == 1
    assert agent is not None
    assert agent.instructions == "You report on operations."
    assert agent.features == {"deep_tools": False}
    assert [(c.id, c.channel_type, c.config["default_channel"]) for c in channels] == [(1, "slack", "C42")]


async def test_sync_profiles_keeps_created_at(tmp_path: Path) -> None:
    storage = InMemoryStorage()
    config = make_config(tmp_path, [ops_profile()])
    await sync_profiles(storage, config)
    first = await storage.get_agent("ops")

    await sync_profiles(storage, config)

    assert (await storage.get_agent("ops")).created_at == first.created_at


async def test_sync_without_profiles_creates_default_agent_once(tmp_path: Path) -> None:
    storage = InMemoryStorage()
    config = make_config(tmp_path)

    assert await sync_profiles(storage, config) == 1
    assert await sync_profiles(storage, config) == 0
    assert [a.id for a in await storage.list_agents()] == ["default"]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def test_build_services_registers_tools_and_adapters(tmp_path: Path) -> None:
    services = build_services(make_config(tmp_path), ScriptedProvider(), storage=InMemoryStorage())

    for name in ("memory__read", "cron__schedule", "fs__read_file", "browser__navigate", "agent__spawn_task"):
        assert services.tools.has(name), name
    assert set(services.router.adapters) == {"webhook", "slack", "teams"}
    assert services.capabilities.get("web") is not None
    assert services.cron.store_path == tmp_path / "data" / "cron" / "jobs.json"


# ---------------------------------------------------------------------------
# Cron jobs
# ---------------------------------------------------------------------------


async def test_cron_job_reply_is_broadcast(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider(["All systems nominal."]))
    job = services.cron.add_job("ops", "every 1h", "Post the status report")

    assert await services.cron.run_job(job.id) is True

    assert job.state.last_status == "ok"
    assert [(target, m.text) for target, m in slack.sent] == [("C42", "All systems nominal.")]
    run = (await services.storage.list_task_runs("ops"))[0]
    assert (run.run_type, run.status, run.source_id) == ("cron", "completed", str(job.id))
    conv = await services.storage.get_conversation(run.conversation_id)
    assert conv.title == f"Cron Job #{job.id}"
    assert conv.external_user_id == "__cron__"


async def test_heartbeat_reply_is_not_broadcast(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider(["  HEARTBEAT_OK\n"]))
    job = services.cron.add_job("ops", "every 30m", "Check for anything urgent")

    reply = await run_cron_job(services, job)

    assert reply.strip() == "HEARTBEAT_OK"
    assert slack.sent == []


async def test_broadcast_requires_multi_channel(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider(["report"]), multi_channel=False)
    job = services.cron.add_job("ops", "every 1h", "Report")

    await run_cron_job(services, job)

    assert slack.sent == []


async def test_failed_cron_turn_records_failed_run(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider([RuntimeError("model unavailable")]))
    job = services.cron.add_job("ops", "every 1h", "Report")

    with pytest.raises(RuntimeError, match="model unavailable"):
        await run_cron_job(services, job)

    run = (await services.storage.list_task_runs("ops"))[0]
    assert run.status == "failed"
    assert run.error == "model unavailable"
    assert slack.sent == []


async def test_cron_job_model_overrides_agent_model(tmp_path: Path) -> None:
    provider = ScriptedProvider(["Digest sent."])
    services, _ = await make_services(tmp_path, provider)
    job = services.cron.add_job("ops", "every 1h", "Send the digest", model="openai/gpt-4o-mini")
    plain = services.cron.add_job("ops", "every 1h", "Send the digest")

    await run_cron_job(services, job)
    await run_cron_job(services, plain)

    assert provider.calls[0]["model"] == "openai/gpt-4o-mini"
    assert provider.calls[1]["model"] != "openai/gpt-4o-mini"


# ---------------------------------------------------------------------------
# Heartbeat
# ---------------------------------------------------------------------------


def heartbeat_profile(**kwargs: Any) -> AgentProfile:
    return ops_profile(heartbeat=HeartbeatBinding(enabled=True, checklist="- Check the deploy queue"), **kwargs)


async def test_heartbeat_report_is_broadcast(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider(["Deploy queue is stuck."]), heartbeat_profile())

    reply = await services.heartbeat.trigger_now("ops")

    assert reply == "Deploy queue is stuck."
    assert [(target, m.text) for target, m in slack.sent] == [("C42", "Deploy queue is stuck.")]
    run = (await services.storage.list_task_runs("ops"))[0]
    assert (run.run_type, run.status, run.result) == ("heartbeat", "completed", "Deploy queue is stuck.")
    assert "- Check the deploy queue" in run.task_text
    conv = await services.storage.get_conversation(run.conversation_id)
    assert (conv.title, conv.external_user_id) == ("Heartbeat", "__heartbeat__")
    assert services.heartbeat.last_heartbeat_at("ops") is not None


async def test_heartbeat_ok_is_recorded_but_not_broadcast(tmp_path: Path) -> None:
    services, slack = await make_services(tmp_path, ScriptedProvider(["HEARTBEAT_OK"]), heartbeat_profile())

    assert await services.heartbeat.tick() == ["ops"]

    assert slack.sent == []
    assert (await services.storage.list_task_runs("ops"))[0].status == "completed"


async def test_heartbeat_skipped_when_agent_disables_proactive(tmp_path: Path) -> None:
    provider = ScriptedProvider(["should not run"])
    services, slack = await make_services(tmp_path, provider, heartbeat_profile(features={"proactive": False}))

    assert await services.heartbeat.trigger_now("ops") is None

    assert provider.calls == []
    assert await services.storage.list_task_runs("ops") == []
    assert slack.sent == []


async def test_heartbeat_wiring_follows_profiles_and_proactive(tmp_path: Path) -> None:
    enabled = build_services(
        make_config(tmp_path, [heartbeat_profile()]), ScriptedProvider(), storage=InMemoryStorage(),
    )
    disabled = build_services(
        make_config(tmp_path, [heartbeat_profile()], proactive=False), ScriptedProvider(), storage=InMemoryStorage(),
    )

    assert list(enabled.heartbeat.configs) == ["ops"]
    assert enabled.heartbeat.store_path == tmp_path / "data" / "heartbeat" / "state.json"
    assert enabled.heartbeat.enabled is True
    assert disabled.heartbeat.enabled is False

    await disabled.heartbeat.start()
    assert disabled.heartbeat.status()["running"] is False


async def test_shutdown_without_started_components(tmp_path: Path) -> None:
    services = build_services(make_config(tmp_path), ScriptedProvider(), storage=InMemoryStorage())

    await services.shutdown()

    assert services.runner.running_count() == 0
