"""Unit tests for heartbeat due checks, quiet hours and HeartbeatService."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agentbox.config.schema import HeartbeatBinding
from agentbox.heartbeat.service import (
    DEFAULT_CHECKLIST,
    HeartbeatService,
    build_heartbeat_prompt,
    is_due,
    is_heartbeat_ok,
    is_in_quiet_hours,
)

from tests.conftest import FakeClock


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 1, hour, minute, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingHeartbeat:
    def __init__(self, reply: str | None = "HEARTBEAT_OK", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, agent_id: str, prompt: str) -> str | None:
        self.calls.append((agent_id, prompt))
        if self.fail:
            raise RuntimeError("provider down")
        return self.reply


def make_service(tmp_path: Path, clock: FakeClock, callback=None, **configs: HeartbeatBinding) -> HeartbeatService:
    return HeartbeatService(tmp_path / "heartbeat" / "state.json", configs=configs, on_heartbeat=callback, clock=clock)


# ---------------------------------------------------------------------------
# Prompt and reply
# ---------------------------------------------------------------------------


def test_prompt_wraps_checklist() -> None:
    prompt = build_heartbeat_prompt("- [ ] Check open tickets")

    assert prompt.startswith("You are performing a periodic check. Review your checklist:\n\n- [ ] Check open tickets")
    assert prompt.endswith("If nothing needs attention, respond with HEARTBEAT_OK.")


def test_prompt_without_checklist_uses_default() -> None:
    assert DEFAULT_CHECKLIST in build_heartbeat_prompt("   ")


@pytest.mark.parametrize(
    "reply, ok",
    [("HEARTBEAT_OK", True), ("  HEARTBEAT_OK\n", True), ("HEARTBEAT_OK, but disk is 91% full", False), ("", False)],
)
def test_heartbeat_ok_detection(reply: str, ok: bool) -> None:
    assert is_heartbeat_ok(reply) is ok


# ---------------------------------------------------------------------------
# Quiet hours
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "now, start, end, quiet",
    [
        (at(12), "09:00", "17:00", True),
        (at(9), "09:00", "17:00", True),
        (at(17), "09:00", "17:00", False),
        (at(8, 59), "09:00", "17:00", False),
        (at(23, 30), "23:00", "08:00", True),
        (at(2), "23:00:00", "08:00:00", True),
        (at(8), "23:00", "08:00", False),
        (at(12), "23:00", "08:00", False),
        (at(12), "12:00", "12:00", False),
        (at(12), "09:00", None, False),
        (at(12), "nine", "17:00", False),
    ],
)
def test_quiet_hours(now: datetime, start: str | None, end: str | None, quiet: bool) -> None:
    assert is_in_quiet_hours(now, start, end) is quiet


def test_unknown_timezone_falls_back_to_utc() -> None:
    assert is_in_quiet_hours(at(23, 30), "23:00", "08:00", "Mars/Olympus_Mons") is True


# ---------------------------------------------------------------------------
# Due check
# ---------------------------------------------------------------------------


def test_due_requires_enabled() -> None:
    assert is_due(HeartbeatBinding(enabled=False), None, at(12)) is False
    assert is_due(HeartbeatBinding(enabled=True), None, at(12)) is True


def test_due_waits_for_full_interval() -> None:
    config = HeartbeatBinding(enabled=True, interval_minutes=30)

    assert is_due(config, at(11, 31), at(12)) is False
    assert is_due(config, at(11, 30), at(12)) is True


def test_not_due_during_quiet_hours() -> None:
    config = HeartbeatBinding(enabled=True, quiet_hours_start="23:00", quiet_hours_end="08:00")

    assert is_due(config, None, at(3)) is False
    assert is_due(config, None, at(9)) is True


# ---------------------------------------------------------------------------
# HeartbeatService
# ---------------------------------------------------------------------------


async def test_tick_runs_only_due_agents(tmp_path: Path, clock: FakeClock) -> None:
    callback = RecordingHeartbeat()
    service = make_service(
        tmp_path, clock, callback,
        ops=HeartbeatBinding(enabled=True, interval_minutes=30, checklist="- disk usage"),
        idle=HeartbeatBinding(enabled=False),
    )

    assert await service.tick() == ["ops"]
    assert callback.calls[0][0] == "ops"
    assert "- disk usage" in callback.calls[0][1]
    assert service.last_heartbeat_at("ops") == clock.now

    clock.advance(minutes=29)
    assert await service.tick() == []
    clock.advance(minutes=1)
    assert await service.tick() == ["ops"]
    assert len(callback.calls) == 2


async def test_quiet_hours_hold_back_heartbeat(tmp_path: Path, clock: FakeClock) -> None:
    callback = RecordingHeartbeat()
    quiet = HeartbeatBinding(enabled=True, quiet_hours_start="11:00", quiet_hours_end="13:00")
    service = make_service(tmp_path, clock, callback, ops=quiet)

    assert await service.tick() == []
    clock.advance(hours=1)
    assert await service.tick() == ["ops"]


async def test_failed_heartbeat_still_records_time(tmp_path: Path, clock: FakeClock) -> None:
    service = make_service(tmp_path, clock, RecordingHeartbeat(fail=True), ops=HeartbeatBinding(enabled=True))

    assert await service.trigger_now("ops") is None

    assert service.last_heartbeat_at("ops") == clock.now
    assert service.due_agents() == []


async def test_trigger_now_ignores_unknown_agent(tmp_path: Path, clock: FakeClock) -> None:
    callback = RecordingHeartbeat()
    service = make_service(tmp_path, clock, callback)

    assert await service.trigger_now("ghost") is None
    assert callback.calls == []


async def test_last_run_survives_restart(tmp_path: Path, clock: FakeClock) -> None:
    config = HeartbeatBinding(enabled=True)
    first = make_service(tmp_path, clock, RecordingHeartbeat(), ops=config)
    await first.tick()

    raw = json.loads((tmp_path / "heartbeat" / "state.json").read_text())
    restarted = make_service(tmp_path, clock, RecordingHeartbeat(), ops=config)

    assert raw["lastHeartbeatAt"]["ops"] == clock.now.isoformat()
    assert restarted.last_heartbeat_at("ops") == clock.now
    assert restarted.due_agents() == []
    clock.advance(minutes=30)
    assert restarted.due_agents() == ["ops"]


async def test_corrupt_state_file_is_ignored(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "heartbeat" / "state.json"
    path.parent.mkdir(parents=True)
    path.write_text("{broken")

    service = make_service(tmp_path, clock, ops=HeartbeatBinding(enabled=True))

    assert service.last_heartbeat_at("ops") is None
    assert service.due_agents() == ["ops"]


async def test_start_and_stop(tmp_path: Path, clock: FakeClock) -> None:
    service = make_service(tmp_path, clock, ops=HeartbeatBinding(enabled=True))
    disabled = HeartbeatService(tmp_path / "other.json", enabled=False)

    await service.start()
    await disabled.start()

    assert service.status() == {"enabled": True, "running": True, "agents": 1, "poll_interval_s": 60}
    assert disabled.status()["running"] is False
    service.stop()
    assert service.status()["running"] is False
