"""Unit tests for InMemoryStorage and the JSON/JSONL file-backed JsonStorage."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agentbox.storage.base import NotFoundError
from agentbox.storage.json_store import JsonStorage
from agentbox.storage.memory import InMemoryStorage
from agentbox.storage.models import AgentRecord, ChannelConfig

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


async def new_conversation(storage, agent_id: str = "a1", channel_type: str = "widget", channel_id: str | None = None):
    return await storage.create_conversation(
        agent_id, title=None, channel_type=channel_type, channel_id=channel_id, external_user_id=None,
    )


# ---------------------------------------------------------------------------
# InMemoryStorage
# ---------------------------------------------------------------------------


async def test_touch_increments_count_and_sets_activity(storage: InMemoryStorage) -> None:
    conv = await new_conversation(storage)

    await storage.touch_conversation(conv.id, T0)
    touched = await storage.touch_conversation(conv.id, T0 + timedelta(minutes=1))

    assert touched.message_count == 2
    assert touched.last_message_at == T0 + timedelta(minutes=1)


async def test_find_conversation_filters_by_window_and_channel(storage: InMemoryStorage) -> None:
    slack = await new_conversation(storage, channel_type="slack", channel_id="1:U1")
    widget = await new_conversation(storage)
    await storage.touch_conversation(slack.id, T0)
    await storage.touch_conversation(widget.id, T0 - timedelta(hours=1))

    found = await storage.find_conversation("a1", "slack", "1:U1", T0 - timedelta(minutes=30))
    stale = await storage.find_conversation("a1", "widget", None, T0 - timedelta(minutes=30))
    other_channel = await storage.find_conversation("a1", "slack", "1:U2", T0 - timedelta(minutes=30))

    assert found is not None and found.id == slack.id
    assert stale is None
    assert other_channel is None


async def test_find_unused_conversation_returns_newest(storage: InMemoryStorage) -> None:
    await new_conversation(storage)
    newest = await new_conversation(storage)
    used = await new_conversation(storage)
    await storage.touch_conversation(used.id, T0)

    found = await storage.find_unused_conversation("a1", "widget", None)

    assert found is not None and found.id == newest.id


async def test_recent_messages_newest_first(storage: InMemoryStorage) -> None:
    conv = await new_conversation(storage)
    for text in ("one", "two", "three"):
        await storage.add_message(conv.id, "user", text)

    recent = await storage.recent_messages(conv.id, 2)

    assert [m.content for m in recent] == ["three", "two"]


async def test_missing_conversation_raises(storage: InMemoryStorage) -> None:
    with pytest.raises(NotFoundError):
        await storage.get_conversation(404)
    with pytest.raises(NotFoundError):
        await storage.add_message(404, "user", "hello")
    with pytest.raises(NotFoundError):
        await storage.finish_task_run(404, status="completed")


async def test_list_channels_filters(storage: InMemoryStorage) -> None:
    await storage.save_channel(ChannelConfig(id=2, agent_id="a1", channel_type="slack"))
    await storage.save_channel(ChannelConfig(id=1, agent_id="a1", channel_type="webhook", enabled=False))
    await storage.save_channel(ChannelConfig(id=3, agent_id="a2", channel_type="teams"))

    assert [c.id for c in await storage.list_channels("a1")] == [2]
    assert [c.id for c in await storage.list_channels("a1", enabled_only=False)] == [1, 2]
    assert [c.id for c in await storage.list_channels()] == [2, 3]


async def test_task_runs_newest_first(storage: InMemoryStorage) -> None:
    first = await storage.create_task_run("a1", "cron", "x", source_id="7")
    second = await storage.create_task_run("a1", "background", "y")
    await storage.finish_task_run(first.id, status="completed", result="done", conversation_id=3)

    runs = await storage.list_task_runs("a1")

    assert [r.id for r in runs] == [second.id, first.id]
    assert runs[1].status == "completed"
    assert runs[1].conversation_id == 3
    assert runs[1].completed_at is not None
    assert runs[0].status == "running"


# ---------------------------------------------------------------------------
# JsonStorage
# ---------------------------------------------------------------------------


async def test_json_storage_round_trips_everything(tmp_path: Path) -> None:
    store = JsonStorage(tmp_path / "data")
    conv = await new_conversation(store, channel_type="slack", channel_id="1:U1")
    await store.add_message(conv.id, "user", "hi")
    await store.add_message(conv.id, "assistant", "hello", {"tools_used": []})
    await store.touch_conversation(conv.id, T0)
    await store.set_summary(conv.id, "Greetings exchanged.")
    await store.save_agent(AgentRecord(id="a1", name="Ada", features={"proactive": False}))
    await store.save_channel(ChannelConfig(id=1, agent_id="a1", channel_type="slack", config={"bot_token": "t"}))
    run = await store.create_task_run("a1", "cron", "digest", source_id="1")
    await store.finish_task_run(run.id, status="failed", error="boom")

    reloaded = JsonStorage(tmp_path / "data")

    loaded = await reloaded.get_conversation(conv.id)
    assert loaded.channel_id == "1:U1"
    assert loaded.last_message_at == T0
    assert loaded.session_summary == "Greetings exchanged."
    messages = await reloaded.recent_messages(conv.id, 10)
    assert [(m.role, m.content) for m in messages] == [("assistant", "hello"), ("user", "hi")]
    assert messages[0].metadata == {"tools_used": []}
    assert (await reloaded.get_agent("a1")).features == {"proactive": False}
    assert (await reloaded.get_channel(1)).config == {"bot_token": "t"}
    assert (await reloaded.list_task_runs())[0].error == "boom"


async def test_json_storage_writes_jsonl_with_metadata_line(tmp_path: Path) -> None:
    store = JsonStorage(tmp_path)
    conv = await new_conversation(store)
    await store.add_message(conv.id, "user", "hi")

    lines = (tmp_path / "conversations" / f"{conv.id}.jsonl").read_text().splitlines()

    assert json.loads(lines[0])["_type"] == "metadata"
    assert json.loads(lines[1])["content"] == "hi"


async def test_json_storage_continues_ids_after_reload(tmp_path: Path) -> None:
    store = JsonStorage(tmp_path)
    conv = await new_conversation(store)
    await store.add_message(conv.id, "user", "hi")
    await store.create_task_run("a1", "background", "x")

    reloaded = JsonStorage(tmp_path)
    next_conv = await new_conversation(reloaded)
    next_msg = await reloaded.add_message(next_conv.id, "user", "again")
    next_run = await reloaded.create_task_run("a1", "background", "y")

    assert next_conv.id == conv.id + 1
    assert next_msg.id == 2
    assert next_run.id == 2


async def test_json_storage_skips_corrupt_files(tmp_path: Path) -> None:
    (tmp_path / "conversations").mkdir()
    (tmp_path / "conversations" / "1.jsonl").write_text("{not json\n")
    (tmp_path / "agents.json").write_text("[oops")

    store = JsonStorage(tmp_path)

    assert await store.list_agents() == []
    with pytest.raises(NotFoundError):
        await store.get_conversation(1)
