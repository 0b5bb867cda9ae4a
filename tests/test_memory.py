"""Unit tests for MemoryStore and the memory__ tools."""

from __future__ import annotations

from pathlib import Path

from agentbox.agent.memory import MemoryStore, chunk_document
from agentbox.agent.tools.base import ToolContext, use_context
from agentbox.agent.tools.memory import memory_tools
from agentbox.agent.tools.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_registry(store: MemoryStore) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_all(memory_tools(store))
    return registry


async def run(registry: ToolRegistry, name: str, agent_id: str = "a1", **params) -> tuple[str, bool]:
    with use_context(ToolContext(agent_id=agent_id)):
        return await registry.execute(name, params)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def test_documents_are_scoped_per_agent(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path)

    store.write("a1", "notes", "for a1")
    store.write("a2", "notes.md", "for a2")

    assert store.read("a1", "notes.md") == "for a1"
    assert store.read("a2", "notes") == "for a2"
    assert (tmp_path / "agents" / "a1" / "notes.md").exists()
    assert store.read("a3", "notes") is None


def test_append_separates_with_blank_line(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path)

    store.append("a1", "log", "first")
    store.append("a1", "log", "second")

    assert store.read("a1", "log") == "first\n\nsecond\n"


def test_chunk_document_splits_on_headings() -> None:
    chunks = chunk_document("# One\nalpha\n# Two\nbeta")

    assert [c.text for c in chunks] == ["# One\nalpha", "# Two\nbeta"]
    assert [(c.line_start, c.line_end) for c in chunks] == [(1, 2), (3, 4)]
    assert chunk_document("   ") == []


async def test_search_ranks_by_overlap(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path)
    store.write("a1", "a.md", "pricing tiers and discounts")
    store.write("a1", "b.md", "pricing only")
    store.write("a2", "c.md", "pricing tiers discounts")

    results = await store.search("a1", "pricing discounts", top_k=5)

    assert [r.source_key for r in results] == ["a.md", "b.md"]
    assert results[0].similarity == 1.0
    assert results[1].similarity == 0.5


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


async def test_read_missing_document_lists_available(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path)
    store.write("a1", "soul.md", "I am Ada.")
    registry = make_registry(store)

    output, success = await run(registry, "memory__read", doc_key="plans")

    assert success is True
    assert output == "Document 'plans' does not exist. Available documents: soul.md"


async def test_write_then_read(tmp_path: Path) -> None:
    registry = make_registry(MemoryStore(tmp_path))

    written, _ = await run(registry, "memory__write", doc_key="context.md", content="Acme Corp")
    read, _ = await run(registry, "memory__read", doc_key="context.md")

    assert written == "Document 'context.md' updated (9 chars)."
    assert read == "Acme Corp"


async def test_append_and_search(tmp_path: Path) -> None:
    registry = make_registry(MemoryStore(tmp_path))

    appended, _ = await run(registry, "memory__append", doc_key="facts", text="Favourite colour is teal")
    found, _ = await run(registry, "memory__search", query="colour teal")
    missing, _ = await run(registry, "memory__search", query="zebra")

    assert appended == "Appended 24 chars to 'facts'."
    assert found.startswith("1 match(es) for: colour teal")
    assert "[facts.md L1-2] (score 1.00)" in found
    assert missing == "No memory matches for: zebra"


async def test_tools_respect_agent_isolation(tmp_path: Path) -> None:
    registry = make_registry(MemoryStore(tmp_path))

    await run(registry, "memory__write", agent_id="a1", doc_key="secret", content="a1 only")
    output, _ = await run(registry, "memory__read", agent_id="a2", doc_key="secret")

    assert output.startswith("Document 'secret' does not exist.")


async def test_missing_doc_key_is_rejected(tmp_path: Path) -> None:
    registry = make_registry(MemoryStore(tmp_path))

    output, success = await run(registry, "memory__write", doc_key="", content="x")

    assert success is False
    assert output == "Missing required parameter: doc_key"
