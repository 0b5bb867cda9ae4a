"""
记忆工具 (agent/tools/memory.py)

让 Agent 读写自己的持久化文档（soul.md、context.md 以及任意记忆文档）：
  - memory__read(doc_key)            读取文档
  - memory__write(doc_key, content)  整体覆盖写入
  - memory__append(doc_key, text)    追加一段
  - memory__search(query)            检索相关片段

由 soul_memory 特性开关控制是否暴露给模型。
"""

from typing import Any

from agentbox.agent.memory import MemoryRecall, MemoryStore
from agentbox.agent.tools.base import Tool, current_context, require

_DOC_KEY = {"type": "string", "description": "Document key, e.g. 'soul.md', 'context.md', 'notes.md'"}


class _MemoryTool(Tool):
    def __init__(self, store: MemoryStore):
        self.store = store


class MemoryReadTool(_MemoryTool):
    name = "memory__read"
    description = "[memory] Read one of your memory documents (soul.md, context.md, or any notes document)."
    parameters = {
        "type": "object",
        "properties": {"doc_key": _DOC_KEY},
        "required": ["doc_key"],
    }

    async def execute(self, doc_key: str = "", **kwargs: Any) -> str:
        require({"doc_key": doc_key}, "doc_key")
        ctx = current_context()
        content = self.store.read(ctx.agent_id, doc_key)
        if content is None:
            docs = self.store.list_documents(ctx.agent_id)
            available = ", ".join(docs) if docs else "none"
            return f"Document '{doc_key}' does not exist. Available documents: {available}"
        return content or f"Document '{doc_key}' is empty."


class MemoryWriteTool(_MemoryTool):
    name = "memory__write"
    description = "[memory] Replace the full content of a memory document. Read it first to avoid losing content."
    parameters = {
        "type": "object",
        "properties": {
            "doc_key": _DOC_KEY,
            "content": {"type": "string", "description": "New full content of the document"},
        },
        "required": ["doc_key", "content"],
    }

    async def execute(self, doc_key: str = "", content: str = "", **kwargs: Any) -> str:
        require({"doc_key": doc_key}, "doc_key")
        ctx = current_context()
        self.store.write(ctx.agent_id, doc_key, content)
        return f"Document '{doc_key}' updated ({len(content)} chars)."


class MemoryAppendTool(_MemoryTool):
    name = "memory__append"
    description = "[memory] Append a note to a memory document (created if missing)."
    parameters = {
        "type": "object",
        "properties": {
            "doc_key": _DOC_KEY,
            "text": {"type": "string", "description": "Text to append"},
        },
        "required": ["doc_key", "text"],
    }

    async def execute(self, doc_key: str = "", text: str = "", **kwargs: Any) -> str:
        require({"doc_key": doc_key, "text": text}, "doc_key", "text")
        ctx = current_context()
        self.store.append(ctx.agent_id, doc_key, text)
        return f"Appended {len(text)} chars to '{doc_key}'."


class MemorySearchTool(Tool):
    name = "memory__search"
    description = "[memory] Search your memory documents for passages relevant to a query."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "What to look for"},
            "top_k": {"type": "integer", "minimum": 1, "maximum": 20},
        },
        "required": ["query"],
    }

    def __init__(self, recall: MemoryRecall):
        self.recall = recall

    async def execute(self, query: str = "", top_k: int = 5, **kwargs: Any) -> str:
        require({"query": query}, "query")
        ctx = current_context()
        results = await self.recall.search(ctx.agent_id, query, top_k)
        if not results:
            return f"No memory matches for: {query}"
        lines = [f"{len(results)} match(es) for: {query}\n"]
        for r in results:
            start, end = r.line_range
            lines.append(f"[{r.source_key} L{start}-{end}] (score {r.similarity:.2f})\n{r.text}")
        return "\n\n".join(lines)


def memory_tools(store: MemoryStore, recall: MemoryRecall | None = None) -> list[Tool]:
    return [
        MemoryReadTool(store),
        MemoryWriteTool(store),
        MemoryAppendTool(store),
        MemorySearchTool(recall or store),
    ]
