"""
记忆系统模块 - 为每个 Agent 提供基于文件的持久化文档与记忆检索。

每个 Agent 拥有独立的文档目录 <workspace>/agents/<agent_id>/：
- soul.md     ：Agent 人格与核心指令（soul_memory 开启时作为系统提示词的主体）
- context.md  ：补充背景知识，拼接在 soul.md 之后
- 其他 *.md   ：Agent 通过 memory__write / memory__append 写入的任意记忆文档

【记忆召回】
MemoryRecall 是召回接口：search(agent_id, query, top_k) -> 按相关度排序的片段列表。
MemoryStore 自带一个词法实现：把文档按标题/长度切块，用"查询词命中比例"作为相似度。

【Java 开发者类比】
MemoryStore 类似于一个以文件系统为后端的 DocumentRepository，
MemoryRecall 类似于 Spring AI 的 VectorStore.similaritySearch() 接口。
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from agentbox.utils.helpers import ensure_dir, safe_filename

SOUL_DOC = "soul.md"
CONTEXT_DOC = "context.md"

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_HEADING_RE = re.compile(r"^#{1,6}\s")


@dataclass
class MemorySnippet:
    """召回的一段记忆。line_range 为 (起始行, 结束行)，从 1 开始计数。"""
    text: str
    similarity: float
    source_key: str
    line_range: tuple[int, int] = (0, 0)


@dataclass
class DocumentChunk:
    text: str
    line_start: int
    line_end: int


class MemoryRecall(ABC):
    """记忆召回接口。"""

    @abstractmethod
    async def search(self, agent_id: str, query: str, top_k: int = 5) -> list[MemorySnippet]:
        pass


def chunk_document(content: str, max_chunk_size: int = 800) -> list[DocumentChunk]:
    """
    把文档切成若干块。

    遇到 Markdown 标题或当前块即将超过 max_chunk_size 时开始新块，
    每块记录行号范围以便溯源。
    """
    if not content or not content.strip():
        return []

    chunks: list[DocumentChunk] = []
    current = ""
    start = 1
    line_no = 1
    for line in content.split("\n"):
        is_heading = bool(_HEADING_RE.match(line))
        would_exceed = len(current + "\n" + line) > max_chunk_size
        if (is_heading or would_exceed) and current.strip():
            chunks.append(DocumentChunk(current.strip(), start, line_no - 1))
            current = ""
            start = line_no
        current += ("\n" if current else "") + line
        line_no += 1

    if current.strip():
        chunks.append(DocumentChunk(current.strip(), start, line_no - 1))
    return chunks


def _tokens(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


class MemoryStore(MemoryRecall):
    """
    文件型的 Agent 文档存储。

    属性:
        root: 所有 Agent 文档目录的父目录（workspace/agents/）
    """

    def __init__(self, workspace: Path):
        self.root = ensure_dir(workspace / "agents")

    def agent_dir(self, agent_id: str) -> Path:
        return ensure_dir(self.root / safe_filename(agent_id))

    def _path(self, agent_id: str, doc_key: str) -> Path:
        key = safe_filename(doc_key.strip())
        if not key.endswith(".md"):
            key += ".md"
        return self.agent_dir(agent_id) / key

    def read(self, agent_id: str, doc_key: str) -> str | None:
        """读取文档内容，不存在时返回 None。"""
        path = self._path(agent_id, doc_key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, agent_id: str, doc_key: str, content: str) -> Path:
        """整体覆盖写入文档。"""
        path = self._path(agent_id, doc_key)
        path.write_text(content, encoding="utf-8")
        return path

    def append(self, agent_id: str, doc_key: str, text: str) -> Path:
        """在文档末尾追加一段文本（与已有内容之间空一行）。"""
        path = self._path(agent_id, doc_key)
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        separator = "\n\n" if existing.strip() else ""
        path.write_text(existing.rstrip() + separator + text.strip() + "\n", encoding="utf-8")
        return path

    def list_documents(self, agent_id: str) -> list[str]:
        return sorted(p.name for p in self.agent_dir(agent_id).glob("*.md"))

    async def search(self, agent_id: str, query: str, top_k: int = 5) -> list[MemorySnippet]:
        """
        词法检索：相似度 = 查询词在片段中出现的比例。

        返回相似度大于 0 的前 top_k 个片段，相似度相同时按文档名和行号排序。
        """
        query_tokens = _tokens(query)
        if not query_tokens:
            return []

        snippets = []
        for doc_key in self.list_documents(agent_id):
            content = self.read(agent_id, doc_key) or ""
            for chunk in chunk_document(content):
                overlap = len(query_tokens & _tokens(chunk.text))
                if overlap == 0:
                    continue
                snippets.append(MemorySnippet(
                    text=chunk.text,
                    similarity=overlap / len(query_tokens),
                    source_key=doc_key,
                    line_range=(chunk.line_start, chunk.line_end),
                ))

        snippets.sort(key=lambda s: (-s.similarity, s.source_key, s.line_range))
        return snippets[:top_k]
