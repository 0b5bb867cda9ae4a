"""
文件系统工具模块 (agent/tools/filesystem.py)

模块职责：
    提供 fs__* 工具组，允许 Agent 在"允许目录"范围内操作本地文件：
      读写追加、列目录、查看元数据、删除、移动、复制、建目录、搜索、查看允许目录。

安全设计：
    FsSandbox.resolve() 会：
    1. 展开 ~ 并解析为绝对路径（符号链接一并解析，消除 ../ 与链接逃逸）
    2. 检查路径是否落在某个允许目录之内
    不在范围内时抛出 ToolError("Access denied: ...")。
    读写单个文件的上限均为 10MB。

由 deep_tools 特性开关控制是否暴露给模型。

设计模式对比（Java 视角）：
    类似于 Java NIO 的 Files 工具类，FsSandbox 类似于 SecurityManager 的文件访问控制。
"""

import base64
import fnmatch
import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from agentbox.agent.tools.base import Tool, ToolError, current_context

MAX_DIR_ENTRIES = 1000
MAX_RECURSIVE_DEPTH = 10


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _mtime(path: Path) -> str:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()


def _require_path(value: str | None, name: str = "path") -> str:
    if not value:
        raise ToolError(f"Missing required parameter: {name}")
    return value


class FsSandbox:
    """允许目录集合 + 路径校验。"""

    def __init__(
        self,
        allowed_directories: list[str | Path],
        max_read_bytes: int = 10 * 1024 * 1024,
        max_write_bytes: int = 10 * 1024 * 1024,
    ):
        self.allowed = [Path(d).expanduser().resolve() for d in allowed_directories]
        self.max_read_bytes = max_read_bytes
        self.max_write_bytes = max_write_bytes

    def existing_directories(self) -> list[Path]:
        return [d for d in self.allowed if d.is_dir()]

    def resolve(self, path: str, label: str = "Access denied") -> Path:
        """解析路径并确认它在允许目录内，否则抛出 ToolError。"""
        allowed = self.existing_directories()
        if not allowed:
            raise ToolError(f"{label}: No allowed directories configured. Set tools.filesystem.allowedDirectories.")

        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = allowed[0] / candidate
        # 目标可能还不存在（写文件），strict=False 时 resolve 只解析已存在的部分
        resolved = candidate.resolve()

        if not any(resolved == d or d in resolved.parents for d in allowed):
            raise ToolError(
                f"{label}: Path is outside allowed directories. "
                f"Allowed: {', '.join(str(d) for d in allowed)}"
            )
        return resolved


class _FsTool(Tool):
    def __init__(self, sandbox: FsSandbox):
        self.sandbox = sandbox

    def _audit(self, operation: str, target: Any, detail: str = "") -> None:
        ctx = current_context()
        logger.info(f"fs {operation}: {target} agent={ctx.agent_id} {detail}".rstrip())


class ReadFileTool(_FsTool):
    name = "fs__read_file"
    description = (
        "[filesystem] Read the contents of a file. Returns the text content. "
        "For binary files, returns base64-encoded data. Max 10MB."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to read"},
            "encoding": {"type": "string", "description": 'Text encoding (default: "utf-8"). Use "base64" for binary files.'},
            "offset": {"type": "integer", "description": "Start reading from this byte offset"},
            "limit": {"type": "integer", "description": "Maximum bytes to read"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str = "", encoding: str = "utf-8", offset: int = 0,
                      limit: int | None = None, **kwargs: Any) -> str:
        target = self.sandbox.resolve(_require_path(path))
        if not target.exists():
            raise ToolError(f"File not found: {path}")
        if not target.is_file():
            raise ToolError(f"Not a file: {path}")

        size = target.stat().st_size
        cap = self.sandbox.max_read_bytes
        limit = min(limit or cap, cap)
        if size > cap and not offset and limit >= size:
            raise ToolError(
                f"File too large ({size / (1024 * 1024):.2f}MB). "
                f"Maximum is {cap // (1024 * 1024)}MB. Use offset/limit to read portions."
            )

        with open(target, "rb") as f:
            f.seek(max(offset or 0, 0))
            data = f.read(limit)

        self._audit("read_file", target, f"{len(data)} bytes")
        if encoding == "base64":
            return base64.b64encode(data).decode()
        return data.decode(encoding or "utf-8", errors="replace")


class WriteFileTool(_FsTool):
    name = "fs__write_file"
    description = (
        "[filesystem] Write content to a file. Creates the file if it doesn't exist, overwrites if it does. "
        "Creates parent directories automatically. Max 10MB."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to write"},
            "content": {"type": "string", "description": "Content to write to the file"},
            "encoding": {"type": "string", "description": 'Use "base64" if content is base64-encoded binary'},
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str = "", content: str | None = None, encoding: str = "utf-8",
                      **kwargs: Any) -> str:
        _require_path(path)
        if content is None:
            raise ToolError("Missing required parameter: content")
        if len(content) > self.sandbox.max_write_bytes:
            raise ToolError(f"Content too large ({len(content)} bytes). Maximum is {self.sandbox.max_write_bytes} bytes.")

        target = self.sandbox.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if encoding == "base64":
            data = base64.b64decode(content)
            target.write_bytes(data)
            unit = "bytes (base64)"
        else:
            target.write_text(content, encoding="utf-8")
            unit = "characters"

        self._audit("write_file", target, f"{len(content)} chars")
        return f"Successfully wrote {len(content)} {unit} to {target}"


class AppendFileTool(_FsTool):
    name = "fs__append_file"
    description = "[filesystem] Append content to the end of a file. Creates the file if it doesn't exist."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file"},
            "content": {"type": "string", "description": "Content to append"},
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str = "", content: str | None = None, **kwargs: Any) -> str:
        _require_path(path)
        if content is None:
            raise ToolError("Missing required parameter: content")
        target = self.sandbox.resolve(path)
        existing = target.stat().st_size if target.exists() else 0
        if existing + len(content) > self.sandbox.max_write_bytes:
            raise ToolError(f"Resulting file would exceed {self.sandbox.max_write_bytes} bytes.")

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a", encoding="utf-8") as f:
            f.write(content)

        self._audit("append_file", target, f"{len(content)} chars")
        return f"Successfully appended {len(content)} characters to {target}"


class ListDirectoryTool(_FsTool):
    name = "fs__list_directory"
    description = "[filesystem] List contents of a directory. Returns file names with metadata (size, type, modified date)."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the directory"},
            "recursive": {"type": "boolean", "description": "Include subdirectories recursively (max depth: 10)"},
            "pattern": {"type": "string", "description": 'Filter by glob pattern (e.g., "*.txt")'},
            "includeHidden": {"type": "boolean", "description": "Include hidden files (default: false)"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str = "", recursive: bool = False, pattern: str | None = None,
                      includeHidden: bool = False, **kwargs: Any) -> str:
        root = self.sandbox.resolve(_require_path(path))
        if not root.is_dir():
            raise ToolError(f"Not a directory: {path}")

        lines: list[str] = []

        def scan(directory: Path, depth: int) -> None:
            if depth > MAX_RECURSIVE_DEPTH or len(lines) >= MAX_DIR_ENTRIES:
                return
            for item in sorted(directory.iterdir(), key=lambda p: p.name):
                if len(lines) >= MAX_DIR_ENTRIES:
                    return
                if not includeHidden and item.name.startswith("."):
                    continue
                is_dir = item.is_dir()
                if not pattern or fnmatch.fnmatch(item.name.lower(), pattern.lower()):
                    try:
                        size = "<DIR>" if is_dir else _format_size(item.stat().st_size)
                        rel = str(item.relative_to(root))
                        lines.append(f"{'[DIR]' if is_dir else '[FILE]'} {rel:<50} {size:>12} {_mtime(item)}")
                    except OSError:
                        continue
                if recursive and is_dir:
                    scan(item, depth + 1)

        scan(root, 0)
        self._audit("list_directory", root, f"{len(lines)} entries")
        truncated = " (truncated)" if len(lines) >= MAX_DIR_ENTRIES else ""
        return f"Directory: {path}\nEntries: {len(lines)}{truncated}\n\n" + "\n".join(lines)


class FileInfoTool(_FsTool):
    name = "fs__file_info"
    description = "[filesystem] Get detailed metadata about a file or directory (size, modified, permissions, type)."
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Path to the file or directory"}},
        "required": ["path"],
    }

    async def execute(self, path: str = "", **kwargs: Any) -> str:
        target = self.sandbox.resolve(_require_path(path))
        if not target.exists():
            raise ToolError(f"Path not found: {path}")
        st = target.stat()
        info = {
            "path": str(target),
            "type": "directory" if target.is_dir() else "symlink" if target.is_symlink() else "file",
            "size": st.st_size,
            "sizeFormatted": _format_size(st.st_size),
            "modified": _mtime(target),
            "permissions": oct(st.st_mode & 0o777),
        }
        return json.dumps(info, indent=2)


class DeleteTool(_FsTool):
    name = "fs__delete"
    description = (
        "[filesystem] Delete a file or empty directory. Use with caution. "
        "For safety, prefer moving files instead of deleting."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file or directory to delete"},
            "recursive": {"type": "boolean", "description": "Delete directories recursively"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str = "", recursive: bool = False, **kwargs: Any) -> str:
        target = self.sandbox.resolve(_require_path(path))
        if target in self.sandbox.allowed:
            raise ToolError("Access denied: refusing to delete an allowed root directory")
        if not target.exists():
            raise ToolError(f"Path not found: {path}")

        if target.is_dir():
            if recursive:
                shutil.rmtree(target)
                result = f"Deleted directory and contents: {target}"
            else:
                if any(target.iterdir()):
                    raise ToolError("Directory is not empty. Use recursive: true to delete it with its contents.")
                target.rmdir()
                result = f"Deleted empty directory: {target}"
        else:
            target.unlink()
            result = f"Deleted file: {target}"

        self._audit("delete", target)
        return result


class _TransferTool(_FsTool):
    parameters = {
        "type": "object",
        "properties": {
            "source": {"type": "string", "description": "Source path"},
            "destination": {"type": "string", "description": "Destination path"},
            "overwrite": {"type": "boolean", "description": "Overwrite destination if it exists (default: false)"},
        },
        "required": ["source", "destination"],
    }

    def _paths(self, source: str, destination: str, overwrite: bool) -> tuple[Path, Path]:
        if not source or not destination:
            raise ToolError("Missing required parameters: source and destination")
        src = self.sandbox.resolve(source, "Source access denied")
        dst = self.sandbox.resolve(destination, "Destination access denied")
        if not src.exists():
            raise ToolError(f"Source not found: {source}")
        if dst.exists() and not overwrite:
            raise ToolError("Destination already exists. Use overwrite: true to replace.")
        dst.parent.mkdir(parents=True, exist_ok=True)
        return src, dst


class MoveTool(_TransferTool):
    name = "fs__move"
    description = "[filesystem] Move or rename a file or directory."

    async def execute(self, source: str = "", destination: str = "", overwrite: bool = False, **kwargs: Any) -> str:
        src, dst = self._paths(source, destination, overwrite)
        if dst.exists():
            shutil.rmtree(dst) if dst.is_dir() else dst.unlink()
        shutil.move(str(src), str(dst))
        self._audit("move", src, f"-> {dst}")
        return f"Moved {source} to {destination}"


class CopyTool(_TransferTool):
    name = "fs__copy"
    description = "[filesystem] Copy a file or directory."

    async def execute(self, source: str = "", destination: str = "", overwrite: bool = False, **kwargs: Any) -> str:
        src, dst = self._paths(source, destination, overwrite)
        if src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=overwrite)
        else:
            shutil.copy2(src, dst)
        self._audit("copy", src, f"-> {dst}")
        return f"Copied {source} to {destination}"


class MkdirTool(_FsTool):
    name = "fs__mkdir"
    description = "[filesystem] Create a directory. Creates parent directories if they don't exist."
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Path to the directory to create"}},
        "required": ["path"],
    }

    async def execute(self, path: str = "", **kwargs: Any) -> str:
        target = self.sandbox.resolve(_require_path(path))
        target.mkdir(parents=True, exist_ok=True)
        self._audit("mkdir", target)
        return f"Created directory: {target}"


class SearchTool(_FsTool):
    name = "fs__search"
    description = "[filesystem] Search for files matching a pattern within a directory."
    parameters = {
        "type": "object",
        "properties": {
            "directory": {"type": "string", "description": "Directory to search in"},
            "pattern": {"type": "string", "description": "Glob-style pattern: *.txt, **/*.md"},
            "contentMatch": {"type": "string", "description": "Only files containing this text"},
            "maxResults": {"type": "integer", "description": "Maximum results (default: 100)"},
        },
        "required": ["directory", "pattern"],
    }

    async def execute(self, directory: str = "", pattern: str = "", contentMatch: str | None = None,
                      maxResults: int | None = None, **kwargs: Any) -> str:
        if not directory or not pattern:
            raise ToolError("Missing required parameters: directory and pattern")
        root = self.sandbox.resolve(directory)
        if not root.is_dir():
            raise ToolError(f"Not a directory: {directory}")
        max_results = min(maxResults or 100, 500)

        results: list[str] = []
        for item in sorted(root.rglob("*")):
            if len(results) >= max_results:
                break
            if not item.is_file():
                continue
            rel = str(item.relative_to(root))
            if not (fnmatch.fnmatch(rel.lower(), pattern.lower()) or fnmatch.fnmatch(item.name.lower(), pattern.lower())):
                continue
            size = item.stat().st_size
            line = f"{rel} ({_format_size(size)}, {_mtime(item)})"
            if contentMatch:
                if size >= 1024 * 1024:
                    continue
                try:
                    text = item.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue
                match = next((ln for ln in text.splitlines() if contentMatch in ln), None)
                if match is None:
                    continue
                line += f"\n  -> {match.strip()[:200]}"
            results.append(line)

        self._audit("search", f"{root}/{pattern}", f"{len(results)} matches")
        capped = " (max reached)" if len(results) >= max_results else ""
        return f"Search: {pattern} in {directory}\nFound: {len(results)} files{capped}\n\n" + "\n".join(results)


class AllowedDirectoriesTool(_FsTool):
    name = "fs__get_allowed_directories"
    description = "[filesystem] Get the list of directories the agent is allowed to access."
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        dirs = self.sandbox.existing_directories()
        if not dirs:
            return "No allowed directories configured. Set tools.filesystem.allowedDirectories in the config."
        listing = "\n".join(f"  - {d}" for d in dirs)
        return f"Allowed directories:\n{listing}"


def filesystem_tools(sandbox: FsSandbox) -> list[Tool]:
    return [
        ReadFileTool(sandbox),
        WriteFileTool(sandbox),
        AppendFileTool(sandbox),
        ListDirectoryTool(sandbox),
        FileInfoTool(sandbox),
        DeleteTool(sandbox),
        MoveTool(sandbox),
        CopyTool(sandbox),
        MkdirTool(sandbox),
        SearchTool(sandbox),
        AllowedDirectoriesTool(sandbox),
    ]
