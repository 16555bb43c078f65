"""文件系统工具：read_file / write_file / list_files。"""

import asyncio
import fnmatch
from pathlib import Path
from typing import Any

from nene.agent.tools.base import Approval, Tool, ToolResult


def _resolve_path(path: str, allowed_dir: Path | None) -> Path:
    """解析路径并做越界检查，违规时抛出 PermissionError。"""
    if ".." in Path(path).parts:
        raise PermissionError("path traversal not allowed")
    resolved = Path(path).expanduser().resolve()
    if allowed_dir is not None:
        root = allowed_dir.expanduser().resolve()
        if resolved != root and root not in resolved.parents:
            raise PermissionError(f"path {path} is outside allowed directory {root}")
    return resolved


class ReadFileTool(Tool):
    """读取文本文件。"""

    def __init__(self, allowed_dir: Path | None = None):
        self._allowed_dir = allowed_dir

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a file"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The path to the file to read"},
            },
            "required": ["path"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        return Approval("Agent wants to read a file", f"Read: {params.get('path', '')}")

    async def execute(self, path: str, **kwargs: Any) -> ToolResult:
        try:
            file_path = _resolve_path(path, self._allowed_dir)
        except PermissionError as e:
            return ToolResult.error(str(e))
        try:
            content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return ToolResult.error(f"failed to read file: {e}")
        return ToolResult.ok(content)


class WriteFileTool(Tool):
    """写入文本文件，必要时创建父目录。"""

    def __init__(self, allowed_dir: Path | None = None):
        self._allowed_dir = allowed_dir

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The path to the file to write"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            "required": ["path", "content"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        preview = params.get("content", "")
        if len(preview) > 100:
            preview = preview[:100] + "..."
        return Approval("Agent wants to write to a file", f"Write to {params.get('path', '')}:\n{preview}")

    async def execute(self, path: str, content: str, **kwargs: Any) -> ToolResult:
        try:
            file_path = _resolve_path(path, self._allowed_dir)
        except PermissionError as e:
            return ToolResult.error(str(e))

        def _write() -> None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            return ToolResult.error(f"failed to write file: {e}")
        return ToolResult.ok(f"File written successfully: {file_path}")


class ListFilesTool(Tool):
    """列出目录内容，目录名以 / 结尾。"""

    def __init__(self, allowed_dir: Path | None = None):
        self._allowed_dir = allowed_dir

    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List files in a directory"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The directory path to list files from"},
                "pattern": {"type": "string", "description": "Optional glob pattern to filter files"},
            },
            "required": ["path"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        return Approval("Agent wants to list files", f"List files in: {params.get('path', '')}")

    async def execute(self, path: str, pattern: str = "", **kwargs: Any) -> ToolResult:
        try:
            dir_path = _resolve_path(path, self._allowed_dir)
        except PermissionError as e:
            return ToolResult.error(str(e))

        try:
            entries = sorted(dir_path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            return ToolResult.error(f"failed to read directory: {e}")

        names = []
        for entry in entries:
            if pattern and not fnmatch.fnmatch(entry.name, pattern):
                continue
            names.append(entry.name + "/" if entry.is_dir() else entry.name)
        return ToolResult.ok("\n".join(names))
