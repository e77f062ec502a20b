"""File operation tools: read, peek, write (as a pending change), list."""

import os
import logging
from typing import Any, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult

logger = logging.getLogger(__name__)

_DEFAULT_PREVIEW_LINES = 50


def _require_path(path: Optional[str]) -> Optional[ToolResult]:
    """Return an error ToolResult if path is empty/whitespace; else None."""
    if not (path or "").strip():
        return ToolResult.fail("No path provided")
    return None


def read_file(path: str = "", start_line: Optional[int] = None, end_line: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Read the full file, or a 1-based inclusive line range."""
    path = path or kw.get("file_path", "")
    err = _require_path(path)
    if err:
        return err
    b = backend or LocalBackend(working_directory)
    if not b.file_exists(path):
        return ToolResult.fail(f"File not found: {path}", file_path=path)
    if b.is_dir(path):
        return ToolResult.fail(f"Path is a directory: {path}", file_path=path)

    content = b.read_file(path)
    lines = content.split("\n")
    if start_line or end_line:
        start = max(1, int(start_line or 1))
        end = min(len(lines), int(end_line or len(lines)))
        return ToolResult(success=True, output={
            "file_path": path,
            "content": "\n".join(lines[start - 1:end]),
            "line_count": len(lines),
            "start_line": start,
            "end_line": end,
        })
    return ToolResult(success=True, output={"file_path": path, "content": content, "line_count": len(lines)})


def peek_file(path: str = "", preview_lines: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Full content for short files, otherwise the first and last N lines."""
    path = path or kw.get("file_path", "")
    err = _require_path(path)
    if err:
        return err
    b = backend or LocalBackend(working_directory)
    if not b.file_exists(path):
        return ToolResult.fail(f"File not found: {path}")

    content = b.read_file(path)
    lines = content.split("\n")
    count = int(preview_lines or _DEFAULT_PREVIEW_LINES)
    if len(lines) <= count * 2:
        return ToolResult(success=True, output={"file_path": path, "content": content, "line_count": len(lines)})

    summary = (
        f"File: {os.path.basename(b.resolve_path(path))}\n"
        f"Lines: {len(lines)}\n\n"
        f"--- First {count} lines ---\n" + "\n".join(lines[:count]) + "\n...\n"
        f"--- Last {count} lines ---\n" + "\n".join(lines[-count:])
    )
    return ToolResult(success=True, output={"file_path": path, "content": summary, "line_count": len(lines)})


def write_file(path: str = "", content: str = "", mode: str = "overwrite",
               backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Describe a file change as a pending diff. Nothing is written here.

    The dispatcher hands the result to the approval gate, which decides when
    (and whether) the change reaches disk.
    """
    path = path or kw.get("file_path", "")
    err = _require_path(path)
    if err:
        return err
    if not isinstance(content, str):
        return ToolResult.fail("content must be a string", file_path=path)

    b = backend or LocalBackend(working_directory)
    original = ""
    is_new = True
    if b.file_exists(path) and not b.is_dir(path):
        original = b.read_file(path)
        is_new = False

    proposed = original + content if mode == "append" else content
    return ToolResult(success=True, output={
        "file_path": path,
        "status": "pending",
        "isNewFile": is_new,
        "originalContent": original,
        "content": proposed,
        "modified": proposed,
    })


def list_files(directory_path: str = ".", backend: Optional[Backend] = None,
               working_directory: str = ".", **kw: Any) -> ToolResult:
    """List files and folders of one directory."""
    directory_path = directory_path or kw.get("path") or "."
    b = backend or LocalBackend(working_directory)
    if not b.file_exists(directory_path):
        return ToolResult.fail(f"Directory not found: {directory_path}")
    if not b.is_dir(directory_path):
        return ToolResult.fail(f"Not a directory: {directory_path}")
    return ToolResult(success=True, output={
        "directory_path": directory_path,
        "files": b.list_dir(directory_path),
    })
