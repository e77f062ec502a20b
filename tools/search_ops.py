"""Code search tool."""

import os
import logging
from typing import Any, Dict, List, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult
from tools.gitignore import _load_gitignore, _is_ignored

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".py", ".md", ".json", ".html", ".css", ".scss",
)
_MAX_FILES = 100


def _iter_code_files(root: str, limit: int = _MAX_FILES) -> List[str]:
    """Relative paths of code files under root, honoring .gitignore and the skip lists."""
    spec = _load_gitignore(root)
    found: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir
        dirnames[:] = sorted(
            d for d in dirnames
            if not _is_ignored(os.path.join(rel_dir, d).replace(os.sep, "/"), d, True, spec)
        )
        for name in sorted(filenames):
            if not name.endswith(CODE_EXTENSIONS):
                continue
            rel = os.path.join(rel_dir, name).replace(os.sep, "/")
            if _is_ignored(rel, name, False, spec):
                continue
            found.append(rel)
            if len(found) >= limit:
                return found
    return found


def search_code(pattern: str = "", searchPath: Optional[str] = None,
                backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Plain substring search over the first 100 code files of a tree."""
    term = pattern or kw.get("search_term", "")
    if not term:
        return ToolResult.fail("No search term provided")

    b = backend or LocalBackend(working_directory)
    root = b.resolve_path(searchPath) if searchPath else b.working_directory
    if not os.path.isdir(root):
        return ToolResult.fail(f"Directory not found: {searchPath}")

    matches: List[Dict[str, Any]] = []
    for rel in _iter_code_files(root):
        try:
            with open(os.path.join(root, rel), "r", encoding="utf-8", errors="replace") as f:
                for lineno, line in enumerate(f, 1):
                    if term in line:
                        matches.append({"file": rel, "line": lineno, "content": line.strip()})
        except OSError as e:
            logger.debug(f"search_code skipped {rel}: {e}")
    return ToolResult(success=True, output={"search_term": term, "matches": matches})
