"""Command, test, web search and planning tools."""

import logging
from typing import Any, Dict, List, Optional

from duckduckgo_search import DDGS

from backend import Backend, LocalBackend
from config import app_config
from tools._common import ToolResult

logger = logging.getLogger(__name__)

# Commands that are never run directly; they come back as pending for the user
ELEVATED_PATTERNS = ("sudo", "rm -rf /", "chmod 777", "chown")

TEST_COMMANDS: Dict[str, str] = {
    "pytest": "pytest",
    "cargo": "cargo test",
    "go": "go test ./...",
}
DEFAULT_TEST_COMMAND = "npm test"

_MAX_OUTPUT_CHARS = 20000


def _truncate(text: str) -> str:
    if len(text) <= _MAX_OUTPUT_CHARS:
        return text
    return text[:10000] + "\n\n... [truncated] ...\n\n" + text[-5000:]


def execute_command(command: str = "", needs_elevation: bool = False, timeout: Optional[int] = None,
                    backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Execute a shell command, or hand back elevated commands as pending."""
    if not (command or "").strip():
        return ToolResult.fail("command is required")

    lowered = command.lower()
    if needs_elevation or any(p in lowered for p in ELEVATED_PATTERNS):
        logger.info(f"Command requires elevation, not executed: {command}")
        return ToolResult(success=True, output={
            "command": command,
            "status": "pending",
            "needsPassword": "sudo" in lowered,
            "needsElevation": True,
        })

    b = backend or LocalBackend(working_directory)
    limit = timeout or app_config.command_timeout
    stdout, stderr, rc = b.run_command(command, cwd=".", timeout=limit)
    return ToolResult(success=True, output={
        "command": command,
        "stdout": _truncate(stdout),
        "stderr": _truncate(stderr),
        "exit_code": rc,
        "status": "completed",
    })


def run_tests(framework: Optional[str] = None, backend: Optional[Backend] = None,
              working_directory: str = ".", **kw: Any) -> ToolResult:
    """Run the project's test command through execute_command."""
    command = TEST_COMMANDS.get(framework or "", DEFAULT_TEST_COMMAND)
    return execute_command(command=command, backend=backend, working_directory=working_directory)


def web_search(query: str = "", max_results: int = 5, **kw: Any) -> ToolResult:
    """Search the web with DuckDuckGo."""
    query = (query or "").strip()
    if not query:
        return ToolResult.fail("query is required", query=query, results=[])
    max_results = max(1, min(10, int(max_results or 5)))
    try:
        with DDGS() as ddgs:
            raw = list(ddgs.text(query, max_results=max_results))
    except Exception as e:
        logger.exception("web_search failed")
        return ToolResult.fail(str(e) or "Web search failed", query=query, results=[])

    results = [
        {
            "title": (r.get("title") or "").strip(),
            "url": (r.get("href") or r.get("link") or "").strip(),
            "snippet": (r.get("body") or "").strip()[:400],
        }
        for r in raw
    ]
    return ToolResult(success=True, output={"query": query, "results": results})


def create_plan(title: str = "", steps: Optional[List[Any]] = None, after_id: Optional[str] = None,
                **kw: Any) -> ToolResult:
    """Normalize a task plan; every step gets an id, status and order."""
    if not isinstance(steps, list):
        return ToolResult.fail("steps must be a list")
    validated = []
    for index, step in enumerate(steps):
        if isinstance(step, dict):
            validated.append({
                "id": str(step.get("id") or f"step_{index + 1}"),
                "description": str(step.get("description") or ""),
                "status": step.get("status") or "pending",
                "order": step.get("order") if step.get("order") is not None else index + 1,
            })
        else:
            validated.append({
                "id": f"step_{index + 1}",
                "description": str(step),
                "status": "pending",
                "order": index + 1,
            })
    output: Dict[str, Any] = {"title": title, "steps": validated}
    if after_id:
        output["after_id"] = after_id
    return ToolResult(success=True, output=output)


def task_complete(summary: str = "", **kw: Any) -> ToolResult:
    return ToolResult(success=True, output={"summary": summary, "status": "completed"})
