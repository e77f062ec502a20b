"""
Polycodex - command-line front end for the multi-provider orchestration core.
Streams chunks to the terminal with Rich.
"""

import argparse
import asyncio
import difflib
import json
import logging
import os
import signal
import sys
from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from agent.core import Orchestrator
from agent.events import Chunk, ChunkType
from backend import LocalBackend
from config import app_config, provider_settings
from tools.approval import AutoApproveGate, InMemoryApprovalGate

# Configure logging to file so it doesn't interleave with streamed output
logging.basicConfig(
    filename=app_config.log_file,
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================
# Constants
# ============================================================

TOOL_ICONS = {
    "read_file":       "\U0001f4c4 ",
    "peek_file":       "\U0001f440 ",
    "write_file":      "✏️ ",
    "list_files":      "\U0001f4c2 ",
    "search_code":     "\U0001f50d ",
    "execute_command": "▶ ",
    "run_tests":       "\U0001f9ea ",
    "web_search":      "\U0001f310 ",
    "create_plan":     "\U0001f4cb ",
    "task_complete":   "✅ ",
}

RESULT_PREVIEW_CHARS = 400


def _summarize_args(args: Dict[str, Any]) -> str:
    parts = []
    for key, value in (args or {}).items():
        if key == "content":
            parts.append(f"content=<{len(str(value))} chars>")
            continue
        text = json.dumps(value) if not isinstance(value, str) else value
        parts.append(f"{key}={text[:60]}")
    return ", ".join(parts)


# ============================================================
# Console renderer
# ============================================================

class ConsoleRenderer:
    """Renders chunks on a Rich console and reviews proposed file changes."""

    def __init__(self, console: Console, gate: Optional[InMemoryApprovalGate] = None):
        self.console = console
        self.gate = gate
        self._at_line_start = True

    async def on_chunk(self, chunk: Chunk) -> None:
        if chunk.type == ChunkType.TEXT:
            self.console.print(chunk.content, end="", markup=False, highlight=False)
            self._at_line_start = chunk.content.endswith("\n")
            return
        self._newline()
        if chunk.type == ChunkType.FUNCTION_CALL:
            icon = TOOL_ICONS.get(chunk.name or "", "• ")
            self.console.print(Text.from_markup(
                f"{icon}[bold #58a6ff]{rich_escape(chunk.name or '')}[/] "
                f"[#6e7681]{rich_escape(_summarize_args(chunk.data or {}))}[/]"
            ))
        elif chunk.type == ChunkType.FUNCTION_RESULT:
            await self._render_result(chunk)
        elif chunk.type == ChunkType.CONTINUATION:
            self.console.print(Text(f"↻ {chunk.content}", style="bold #d29922"))
        elif chunk.type == ChunkType.ERROR:
            kind = chunk.kind.value if chunk.kind else "ERROR"
            self.console.print(Panel(Text(chunk.content), title=f"[bold red]{kind}[/]", border_style="red"))
        elif chunk.type == ChunkType.DONE:
            self.console.print(Text("✓ Done", style="#3fb950"))

    def _newline(self) -> None:
        if not self._at_line_start:
            self.console.print()
            self._at_line_start = True

    async def _render_result(self, chunk: Chunk) -> None:
        data = chunk.data if isinstance(chunk.data, dict) else {"result": chunk.data}
        if data.get("error"):
            self.console.print(Text(f"   ✗ {data['error']}", style="#f85149"))
            return
        if chunk.name == "write_file" and data.get("status") == "pending" and self.gate is not None:
            await self._review_change(data)
            return
        preview = json.dumps(data, ensure_ascii=False)
        if len(preview) > RESULT_PREVIEW_CHARS:
            preview = preview[:RESULT_PREVIEW_CHARS] + "..."
        self.console.print(Text(f"   {preview}", style="#6e7681"))

    async def _review_change(self, data: Dict[str, Any]) -> None:
        path = data.get("file_path", "")
        original = data.get("originalContent") or ""
        proposed = data.get("content") or ""
        diff = "".join(difflib.unified_diff(
            original.splitlines(keepends=True),
            proposed.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        ))
        title = f"{'New file' if data.get('isNewFile') else 'Modified'}: {path}"
        self.console.print(Panel(Syntax(diff or proposed, "diff"), title=title, border_style="#d29922"))
        loop = asyncio.get_event_loop()
        approved = await loop.run_in_executor(None, lambda: Confirm.ask("Apply this change?", default=True))
        if approved:
            self.gate.approve(path)
            self.console.print(Text(f"   ✓ Applied {path}", style="#3fb950"))
        else:
            self.gate.reject(path)
            self.console.print(Text(f"   ✗ Rejected {path}", style="#f85149"))


async def _print_json(chunk: Chunk) -> None:
    sys.stdout.write(json.dumps(chunk.to_dict(), ensure_ascii=False) + "\n")
    sys.stdout.flush()


# ============================================================
# Commands
# ============================================================

def _print_providers(console: Console, orchestrator: Orchestrator) -> None:
    table = Table(title="Providers")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Free")
    table.add_column("Description", style="#6e7681")
    for p in orchestrator.list_providers():
        table.add_row(p["id"], p["name"], "yes" if p["isFree"] else "", p["description"])
    console.print(table)


async def _print_models(console: Console, orchestrator: Orchestrator, provider: Optional[str]) -> None:
    models = await orchestrator.list_models()
    table = Table(title="Models")
    table.add_column("Provider", style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Limits", style="#6e7681")
    for m in models:
        if provider and m["provider"] != provider:
            continue
        name = f"{m['name']} ★" if m.get("recommended") else m["name"]
        table.add_row(m["provider"], m["id"], name, m.get("limits", ""))
    console.print(table)


async def run(args: argparse.Namespace) -> int:
    console = Console()
    backend = LocalBackend(os.path.abspath(args.directory))
    gate = AutoApproveGate(backend) if args.auto_approve else InMemoryApprovalGate(backend)
    orchestrator = Orchestrator(gate=gate, backend=backend)

    if args.list_providers:
        _print_providers(console, orchestrator)
        return 0
    if args.list_models:
        await _print_models(console, orchestrator, args.provider)
        return 0
    if not args.prompt:
        console.print("[red]A prompt is required[/red]")
        return 2

    if args.json:
        on_chunk = _print_json
    else:
        reviewer = gate if isinstance(gate, InMemoryApprovalGate) else None
        on_chunk = ConsoleRenderer(console, reviewer).on_chunk

    options = {
        "provider": args.provider or provider_settings.default_provider,
        "model": args.model or "",
        "project": args.project or "",
    }
    loop = asyncio.get_event_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable; Ctrl-C will interrupt instead of cancelling")

    outcome = await orchestrator.chat_stream(" ".join(args.prompt), options, on_chunk)
    if outcome is None or outcome.status == "failed":
        return 1
    return 0


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Polycodex - multi-provider coding agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py "add a README"                      Run with the default provider
  python main.py -p anthropic "fix the failing test"  Use a specific provider
  python main.py --list-models -p ollama              Show models for one provider
        """,
    )
    parser.add_argument("prompt", nargs="*", help="Task for the agent")
    parser.add_argument("-p", "--provider", default=None, help="Provider id (default: DEFAULT_PROVIDER or gemini)")
    parser.add_argument("-m", "--model", default=None, help="Model id (default: the provider's default model)")
    parser.add_argument(
        "-d", "--directory", "--dir",
        default=app_config.working_directory,
        help="Working directory for the agent (default: current directory)",
    )
    parser.add_argument("--project", default=None, help="Project name carried into continuation sessions")
    parser.add_argument("--auto-approve", action="store_true", help="Write proposed file changes without asking")
    parser.add_argument("--json", action="store_true", help="Print chunks as JSON lines")
    parser.add_argument("--list-models", action="store_true", help="List available models and exit")
    parser.add_argument("--list-providers", action="store_true", help="List providers and exit")

    args = parser.parse_args()

    working_dir = os.path.abspath(args.directory)
    if not os.path.isdir(working_dir):
        print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
