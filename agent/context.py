"""
Session state and continuation snapshots.

SessionState is threaded explicitly through the session runner and the tool
dispatcher. The continuation manager freezes it into a ContinuationSnapshot when
a session dies from context exhaustion or a timeout.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

logger = logging.getLogger(__name__)

CONTINUATION_HEADER = "CONTINUATION SESSION - Previous session hit context limit or timeout."
CONTINUATION_ACK = "I'll continue from where we left off. Let me check the current state and proceed."
DEFAULT_PROGRESS_NOTE = "Working on task..."

_LAST_FILE_PREVIEW_CHARS = 5000
_MAX_LISTED_FILES = 10

_STATUS_MARKERS = {
    "completed": "✓",
    "in-progress": "▶",
}
_PENDING_MARKER = "☐"


@dataclass(frozen=True)
class TodoItem:
    id: str
    description: str
    status: str = "pending"
    order: int = 0

    @property
    def marker(self) -> str:
        return _STATUS_MARKERS.get(self.status, _PENDING_MARKER)


@dataclass(frozen=True)
class FileWrite:
    """Last file write proposed in a session (may be partial)"""
    path: str
    content: str
    # chunks buffered with finalize=False; nothing is on disk yet
    partial: bool = False


@dataclass(frozen=True)
class ContinuationSnapshot:
    """Compact, immutable summary of a failed session used to seed the next one"""
    original_request: str
    todos: Tuple[TodoItem, ...] = ()
    files_created: Tuple[str, ...] = ()
    last_file_write: Optional[FileWrite] = None
    progress_note: str = DEFAULT_PROGRESS_NOTE

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.todos if t.status == "completed")

    def to_prompt(self, project: Optional[str] = None) -> str:
        """Render the continuation seed message."""
        if self.todos:
            todo_summary = "\n".join(f"  {t.marker} [{t.id}] {t.description}" for t in self.todos)
        else:
            todo_summary = "No tasks yet"

        last_path = self.last_file_write.path if self.last_file_write else None
        previous = [p for p in self.files_created if p != last_path]
        if previous:
            listed = [f"  • {p}" for p in previous[:_MAX_LISTED_FILES]]
            if len(previous) > _MAX_LISTED_FILES:
                listed.append(f"  ... and {len(previous) - _MAX_LISTED_FILES} more")
            previous_files = "\n".join(listed)
        else:
            previous_files = "None"

        last_file_section = ""
        if self.last_file_write:
            if self.last_file_write.partial:
                heading = "Last file being written in chunks (not saved - write the whole file again):"
            else:
                heading = "Last file being written (may be incomplete - continue if needed):"
            last_file_section = (
                f"\n{heading}\n"
                f"  Path: {self.last_file_write.path}\n"
                f"  Content:\n```\n{self.last_file_write.content[:_LAST_FILE_PREVIEW_CHARS]}\n```\n"
            )

        project_section = ""
        if project:
            project_section = f"\n\nProject context (compressed):\nActive Project: {project}\n"

        return (
            f"{CONTINUATION_HEADER}\n\n"
            f"Original task: {self.original_request}\n\n"
            "Current status:\n"
            "To-Do List (fully preserved):\n"
            f"{todo_summary}\n\n"
            f"Files created: {len(self.files_created)}\n"
            "Previous files (paths only):\n"
            f"{previous_files}{last_file_section}\n\n"
            f"Recent progress: {self.progress_note}\n"
            f"{project_section}\n"
            "IMPORTANT: Continue from where you left off. Check the to-do list, verify files created, "
            "and continue working until task_complete is called. Do NOT restart the task."
        )


@dataclass
class SessionState:
    """Progress tracked across iterations and carried into continuations"""
    original_request: str = ""
    todos: List[TodoItem] = field(default_factory=list)
    files_created: List[str] = field(default_factory=list)
    last_file_write: Optional[FileWrite] = None
    progress_note: str = DEFAULT_PROGRESS_NOTE

    def record_file_write(self, path: str, content: str, partial: bool = False) -> None:
        if not partial and path not in self.files_created:
            self.files_created.append(path)
        if content:
            self.last_file_write = FileWrite(path=path, content=content, partial=partial)

    def replace_todos(self, steps: List[Dict[str, Any]]) -> None:
        self.todos = [
            TodoItem(
                id=str(step.get("id") or i + 1),
                description=str(step.get("description") or ""),
                status=str(step.get("status") or "pending"),
                order=int(step.get("order") or i + 1),
            )
            for i, step in enumerate(steps)
            if isinstance(step, dict)
        ]

    def record_tool_result(self, name: str, result: Dict[str, Any]) -> None:
        """Fold a successful tool result into the tracked progress."""
        if not isinstance(result, dict) or result.get("error"):
            return
        if name == "write_file" and result.get("file_path"):
            self.record_file_write(result["file_path"], result.get("content") or result.get("modified") or "")
        elif name == "create_plan" and isinstance(result.get("steps"), list):
            self.replace_todos(result["steps"])
        elif name == "task_complete" and result.get("summary"):
            self.progress_note = str(result["summary"])

    def snapshot(self) -> ContinuationSnapshot:
        return ContinuationSnapshot(
            original_request=self.original_request,
            todos=tuple(self.todos),
            files_created=tuple(self.files_created),
            last_file_write=self.last_file_write,
            progress_note=self.progress_note,
        )

    @classmethod
    def from_snapshot(cls, snapshot: ContinuationSnapshot) -> "SessionState":
        return cls(
            original_request=snapshot.original_request,
            todos=list(snapshot.todos),
            files_created=list(snapshot.files_created),
            last_file_write=snapshot.last_file_write,
            progress_note=snapshot.progress_note,
        )
