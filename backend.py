"""
Backend abstraction for file and command operations used by the tools.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Abstract backend for file system and command operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """List entries in a directory. Returns list of {name, path, type, size?}."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a file or directory exists."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Check if a path is a directory."""

    @abstractmethod
    def run_command(self, command: str, cwd: str = ".", timeout: int = 300) -> Tuple[str, str, int]:
        """Run a shell command. Returns (stdout, stderr, returncode)."""

    def cancel_running_command(self) -> bool:
        """Kill the currently running command, if any. Returns True if killed."""
        return False

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory (``~`` expands to home)."""
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.working_directory, path))


class LocalBackend(Backend):
    """Backend that operates on the local filesystem.

    With confine=True every resolved path must stay under the working directory.
    """

    def __init__(self, working_directory: str = ".", confine: bool = False):
        self._working_directory = os.path.abspath(os.path.expanduser(working_directory))
        self._confine = confine
        self._active_process: Optional[subprocess.Popen] = None

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        if not self._confine:
            return
        real = os.path.abspath(resolved)
        wd = self._working_directory
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def _full(self, path: str) -> str:
        full = self.resolve_path(path) if path else self._working_directory
        self._ensure_under_working(full)
        return full

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full = self._full(path)
        entries = []
        for name in sorted(os.listdir(full)):
            child = os.path.join(full, name)
            if os.path.isdir(child):
                entries.append({"name": name, "path": child, "type": "folder"})
            else:
                entry: Dict[str, Any] = {"name": name, "path": child, "type": "file"}
                if os.path.isfile(child):
                    entry["size"] = os.path.getsize(child)
                entries.append(entry)
        return entries

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full) or ".", exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(self._full(path))

    def run_command(self, command: str, cwd: str = ".", timeout: int = 300) -> Tuple[str, str, int]:
        full_cwd = self._full(cwd) if cwd != "." else self._working_directory
        proc = subprocess.Popen(
            command, shell=True, cwd=full_cwd,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            preexec_fn=os.setsid,  # process group for clean kill
        )
        self._active_process = proc
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill_process(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        finally:
            self._active_process = None
        return stdout or "", stderr or "", proc.returncode

    def cancel_running_command(self) -> bool:
        """Kill the currently running subprocess, if any. Returns True if killed."""
        proc = self._active_process
        if proc and proc.poll() is None:
            self._kill_process(proc)
            return True
        return False

    @staticmethod
    def _kill_process(proc: subprocess.Popen) -> None:
        """Kill a process and its entire process group."""
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass
        try:
            proc.kill()
        except (ProcessLookupError, OSError):
            pass
