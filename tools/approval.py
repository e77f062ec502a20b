"""
Approval gate for proposed file changes.

The orchestrator never writes files itself: write_file proposals go to the gate,
and dependent operations (tests, commands) wait until the gate reports no
pending approvals.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from backend import Backend

logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    path: str
    original: Optional[str]
    proposed: str
    is_new_file: bool


class ApprovalGate(ABC):
    """What the core sees of the approval workflow."""

    @abstractmethod
    def has_pending_approvals(self) -> bool:
        """True while any proposed change awaits a decision."""

    @abstractmethod
    def propose_change(self, path: str, original: Optional[str], proposed: str, is_new_file: bool) -> None:
        """Register a proposed change. Must not block."""


class InMemoryApprovalGate(ApprovalGate):
    """Pending diffs keyed by path, decided by approve()/reject().

    A newer proposal for the same path replaces the older one. Approved changes
    are written through the backend when one is given.
    """

    def __init__(self, backend: Optional[Backend] = None):
        self.backend = backend
        self._pending: Dict[str, PendingChange] = {}
        self._lock = threading.Lock()

    def has_pending_approvals(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending(self) -> List[PendingChange]:
        with self._lock:
            return list(self._pending.values())

    def propose_change(self, path: str, original: Optional[str], proposed: str, is_new_file: bool) -> None:
        with self._lock:
            self._pending[path] = PendingChange(path, original, proposed, is_new_file)
        logger.info(f"Pending change proposed: {path} ({'new file' if is_new_file else 'modified'})")

    def approve(self, path: str) -> bool:
        with self._lock:
            change = self._pending.pop(path, None)
        if change is None:
            return False
        if self.backend is not None:
            self.backend.write_file(change.path, change.proposed)
        logger.info(f"Change approved: {path}")
        return True

    def reject(self, path: str) -> bool:
        with self._lock:
            change = self._pending.pop(path, None)
        if change is None:
            return False
        logger.info(f"Change rejected: {path}")
        return True

    def approve_all(self) -> int:
        return sum(1 for change in self.pending() if self.approve(change.path))


class AutoApproveGate(ApprovalGate):
    """Applies every proposal immediately through the backend."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self.applied: List[str] = []

    def has_pending_approvals(self) -> bool:
        return False

    def propose_change(self, path: str, original: Optional[str], proposed: str, is_new_file: bool) -> None:
        self.backend.write_file(path, proposed)
        self.applied.append(path)
        logger.info(f"Auto-approved change written: {path}")
