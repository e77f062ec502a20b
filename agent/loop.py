"""
Loop controller: the finite-state machine bounding one session's iterations.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import app_config

logger = logging.getLogger(__name__)


class LoopPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"


class LoopStateError(Exception):
    """Raised on a transition the current phase does not allow"""
    pass


@dataclass(frozen=True)
class LoopState:
    """Snapshot of the controller's counters and flags"""
    iteration: int
    active: bool
    completed: bool
    ceiling: int


class LoopController:
    """Owns LoopState. completed always implies not active."""

    def __init__(self, max_iterations: Optional[int] = None):
        self.max_iterations = max_iterations or app_config.max_loop_iterations
        self._iteration = 0
        self._active = False
        self._completed = False

    def reset(self) -> None:
        """Back to Idle with iteration 0"""
        self._iteration = 0
        self._active = False
        self._completed = False

    def set_active(self, value: bool) -> None:
        if value and self._completed:
            raise LoopStateError("Cannot reactivate a completed loop; call reset() first")
        self._active = value

    def increment_iteration(self) -> int:
        if not self._active:
            raise LoopStateError(f"increment_iteration() requires an active loop (phase={self.phase.value})")
        self._iteration += 1
        logger.debug(f"Loop iteration {self._iteration}/{self.max_iterations}")
        return self._iteration

    def mark_task_completed(self) -> None:
        self._completed = True
        self._active = False

    def should_continue_loop(self) -> bool:
        if not self._active or self._completed:
            return False
        return self._iteration < self.max_iterations

    @property
    def current_iteration(self) -> int:
        return self._iteration

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def task_completed(self) -> bool:
        return self._completed

    @property
    def ceiling_reached(self) -> bool:
        return self._iteration >= self.max_iterations

    @property
    def phase(self) -> LoopPhase:
        if self._completed:
            return LoopPhase.COMPLETED
        if self._active:
            return LoopPhase.ACTIVE
        return LoopPhase.IDLE

    @property
    def state(self) -> LoopState:
        return LoopState(
            iteration=self._iteration,
            active=self._active,
            completed=self._completed,
            ceiling=self.max_iterations,
        )
