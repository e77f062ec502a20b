"""
Continuation manager.

Runs sessions back to back while they die from context exhaustion or a
timeout, seeding each follow-up session with a compact snapshot of the
previous one's progress instead of its full history.
"""

import logging
from typing import Callable, List, Optional

from agent.context import CONTINUATION_ACK, ContinuationSnapshot, SessionState
from agent.events import Chunk, ChunkEmitter, ErrorKind
from agent.execution import SessionOutcome, SessionRunner, SessionStatus
from agent.history import ChatTurn
from agent.prompts import CONTINUE_PROMPT
from config import app_config

logger = logging.getLogger(__name__)

_REASONS = {
    ErrorKind.CONTEXT_EXHAUSTED: "Context limit reached.",
    ErrorKind.TIMEOUT: "Request timed out.",
}

# Builds a fresh runner for one session from its state
RunnerFactory = Callable[[SessionState], SessionRunner]


def continuation_seed(snapshot: ContinuationSnapshot, project: Optional[str] = None) -> List[ChatTurn]:
    """Opening turns of a follow-up session: the snapshot prompt and the assistant's acknowledgement."""
    return [ChatTurn.user(snapshot.to_prompt(project)), ChatTurn.assistant(CONTINUATION_ACK)]


class ContinuationManager:
    """Owns the continuation counter for one run. The counter never resets mid-run."""

    def __init__(self, runner_factory: RunnerFactory, emitter: ChunkEmitter,
                 max_continuations: Optional[int] = None, project: Optional[str] = None):
        self.runner_factory = runner_factory
        self.emitter = emitter
        self.max_continuations = max_continuations if max_continuations is not None \
            else app_config.max_continuations
        self.project = project
        self.count = 0
        self.last_snapshot: Optional[ContinuationSnapshot] = None
        self.current: Optional[SessionRunner] = None

    async def run(self, prompt: str) -> SessionOutcome:
        """Run the request to a terminal outcome and close the stream."""
        state = SessionState(original_request=prompt)
        next_prompt = prompt
        seed: List[ChatTurn] = []

        while True:
            self.current = self.runner_factory(state)
            outcome = await self.current.run(next_prompt, seed)

            if not outcome.continuation_eligible:
                await self._finish(outcome)
                return outcome

            if self.count >= self.max_continuations:
                logger.error(f"Continuation ceiling reached after {self.count} continuations")
                await self.emitter.fail(f"Too many continuations ({self.max_continuations}). Stopping.",
                                        outcome.kind or ErrorKind.CONTEXT_EXHAUSTED)
                return outcome

            self.count += 1
            self.last_snapshot = state.snapshot()
            reason = _REASONS.get(outcome.kind, "Session interrupted.")
            logger.warning(f"Session ended with {outcome.kind.value}: {outcome.error}. "
                           f"Starting continuation {self.count}/{self.max_continuations}")
            await self.emitter.emit(Chunk.continuation(
                f"{reason} Continuing session ({self.count}/{self.max_continuations})..."
            ))

            state = SessionState.from_snapshot(self.last_snapshot)
            seed = continuation_seed(self.last_snapshot, self.project)
            next_prompt = CONTINUE_PROMPT

    async def _finish(self, outcome: SessionOutcome) -> None:
        if outcome.status == SessionStatus.FAILED:
            await self.emitter.fail(outcome.error, outcome.kind or ErrorKind.TRANSPORT)
        else:
            await self.emitter.done()
