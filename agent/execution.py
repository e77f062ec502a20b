"""
Session runner: one session's model/tool loop.

Each iteration asks the adapter for one model turn, forwards its text and
function_call chunks to the caller, executes the calls in emission order and
feeds the results back. The runner never emits done; it returns a
SessionOutcome and leaves stream termination to the continuation manager.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

from agent.context import SessionState
from agent.events import CONTINUATION_ELIGIBLE, Chunk, ChunkEmitter, ChunkType, ErrorKind
from agent.history import ChatTurn, ToolCallRequest
from agent.loop import LoopController
from agent.prompts import CONTINUE_PROMPT
from providers.base import ProviderAdapter, StreamOptions
from tools.dispatch import ToolDispatcher

logger = logging.getLogger(__name__)


class SessionStatus:
    COMPLETED = "completed"  # task_complete was called
    FINISHED = "finished"  # model stopped without tool calls
    CEILING = "ceiling"  # iteration ceiling reached
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SessionOutcome:
    status: str
    error: str = ""
    kind: Optional[ErrorKind] = None
    iterations: int = 0

    @property
    def continuation_eligible(self) -> bool:
        return self.status == SessionStatus.FAILED and self.kind in CONTINUATION_ELIGIBLE


@dataclass
class _TurnCollector:
    """Receives one adapter turn; forwards output chunks and keeps what the history needs."""
    emitter: ChunkEmitter
    text_parts: List[str] = field(default_factory=list)
    calls: List[ToolCallRequest] = field(default_factory=list)
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    async def collect(self, chunk: Chunk) -> None:
        if chunk.type == ChunkType.TEXT:
            self.text_parts.append(chunk.content)
            await self.emitter.emit(chunk)
        elif chunk.type == ChunkType.FUNCTION_CALL:
            self.calls.append(ToolCallRequest(name=chunk.name or "", arguments=chunk.data or {},
                                              call_id=chunk.call_id or "", metadata=dict(chunk.metadata or {})))
            await self.emitter.emit(chunk)
        elif chunk.type == ChunkType.ERROR:
            self.error = chunk.content
            self.kind = chunk.kind or ErrorKind.TRANSPORT
        # done is the adapter's end of turn; the session decides when the stream ends


class SessionRunner:
    """Drives a LoopController over one adapter and one dispatcher."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        dispatcher: ToolDispatcher,
        options: StreamOptions,
        emitter: ChunkEmitter,
        state: SessionState,
        controller: Optional[LoopController] = None,
        nudge_on_text_stop: Optional[bool] = None,
    ):
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.options = options
        self.emitter = emitter
        self.state = state
        self.controller = controller or LoopController()
        if nudge_on_text_stop is None:
            nudge_on_text_stop = bool(adapter.config.get("nudge_on_text_stop"))
        self.nudge_on_text_stop = nudge_on_text_stop
        self.cancel_event = options.cancel_event or asyncio.Event()
        self.options.cancel_event = self.cancel_event
        self.history: List[ChatTurn] = []

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _outcome(self, status: str, error: str = "", kind: Optional[ErrorKind] = None) -> SessionOutcome:
        if status != SessionStatus.COMPLETED:
            self.controller.set_active(False)
        return SessionOutcome(status, error, kind, self.controller.current_iteration)

    async def run(self, prompt: str, seed: Sequence[ChatTurn] = ()) -> SessionOutcome:
        """Run until completion, a text-only stop, the ceiling, cancellation or a failure."""
        self.history = list(self.options.history) + list(seed)
        self.controller.reset()
        self.controller.set_active(True)
        next_prompt = prompt

        while self.controller.should_continue_loop():
            if self.cancelled:
                return self._outcome(SessionStatus.CANCELLED)
            iteration = self.controller.increment_iteration()
            logger.info(f"{self.adapter.provider_id} iteration {iteration}/{self.controller.max_iterations}")

            turn = _TurnCollector(self.emitter)
            turn_options = replace(self.options, history=list(self.history))
            await self.adapter.chat_stream(next_prompt, turn_options, turn.collect)
            if next_prompt:
                self.history.append(ChatTurn.user(next_prompt))
                next_prompt = ""

            if self.cancelled:
                return self._outcome(SessionStatus.CANCELLED)
            if turn.error is not None:
                return self._outcome(SessionStatus.FAILED, turn.error, turn.kind)

            self.history.append(ChatTurn.assistant(turn.text, turn.calls))

            if not turn.calls:
                if self.nudge_on_text_stop and not self.controller.task_completed:
                    logger.info("Text-only turn, nudging the model to continue")
                    next_prompt = CONTINUE_PROMPT
                    continue
                return self._outcome(SessionStatus.FINISHED)

            for call in turn.calls:
                if self.cancelled:
                    return self._outcome(SessionStatus.CANCELLED)
                result = await self.dispatcher.dispatch(
                    call, self.state, self.controller, self.emitter, self.cancel_event,
                )
                self.history.append(ChatTurn.tool(result))

            if self.controller.task_completed:
                return self._outcome(SessionStatus.COMPLETED)

        if self.cancelled:
            return self._outcome(SessionStatus.CANCELLED)
        if self.controller.task_completed:
            return self._outcome(SessionStatus.COMPLETED)
        logger.warning(f"Iteration ceiling reached ({self.controller.max_iterations})")
        await self.emitter.text(
            f"\n\nReached the maximum of {self.controller.max_iterations} iterations. Stopping here."
        )
        return self._outcome(SessionStatus.CEILING)
