"""
Chunk protocol: the event vocabulary every provider adapter and the orchestrator speak.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional, Callable, Awaitable

logger = logging.getLogger(__name__)


class ChunkType(str, Enum):
    TEXT = "text"
    FUNCTION_CALL = "function_call"
    FUNCTION_RESULT = "function_result"
    ERROR = "error"
    CONTINUATION = "continuation"
    DONE = "done"


class ErrorKind(str, Enum):
    """Failure taxonomy carried on error chunks."""
    TRANSPORT = "TRANSPORT"
    RATE_LIMIT = "RATE_LIMIT"
    CONTEXT_EXHAUSTED = "CONTEXT_EXHAUSTED"
    TIMEOUT = "TIMEOUT"
    BAD_REQUEST = "BAD_REQUEST"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    CANCELLED = "CANCELLED"


# Failures that hand over to the continuation manager instead of ending the run
CONTINUATION_ELIGIBLE = frozenset({ErrorKind.CONTEXT_EXHAUSTED, ErrorKind.TIMEOUT})


@dataclass
class Chunk:
    """One event in a normalized output stream"""
    type: ChunkType
    content: str = ""  # text delta, error message or continuation note
    data: Optional[Any] = None  # call arguments or result payload
    name: Optional[str] = None
    call_id: Optional[str] = None
    kind: Optional[ErrorKind] = None
    # backend fields a function_call must echo back (not part of the wire form)
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def text(cls, delta: str) -> "Chunk":
        return cls(type=ChunkType.TEXT, content=delta)

    @classmethod
    def function_call(cls, name: str, args: Dict[str, Any], call_id: str,
                      metadata: Optional[Dict[str, Any]] = None) -> "Chunk":
        return cls(type=ChunkType.FUNCTION_CALL, name=name, data=args, call_id=call_id, metadata=metadata)

    @classmethod
    def function_result(cls, name: str, data: Any, call_id: str) -> "Chunk":
        return cls(type=ChunkType.FUNCTION_RESULT, name=name, data=data, call_id=call_id)

    @classmethod
    def error(cls, message: str, kind: ErrorKind = ErrorKind.TRANSPORT) -> "Chunk":
        return cls(type=ChunkType.ERROR, content=message, kind=kind)

    @classmethod
    def continuation(cls, note: str) -> "Chunk":
        return cls(type=ChunkType.CONTINUATION, content=note)

    @classmethod
    def done(cls) -> "Chunk":
        return cls(type=ChunkType.DONE)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: {type, data, name?, callId?, kind?}"""
        out: Dict[str, Any] = {"type": self.type.value}
        if self.type in (ChunkType.FUNCTION_CALL, ChunkType.FUNCTION_RESULT):
            out["data"] = self.data
        elif self.type != ChunkType.DONE:
            out["data"] = self.content
        if self.name is not None:
            out["name"] = self.name
        if self.call_id is not None:
            out["callId"] = self.call_id
        if self.kind is not None:
            out["kind"] = self.kind.value
        return out


ChunkCallback = Callable[[Chunk], Awaitable[None]]


class ChunkEmitter:
    """Delivers chunks to a push callback and enforces the stream contract.

    done is delivered exactly once, fail() is always error then done,
    and nothing is delivered after done.
    """

    def __init__(self, on_chunk: Optional[ChunkCallback] = None):
        self._on_chunk = on_chunk
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, chunk: Chunk) -> None:
        if self._closed:
            logger.debug(f"Dropping {chunk.type.value} chunk emitted after done")
            return
        if chunk.type == ChunkType.ERROR:
            await self.fail(chunk.content, chunk.kind or ErrorKind.TRANSPORT)
            return
        if chunk.type == ChunkType.DONE:
            self._closed = True
        await self._deliver(chunk)

    async def text(self, delta: str) -> None:
        if delta:
            await self.emit(Chunk.text(delta))

    async def done(self) -> None:
        await self.emit(Chunk.done())

    async def fail(self, message: str, kind: ErrorKind = ErrorKind.TRANSPORT) -> None:
        """Terminate the stream with an error immediately followed by done."""
        if self._closed:
            logger.debug(f"Dropping error after done: {message}")
            return
        self._closed = True
        await self._deliver(Chunk.error(message, kind))
        await self._deliver(Chunk.done())

    async def _deliver(self, chunk: Chunk) -> None:
        if not self._on_chunk:
            return
        try:
            await self._on_chunk(chunk)
        except Exception:
            logger.exception(f"Error in chunk callback for {chunk.type.value}")
