"""
Provider adapter interface.

An adapter performs exactly one model turn per chat_stream() call: it sends
the conversation, normalizes whatever the backend streams into Chunks, and
ends with done (or error then done). Tool execution and looping belong to
the session runner.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from agent.events import Chunk, ChunkCallback, ChunkEmitter, ErrorKind
from agent.history import ChatTurn, ToolCallRequest
from config import (
    app_config,
    clamp_max_tokens,
    get_default_model,
    get_provider_config,
    get_provider_models,
)
from providers.errors import ProviderError
from providers.reassembler import StreamReassembler, default_matchers
from providers.transport import HttpStreamClient, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class StreamOptions:
    """Everything an adapter needs for one turn"""
    history: List[ChatTurn] = field(default_factory=list)
    tools: List[Dict[str, Any]] = field(default_factory=list)  # neutral definitions
    model: str = ""
    api_key: str = ""
    system_instruction: str = ""
    max_tokens: Optional[int] = None
    provider: str = ""
    cancel_event: Optional[asyncio.Event] = None
    # active project name, carried into continuation seeds
    project: str = ""

    @property
    def tool_names(self) -> List[str]:
        return [t["name"] for t in self.tools if t.get("name")]


class ProviderAdapter(ABC):
    """One backend. Subclasses implement _stream_turn()."""

    provider_id: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None,
                 retry: Optional[RetryPolicy] = None):
        self.config: Dict[str, Any] = get_provider_config(self.provider_id) or {}
        self._transport = transport
        self._retry = retry
        self._active: Set[asyncio.Event] = set()

    @property
    def deadline(self) -> float:
        return float(self.config.get("deadline_seconds", 60))

    def http_client(self) -> HttpStreamClient:
        retry = self._retry or RetryPolicy(retry_server_errors=bool(self.config.get("retry_server_errors")))
        return HttpStreamClient(self.provider_id, self.deadline, retry, self._transport)

    def model_for(self, options: StreamOptions) -> str:
        return options.model or get_default_model(self.provider_id)

    def max_tokens_for(self, options: StreamOptions, model: str) -> int:
        return clamp_max_tokens(self.provider_id, model, options.max_tokens)

    def make_reassembler(self, options: StreamOptions) -> StreamReassembler:
        return StreamReassembler(default_matchers(options.tool_names, app_config.reassembler_prose_calls))

    @staticmethod
    def turns_with_prompt(prompt: str, options: StreamOptions) -> List[ChatTurn]:
        turns = list(options.history)
        if prompt:
            turns.append(ChatTurn.user(prompt))
        return turns

    async def chat_stream(self, prompt: str, options: StreamOptions, on_chunk: ChunkCallback) -> None:
        """Run one turn. Never raises; failures become error + done."""
        emitter = ChunkEmitter(on_chunk)
        cancel_event = options.cancel_event or asyncio.Event()
        options.cancel_event = cancel_event
        self._active.add(cancel_event)
        try:
            await self._stream_turn(prompt, options, emitter)
            await emitter.done()
        except ProviderError as e:
            if e.kind == ErrorKind.CANCELLED:
                logger.info(f"{self.provider_id} stream cancelled")
                await emitter.done()
            else:
                logger.warning(f"{self.provider_id} stream failed ({e.kind.value}): {e}")
                await emitter.fail(str(e), e.kind)
        except asyncio.CancelledError:
            await emitter.done()
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in {self.provider_id} stream")
            await emitter.fail(f"{self.config.get('name', self.provider_id)} error: {e}", ErrorKind.TRANSPORT)
        finally:
            self._active.discard(cancel_event)

    @abstractmethod
    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        """Send the request and emit text/function_call chunks; raise ProviderError on failure."""

    async def emit_calls(self, emitter: ChunkEmitter, calls: List[ToolCallRequest]) -> None:
        for call in calls:
            await emitter.emit(Chunk.function_call(call.name, call.arguments, call.call_id, call.metadata or None))

    def cancel(self) -> None:
        """Abort every in-flight stream of this adapter."""
        for event in list(self._active):
            event.set()

    async def list_models(self) -> List[Dict[str, Any]]:
        return get_provider_models(self.provider_id)
