"""
Orchestrator: the public entry point of the core.

Routes a request to the selected provider adapter and runs it through the
continuation manager, which in turn drives one session runner per session.
Every run gets its own emitter, cancel event, session state and loop
controller; the approval gate and the adapters are shared.
"""

import asyncio
import logging
import os
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set, Union

import httpx

from backend import Backend, LocalBackend
from config import PROVIDERS, app_config, get_api_key, provider_settings
from providers import create_all_adapters
from providers.base import ProviderAdapter, StreamOptions
from providers.transport import RetryPolicy
from tools.approval import ApprovalGate, InMemoryApprovalGate
from tools.dispatch import ToolDispatcher
from tools.schemas import TOOL_DEFINITIONS

from .context import SessionState
from .continuation import ContinuationManager
from .events import ChunkCallback, ChunkEmitter, ErrorKind
from .execution import SessionOutcome, SessionRunner
from .history import ChatTurn, optimize_history
from .loop import LoopController

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "gemini"


def options_from_dict(data: Dict[str, Any]) -> StreamOptions:
    """Build StreamOptions from a caller's plain dict (camelCase or snake_case keys)."""
    history = data.get("conversationHistory", data.get("history")) or []
    return StreamOptions(
        history=[t if isinstance(t, ChatTurn) else ChatTurn.from_dict(t) for t in history],
        tools=list(data.get("tools") or []),
        model=data.get("model") or "",
        api_key=data.get("apiKey", data.get("api_key")) or "",
        system_instruction=data.get("systemInstruction", data.get("system_instruction")) or "",
        max_tokens=data.get("maxTokens", data.get("max_tokens")),
        provider=data.get("provider") or "",
        project=data.get("project") or (data.get("context") or {}).get("project") or "",
    )


class Orchestrator:
    """
    Multi-provider tool-use orchestrator.

    Flow:
    1. Caller sends a prompt with provider options and a chunk callback
    2. The selected adapter streams one model turn, normalized to chunks
    3. Function calls are executed through the dispatcher and fed back
    4. Context exhaustion or a timeout restarts the session from a snapshot
    5. The stream always ends with exactly one done
    """

    def __init__(
        self,
        gate: Optional[ApprovalGate] = None,
        backend: Optional[Backend] = None,
        working_directory: Optional[str] = None,
        adapters: Optional[Dict[str, ProviderAdapter]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry: Optional[RetryPolicy] = None,
        max_iterations: Optional[int] = None,
        max_continuations: Optional[int] = None,
        poll_interval: Optional[float] = None,
        approval_timeout: Optional[float] = None,
    ):
        self.backend: Backend = backend or LocalBackend(
            os.path.abspath(working_directory or app_config.working_directory)
        )
        self.gate = gate or InMemoryApprovalGate(self.backend)
        self.adapters = adapters if adapters is not None else create_all_adapters(transport, retry)
        self.max_iterations = max_iterations
        self.max_continuations = max_continuations
        self.poll_interval = poll_interval
        self.approval_timeout = approval_timeout
        self._runs: Set[asyncio.Event] = set()

    def adapter_for(self, provider: str) -> Optional[ProviderAdapter]:
        return self.adapters.get(provider)

    async def chat_stream(
        self,
        prompt: str,
        options: Union[StreamOptions, Dict[str, Any], None] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Optional[SessionOutcome]:
        """Run one request to completion, pushing chunks to on_chunk. Never raises on provider or tool failure."""
        if isinstance(options, dict):
            options = options_from_dict(options)
        options = replace(options) if options else StreamOptions()
        emitter = ChunkEmitter(on_chunk)

        provider = options.provider or provider_settings.default_provider or DEFAULT_PROVIDER
        adapter = self.adapter_for(provider)
        if adapter is None:
            await emitter.fail(f"Unknown provider: {provider}", ErrorKind.BAD_REQUEST)
            return None

        options.provider = provider
        options.api_key = options.api_key or get_api_key(provider)
        if adapter.config.get("requires_key") and not options.api_key:
            name = adapter.config.get("name", provider)
            logger.warning(f"Missing API key for {provider}")
            await emitter.fail(f"No {name} API key provided. Please set it in Settings.", ErrorKind.BAD_REQUEST)
            return None

        options.history = optimize_history(options.history, provider)
        if not options.tools:
            options.tools = list(TOOL_DEFINITIONS)
        cancel_event = options.cancel_event or asyncio.Event()
        options.cancel_event = cancel_event

        def make_runner(state: SessionState) -> SessionRunner:
            # a fresh dispatcher drops any half-written chunk buffers from the dead session
            dispatcher = ToolDispatcher(self.gate, self.backend, self.poll_interval, self.approval_timeout)
            return SessionRunner(adapter, dispatcher, replace(options), emitter, state,
                                 LoopController(self.max_iterations))

        manager = ContinuationManager(make_runner, emitter, self.max_continuations,
                                      project=options.project or None)
        logger.info(f"Starting run on {provider} ({options.model or 'default model'}): {prompt[:80]!r}")

        self._runs.add(cancel_event)
        try:
            outcome = await manager.run(prompt)
            logger.info(f"Run finished: {outcome.status} after {manager.count} continuation(s)")
            return outcome
        except asyncio.CancelledError:
            await emitter.done()
            raise
        except Exception as e:
            logger.exception("Unexpected error in orchestrator run")
            await emitter.fail(f"Orchestrator error: {e}", ErrorKind.TRANSPORT)
            return None
        finally:
            self._runs.discard(cancel_event)

    def cancel(self) -> None:
        """Cancel every active run, every in-flight stream and any running command."""
        for event in list(self._runs):
            event.set()
        for adapter in self.adapters.values():
            adapter.cancel()
        if self.backend.cancel_running_command():
            logger.info("Killed running command on cancel")

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    def list_providers(self) -> List[Dict[str, Any]]:
        return [
            {"id": p["id"], "name": p["name"], "description": p["description"], "isFree": p["isFree"]}
            for p in PROVIDERS
        ]

    async def list_models(self) -> List[Dict[str, Any]]:
        """Merged model lists from every adapter, in provider order."""
        models: List[Dict[str, Any]] = []
        for provider in PROVIDERS:
            adapter = self.adapters.get(provider["id"])
            if adapter is not None:
                models.extend(await adapter.list_models())
        return models
