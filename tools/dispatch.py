"""Tool execution dispatch: approval waits, chunked writes, and structured results."""

import asyncio
import functools
import logging
from typing import Any, Dict, Optional

from agent.context import SessionState
from agent.events import Chunk, ChunkEmitter, ErrorKind
from agent.history import ToolCallRequest, ToolCallResult
from agent.loop import LoopController
from backend import Backend, LocalBackend
from config import app_config
from tools._common import ToolResult
from tools.approval import ApprovalGate
from tools.schemas import DEPENDENT_TOOLS, TOOL_IMPLEMENTATIONS

logger = logging.getLogger(__name__)

APPROVAL_WAIT_MESSAGE = "Waiting for file approvals before proceeding..."


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no")
    return bool(value)


class ToolDispatcher:
    """Runs one tool call at a time for a session.

    Tool failures never become stream errors: every outcome is a payload that
    goes back to the model as a function_result. Chunked-write buffers belong
    to one session; a continuation gets a fresh dispatcher.
    """

    def __init__(
        self,
        gate: ApprovalGate,
        backend: Optional[Backend] = None,
        poll_interval: Optional[float] = None,
        approval_timeout: Optional[float] = None,
    ):
        self.gate = gate
        self.backend = backend or LocalBackend(app_config.working_directory)
        self.poll_interval = poll_interval if poll_interval is not None else app_config.approval_poll_interval
        self.approval_timeout = approval_timeout if approval_timeout is not None else app_config.approval_timeout
        # write_file(finalize=False) chunks, keyed by path
        self._write_buffers: Dict[str, str] = {}

    async def wait_for_approvals(self, emitter: ChunkEmitter,
                                 cancel_event: Optional[asyncio.Event] = None) -> bool:
        """Poll the gate until nothing is pending, the timeout passes, or cancellation.

        Returns False only when cancelled; a timeout proceeds anyway.
        """
        if not self.gate.has_pending_approvals():
            return True
        await emitter.text(APPROVAL_WAIT_MESSAGE)
        waited = 0.0
        while self.gate.has_pending_approvals():
            if cancel_event is not None and cancel_event.is_set():
                return False
            if waited >= self.approval_timeout:
                logger.warning(f"Approval wait timed out after {self.approval_timeout:.0f}s, proceeding")
                break
            await asyncio.sleep(self.poll_interval)
            waited += self.poll_interval
        return not (cancel_event is not None and cancel_event.is_set())

    async def dispatch(
        self,
        call: ToolCallRequest,
        state: SessionState,
        controller: LoopController,
        emitter: ChunkEmitter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ToolCallResult:
        """Execute a call, fold its result into the session, and emit function_result."""
        payload, kind = await self._execute(call, emitter, cancel_event)
        if kind is None and payload.get("status") == "accumulating":
            path = payload["file_path"]
            state.record_file_write(path, self._write_buffers.get(path, ""), partial=True)
        elif kind is None:
            state.record_tool_result(call.name, payload)
            if call.name == "task_complete":
                controller.mark_task_completed()
        else:
            logger.warning(f"Tool {call.name} failed ({kind.value}): {payload.get('error')}")
        result = ToolCallResult(call_id=call.call_id, name=call.name, payload=payload)
        await emitter.emit(Chunk.function_result(call.name, payload, call.call_id))
        return result

    async def _execute(self, call: ToolCallRequest, emitter: ChunkEmitter,
                       cancel_event: Optional[asyncio.Event]):
        name = call.name
        impl = TOOL_IMPLEMENTATIONS.get(name)
        if impl is None:
            return {"error": f"Unknown function: {name}"}, ErrorKind.UNKNOWN_TOOL
        if not isinstance(call.arguments, dict):
            return {"error": f"Invalid arguments for {name}: expected an object"}, ErrorKind.TOOL_EXECUTION

        if name in DEPENDENT_TOOLS:
            if not await self.wait_for_approvals(emitter, cancel_event):
                return {"error": f"Cancelled before {name} ran"}, ErrorKind.TOOL_EXECUTION

        args = dict(call.arguments)
        if name == "write_file":
            staged = self._stage_write_chunk(args)
            if staged is not None:
                return staged, None

        logger.info(f"Executing tool: {name}")
        loop = asyncio.get_event_loop()
        try:
            result: ToolResult = await loop.run_in_executor(
                None,
                functools.partial(impl, **dict(args, backend=self.backend,
                                               working_directory=self.backend.working_directory)),
            )
        except TypeError as e:
            return {"error": f"Invalid arguments for {name}: {e}"}, ErrorKind.TOOL_EXECUTION
        except Exception as e:
            logger.exception(f"Tool execution error: {name}")
            return {"error": f"Error executing {name}: {e}"}, ErrorKind.TOOL_EXECUTION

        payload = result.payload
        if not result.success:
            return payload, ErrorKind.TOOL_EXECUTION

        if name == "write_file":
            self.gate.propose_change(
                payload["file_path"],
                None if payload["isNewFile"] else payload["originalContent"],
                payload["content"],
                payload["isNewFile"],
            )
        return payload, None

    def _stage_write_chunk(self, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Buffer a non-final chunk; on the final chunk, merge the buffer into args.

        Returns a payload when the chunk was only buffered, else None.
        """
        path = args.get("path") or args.get("file_path") or ""
        finalize = _as_bool(args.pop("finalize", True))
        content = args.get("content", "")
        if not isinstance(content, str):
            return None
        if not finalize:
            self._write_buffers[path] = self._write_buffers.get(path, "") + content
            size = len(self._write_buffers[path])
            logger.debug(f"Buffered write chunk for {path} ({size} chars so far)")
            return {"file_path": path, "status": "accumulating", "accumulated_chars": size}
        if path in self._write_buffers:
            args["content"] = self._write_buffers.pop(path) + content
        return None
