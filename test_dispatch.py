"""Tool dispatch, approval waits and chunked writes."""

import asyncio

import pytest

from agent.context import FileWrite, SessionState
from agent.events import ChunkEmitter, ChunkType
from agent.history import ToolCallRequest
from agent.loop import LoopController
from backend import LocalBackend
from tools.approval import AutoApproveGate, InMemoryApprovalGate
from tools.dispatch import APPROVAL_WAIT_MESSAGE, ToolDispatcher
from tools.schemas import TOOL_IMPLEMENTATIONS


class RecordingBackend(LocalBackend):
    """Records commands instead of running them."""

    def __init__(self, working_directory, gate=None):
        super().__init__(working_directory)
        self.gate = gate
        self.commands = []
        self.pending_when_run = []

    def run_command(self, command, cwd=".", timeout=300):
        self.commands.append(command)
        if self.gate is not None:
            self.pending_when_run.append(self.gate.has_pending_approvals())
        return "ok\n", "", 0


class Recorder:
    def __init__(self):
        self.chunks = []

    async def __call__(self, chunk):
        self.chunks.append(chunk)


def _setup(tmp_path, gate_cls=InMemoryApprovalGate, **kwargs):
    backend = RecordingBackend(str(tmp_path))
    gate = gate_cls(backend)
    backend.gate = gate
    dispatcher = ToolDispatcher(gate, backend, poll_interval=0.01, approval_timeout=kwargs.get("timeout", 5))
    recorder = Recorder()
    return backend, gate, dispatcher, recorder, ChunkEmitter(recorder)


@pytest.mark.asyncio
async def test_run_tests_waits_until_gate_clears(tmp_path):
    """run_tests executes only after pending approvals are resolved."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    gate.propose_change("a.txt", None, "hi", True)

    async def approve_later():
        await asyncio.sleep(0.05)
        assert backend.commands == []
        gate.approve("a.txt")

    approver = asyncio.ensure_future(approve_later())
    result = await dispatcher.dispatch(
        ToolCallRequest("run_tests", {"framework": "pytest"}, "c1"),
        SessionState(), LoopController(), emitter,
    )
    await approver

    assert backend.commands == ["pytest"]
    assert backend.pending_when_run == [False]
    assert (tmp_path / "a.txt").read_text() == "hi"
    assert result.payload["exit_code"] == 0
    assert [c.type for c in recorder.chunks] == [ChunkType.TEXT, ChunkType.FUNCTION_RESULT]
    assert recorder.chunks[0].content == APPROVAL_WAIT_MESSAGE


@pytest.mark.asyncio
async def test_approval_wait_times_out_and_proceeds(tmp_path):
    """A bounded wait proceeds once the timeout passes."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path, timeout=0.05)
    gate.propose_change("a.txt", None, "hi", True)
    await dispatcher.dispatch(ToolCallRequest("execute_command", {"command": "ls"}, "c1"),
                              SessionState(), LoopController(), emitter)
    assert backend.commands == ["ls"]


@pytest.mark.asyncio
async def test_cancel_during_approval_wait(tmp_path):
    """Cancellation during the wait skips the command."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    gate.propose_change("a.txt", None, "hi", True)
    cancel = asyncio.Event()
    asyncio.get_event_loop().call_later(0.03, cancel.set)
    result = await dispatcher.dispatch(ToolCallRequest("run_tests", {}, "c1"),
                                       SessionState(), LoopController(), emitter, cancel)
    assert backend.commands == []
    assert result.is_error


@pytest.mark.asyncio
async def test_unknown_tool_is_a_result_not_an_error(tmp_path):
    """Unknown names come back as a function_result with an error payload."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    result = await dispatcher.dispatch(ToolCallRequest("make_coffee", {}, "c9"),
                                       SessionState(), LoopController(), emitter)
    assert result.payload == {"error": "Unknown function: make_coffee"}
    assert [c.type for c in recorder.chunks] == [ChunkType.FUNCTION_RESULT]
    assert recorder.chunks[0].call_id == "c9"
    assert not emitter.closed


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_payload(tmp_path, monkeypatch):
    """An exception inside a tool is reported as an error payload."""
    def boom(**kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setitem(TOOL_IMPLEMENTATIONS, "read_file", boom)
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    result = await dispatcher.dispatch(ToolCallRequest("read_file", {"path": "x"}, "c1"),
                                       SessionState(), LoopController(), emitter)
    assert result.payload == {"error": "Error executing read_file: disk on fire"}


@pytest.mark.asyncio
async def test_write_file_goes_to_gate(tmp_path):
    """write_file proposes a change and records the file in session state."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    state = SessionState()
    result = await dispatcher.dispatch(ToolCallRequest("write_file", {"path": "new.py", "content": "x = 1\n"}, "c1"),
                                       state, LoopController(), emitter)
    assert result.payload["status"] == "pending"
    assert not (tmp_path / "new.py").exists()
    assert [c.path for c in gate.pending()] == ["new.py"]
    assert state.files_created == ["new.py"]
    assert state.last_file_write.content == "x = 1\n"


@pytest.mark.asyncio
async def test_chunked_write_is_accumulated(tmp_path):
    """finalize=false chunks are buffered and merged into the final write."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path, gate_cls=AutoApproveGate)
    state, controller = SessionState(), LoopController()
    first = await dispatcher.dispatch(
        ToolCallRequest("write_file", {"path": "big.txt", "content": "part one, ", "finalize": False}, "c1"),
        state, controller, emitter,
    )
    assert first.payload == {"file_path": "big.txt", "status": "accumulating", "accumulated_chars": 10}
    assert state.last_file_write == FileWrite("big.txt", "part one, ", partial=True)
    assert state.files_created == []
    await dispatcher.dispatch(
        ToolCallRequest("write_file", {"path": "big.txt", "content": "part two", "finalize": "true"}, "c2"),
        state, controller, emitter,
    )
    assert (tmp_path / "big.txt").read_text() == "part one, part two"
    assert gate.applied == ["big.txt"]
    assert state.last_file_write == FileWrite("big.txt", "part one, part two")
    assert state.files_created == ["big.txt"]


@pytest.mark.asyncio
async def test_task_complete_marks_controller(tmp_path):
    """task_complete completes the loop and records the summary."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    state, controller = SessionState(), LoopController()
    controller.set_active(True)
    await dispatcher.dispatch(ToolCallRequest("task_complete", {"summary": "All done"}, "c1"),
                              state, controller, emitter)
    assert controller.task_completed
    assert not controller.should_continue_loop()
    assert state.progress_note == "All done"


@pytest.mark.asyncio
async def test_create_plan_updates_todos(tmp_path):
    """create_plan results replace the session's to-do list."""
    backend, gate, dispatcher, recorder, emitter = _setup(tmp_path)
    state = SessionState()
    await dispatcher.dispatch(
        ToolCallRequest("create_plan", {"title": "t", "steps": ["scaffold", {"description": "test", "status": "completed"}]}, "c1"),
        state, LoopController(), emitter,
    )
    assert [(t.id, t.description, t.status) for t in state.todos] == [
        ("step_1", "scaffold", "pending"),
        ("step_2", "test", "completed"),
    ]
