"""Session runner, continuation manager and orchestrator, driven by a scripted adapter."""

import pytest

from agent.context import CONTINUATION_ACK, ContinuationSnapshot, FileWrite, SessionState, TodoItem
from agent.core import Orchestrator
from agent.events import Chunk, ChunkType, ErrorKind
from agent.prompts import CONTINUE_PROMPT
from backend import LocalBackend
from config import provider_settings
from providers.base import ProviderAdapter
from providers.errors import ProviderError
from tools.approval import AutoApproveGate


class ScriptedAdapter(ProviderAdapter):
    """Plays back one scripted turn per call; the last turn repeats."""

    def __init__(self, turns, provider_id="gemini"):
        self.provider_id = provider_id
        super().__init__()
        self.turns = list(turns)
        self.prompts = []
        self.histories = []

    async def _stream_turn(self, prompt, options, emitter):
        self.prompts.append(prompt)
        self.histories.append(list(options.history))
        step = self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]
        if isinstance(step, ProviderError):
            raise step
        for chunk in step:
            await emitter.emit(chunk)


class Recorder:
    def __init__(self):
        self.chunks = []

    async def __call__(self, chunk):
        self.chunks.append(chunk)

    @property
    def types(self):
        return [c.type for c in self.chunks]


def call(name, args, call_id):
    return Chunk.function_call(name, args, call_id)


def _orchestrator(tmp_path, adapter, **kwargs):
    backend = LocalBackend(str(tmp_path))
    return Orchestrator(gate=AutoApproveGate(backend), backend=backend,
                        adapters={adapter.provider_id: adapter}, poll_interval=0.01, **kwargs)


def _options(provider="gemini"):
    return {"provider": provider, "apiKey": "k"}


@pytest.mark.asyncio
async def test_session_runs_tools_until_task_complete(tmp_path):
    """Calls are executed in order and results fed back until task_complete."""
    adapter = ScriptedAdapter([
        [Chunk.text("Planning.\n"), call("create_plan", {"title": "t", "steps": ["a"]}, "c1")],
        [call("task_complete", {"summary": "ok"}, "c2")],
    ])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("build", _options(), rec)

    assert outcome.status == "completed"
    assert rec.types == [
        ChunkType.TEXT, ChunkType.FUNCTION_CALL, ChunkType.FUNCTION_RESULT,
        ChunkType.FUNCTION_CALL, ChunkType.FUNCTION_RESULT, ChunkType.DONE,
    ]
    assert rec.chunks[2].call_id == "c1"
    assert adapter.prompts == ["build", ""]
    second = adapter.histories[1]
    assert [t.role for t in second] == ["user", "assistant", "tool"]
    assert second[1].content == "Planning.\n"
    assert second[1].tool_calls[0].call_id == "c1"
    assert second[2].tool_result.payload["steps"][0]["id"] == "step_1"


@pytest.mark.asyncio
async def test_text_only_turn_finishes(tmp_path):
    """Without nudging, a turn with no calls ends the run."""
    adapter = ScriptedAdapter([[Chunk.text("Hello!")]])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("hi", _options(), rec)
    assert outcome.status == "finished"
    assert rec.types == [ChunkType.TEXT, ChunkType.DONE]


@pytest.mark.asyncio
async def test_nudging_provider_is_told_to_continue(tmp_path):
    """Providers flagged for nudging get the continue prompt after a text-only turn."""
    adapter = ScriptedAdapter([
        [Chunk.text("I will now do it.")],
        [call("task_complete", {"summary": "done"}, "c1")],
    ], provider_id="groq")
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("go", _options("groq"), rec)
    assert outcome.status == "completed"
    assert adapter.prompts == ["go", CONTINUE_PROMPT]


@pytest.mark.asyncio
async def test_iteration_ceiling(tmp_path):
    """The loop stops at the ceiling with a notice and done."""
    adapter = ScriptedAdapter([[call("list_files", {"directory_path": "."}, "c")]])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter, max_iterations=3).chat_stream("loop", _options(), rec)
    assert outcome.status == "ceiling"
    assert len(adapter.prompts) == 3
    assert "maximum of 3 iterations" in rec.chunks[-2].content
    assert rec.types[-1] == ChunkType.DONE
    assert ChunkType.ERROR not in rec.types


@pytest.mark.asyncio
async def test_continuation_ceiling(tmp_path):
    """The 11th consecutive context exhaustion is terminal."""
    adapter = ScriptedAdapter([ProviderError("Context limit reached: too long", ErrorKind.CONTEXT_EXHAUSTED, 400)])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter, max_continuations=10).chat_stream("big task", _options(), rec)

    assert len(adapter.prompts) == 11
    notes = [c.content for c in rec.chunks if c.type == ChunkType.CONTINUATION]
    assert len(notes) == 10
    assert notes[0] == "Context limit reached. Continuing session (1/10)..."
    assert notes[-1] == "Context limit reached. Continuing session (10/10)..."
    assert rec.types[-2:] == [ChunkType.ERROR, ChunkType.DONE]
    assert rec.chunks[-2].content == "Too many continuations (10). Stopping."
    assert outcome.status == "failed"


@pytest.mark.asyncio
async def test_continuation_seed_preserves_progress(tmp_path):
    """A follow-up session starts from the snapshot prompt and acknowledgement."""
    adapter = ScriptedAdapter([
        [
            call("create_plan", {"title": "t", "steps": [
                {"description": "scaffold", "status": "completed"}, {"description": "tests"},
            ]}, "c1"),
            call("write_file", {"path": "a.txt", "content": "hello"}, "c2"),
        ],
        ProviderError("timed out", ErrorKind.TIMEOUT),
        [call("task_complete", {"summary": "finished"}, "c3")],
    ])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("build it", _options(), rec)

    assert outcome.status == "completed"
    assert [c.content for c in rec.chunks if c.type == ChunkType.CONTINUATION] == [
        "Request timed out. Continuing session (1/10)..."
    ]
    assert adapter.prompts[2] == CONTINUE_PROMPT
    seed = adapter.histories[2]
    assert [t.role for t in seed] == ["user", "assistant"]
    assert "Original task: build it" in seed[0].content
    assert "✓ [step_1] scaffold" in seed[0].content
    assert "☐ [step_2] tests" in seed[0].content
    assert "Files created: 1" in seed[0].content
    assert seed[1].content == CONTINUATION_ACK
    assert (tmp_path / "a.txt").read_text() == "hello"
    assert rec.types[-1] == ChunkType.DONE
    assert ChunkType.ERROR not in rec.types


@pytest.mark.asyncio
async def test_context_exhausted_mid_chunked_write(tmp_path):
    """A half-buffered write is shown in the seed and the next session starts with an empty buffer."""
    adapter = ScriptedAdapter([
        [call("write_file", {"path": "big.txt", "content": "part one, ", "finalize": False}, "c1")],
        ProviderError("Context limit reached: too long", ErrorKind.CONTEXT_EXHAUSTED, 400),
        [
            call("write_file", {"path": "big.txt", "content": "whole file"}, "c2"),
            call("task_complete", {"summary": "written"}, "c3"),
        ],
    ])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("write big.txt", _options(), rec)

    assert outcome.status == "completed"
    seed = adapter.histories[2][0].content
    assert "Last file being written in chunks (not saved - write the whole file again):" in seed
    assert "  Path: big.txt" in seed
    assert "```\npart one, \n```" in seed
    assert "Files created: 0" in seed
    assert (tmp_path / "big.txt").read_text() == "whole file"


@pytest.mark.asyncio
async def test_project_is_carried_into_the_seed(tmp_path):
    """The caller's project name appears in the continuation seed."""
    adapter = ScriptedAdapter([
        ProviderError("timed out", ErrorKind.TIMEOUT),
        [call("task_complete", {"summary": "ok"}, "c1")],
    ])
    options = dict(_options(), context={"project": "demo"})
    await _orchestrator(tmp_path, adapter).chat_stream("x", options, Recorder())
    assert "Active Project: demo" in adapter.histories[1][0].content
    assert "Active Project" not in ContinuationSnapshot("x").to_prompt()


@pytest.mark.asyncio
async def test_call_metadata_is_kept_in_history(tmp_path):
    """Backend fields on a function_call come back on the assistant turn's call."""
    adapter = ScriptedAdapter([
        [Chunk.function_call("list_files", {"directory_path": "."}, "c1", {"thoughtSignature": "sig"})],
        [call("task_complete", {"summary": "ok"}, "c2")],
    ])
    await _orchestrator(tmp_path, adapter).chat_stream("ls", _options(), Recorder())
    sent = adapter.histories[1][1].tool_calls[0]
    assert sent.call_id == "c1"
    assert sent.metadata == {"thoughtSignature": "sig"}


@pytest.mark.asyncio
async def test_bad_request_is_terminal(tmp_path):
    """Failures outside context exhaustion and timeouts end the run."""
    adapter = ScriptedAdapter([ProviderError("Bad request: nope", ErrorKind.BAD_REQUEST, 400)])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("x", _options(), rec)
    assert outcome.status == "failed"
    assert rec.types == [ChunkType.ERROR, ChunkType.DONE]
    assert rec.chunks[0].kind == ErrorKind.BAD_REQUEST
    assert len(adapter.prompts) == 1


@pytest.mark.asyncio
async def test_missing_api_key(tmp_path, monkeypatch):
    """A missing key is reported before any request."""
    monkeypatch.setattr(provider_settings, "gemini_api_key", "")
    adapter = ScriptedAdapter([[Chunk.text("unreachable")]])
    rec = Recorder()
    outcome = await _orchestrator(tmp_path, adapter).chat_stream("x", {"provider": "gemini"}, rec)
    assert outcome is None
    assert rec.types == [ChunkType.ERROR, ChunkType.DONE]
    assert rec.chunks[0].kind == ErrorKind.BAD_REQUEST
    assert adapter.prompts == []


@pytest.mark.asyncio
async def test_unknown_provider(tmp_path):
    """Unknown provider ids end the stream with BAD_REQUEST."""
    adapter = ScriptedAdapter([[Chunk.text("unreachable")]])
    rec = Recorder()
    await _orchestrator(tmp_path, adapter).chat_stream("x", {"provider": "nope"}, rec)
    assert rec.types == [ChunkType.ERROR, ChunkType.DONE]


@pytest.mark.asyncio
async def test_cancel_ends_with_done_only(tmp_path):
    """Cancelling mid-run skips pending calls and ends with done."""
    adapter = ScriptedAdapter([[call("execute_command", {"command": "echo hi"}, "c1")]])
    orchestrator = _orchestrator(tmp_path, adapter)
    rec = Recorder()

    async def on_chunk(chunk):
        await rec(chunk)
        if chunk.type == ChunkType.FUNCTION_CALL:
            orchestrator.cancel()

    outcome = await orchestrator.chat_stream("x", _options(), on_chunk)
    assert outcome.status == "cancelled"
    assert rec.types == [ChunkType.FUNCTION_CALL, ChunkType.DONE]
    assert orchestrator.active_runs == 0


@pytest.mark.asyncio
async def test_history_is_optimized_before_the_run(tmp_path):
    """Long caller history is trimmed with a placeholder."""
    adapter = ScriptedAdapter([[Chunk.text("ok")]])
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(14)]
    options = dict(_options(), conversationHistory=history)
    await _orchestrator(tmp_path, adapter).chat_stream("next", options, Recorder())
    sent = adapter.histories[0]
    assert len(sent) == 12
    assert sent[0].content == "m0"
    assert "4 messages omitted" in sent[1].content


def test_list_providers_and_models(tmp_path):
    """Providers carry name, description and isFree."""
    orchestrator = Orchestrator(backend=LocalBackend(str(tmp_path)))
    providers = orchestrator.list_providers()
    assert [p["id"] for p in providers] == [
        "gemini", "grok", "groq", "moonshot", "deepseek", "anthropic", "ollama", "bedrock",
    ]
    assert set(providers[0]) == {"id", "name", "description", "isFree"}


def test_snapshot_prompt_lists_files():
    """Only the first ten earlier files are listed; the last write is shown separately."""
    state = SessionState(original_request="make a site")
    for i in range(13):
        state.record_file_write(f"f{i}.html", f"<p>{i}</p>")
    prompt = state.snapshot().to_prompt()
    assert "Files created: 13" in prompt
    assert "  • f9.html" in prompt
    assert "  • f10.html" not in prompt
    assert "... and 2 more" in prompt
    assert "Path: f12.html" in prompt


def test_snapshot_round_trip_preserves_counts():
    """from_snapshot keeps the task, completed count and files."""
    snapshot = ContinuationSnapshot(
        original_request="task",
        todos=(TodoItem("1", "a", "completed"), TodoItem("2", "b", "in-progress")),
        files_created=("x.py",),
        last_file_write=FileWrite("x.py", "print(1)"),
    )
    state = SessionState.from_snapshot(snapshot)
    again = state.snapshot()
    assert again == snapshot
    assert again.completed_count == 1
    assert "No tasks yet" in ContinuationSnapshot("t").to_prompt()
