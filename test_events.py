"""Chunk protocol and emitter contract."""

import pytest

from agent.events import Chunk, ChunkEmitter, ChunkType, ErrorKind


class Recorder:
    def __init__(self):
        self.chunks = []

    async def __call__(self, chunk):
        self.chunks.append(chunk)

    @property
    def types(self):
        return [c.type for c in self.chunks]


def test_function_call_wire_form():
    """function_call carries data, name and callId."""
    chunk = Chunk.function_call("read_file", {"path": "a.py"}, "call_1")
    assert chunk.to_dict() == {
        "type": "function_call",
        "data": {"path": "a.py"},
        "name": "read_file",
        "callId": "call_1",
    }


def test_error_and_done_wire_form():
    """error carries its kind; done carries nothing."""
    assert Chunk.error("boom", ErrorKind.TIMEOUT).to_dict() == {"type": "error", "data": "boom", "kind": "TIMEOUT"}
    assert Chunk.done().to_dict() == {"type": "done"}


@pytest.mark.asyncio
async def test_fail_is_error_then_done():
    """fail() delivers exactly error followed by done."""
    rec = Recorder()
    emitter = ChunkEmitter(rec)
    await emitter.text("hello")
    await emitter.fail("bad request", ErrorKind.BAD_REQUEST)
    assert rec.types == [ChunkType.TEXT, ChunkType.ERROR, ChunkType.DONE]
    assert rec.chunks[1].kind == ErrorKind.BAD_REQUEST


@pytest.mark.asyncio
async def test_nothing_after_done():
    """Chunks emitted after done are dropped, including a second done."""
    rec = Recorder()
    emitter = ChunkEmitter(rec)
    await emitter.done()
    await emitter.text("late")
    await emitter.done()
    await emitter.fail("late error")
    assert rec.types == [ChunkType.DONE]
    assert emitter.closed


@pytest.mark.asyncio
async def test_emitting_error_chunk_terminates():
    """An error chunk routed through emit() is followed by done."""
    rec = Recorder()
    emitter = ChunkEmitter(rec)
    await emitter.emit(Chunk.error("oops"))
    assert rec.types == [ChunkType.ERROR, ChunkType.DONE]
    assert rec.chunks[0].kind == ErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_callback_failure_does_not_break_stream():
    """A raising consumer callback is logged, not propagated."""
    seen = []

    async def flaky(chunk):
        seen.append(chunk.type)
        if chunk.type == ChunkType.TEXT:
            raise RuntimeError("consumer bug")

    emitter = ChunkEmitter(flaky)
    await emitter.text("x")
    await emitter.done()
    assert seen == [ChunkType.TEXT, ChunkType.DONE]


@pytest.mark.asyncio
async def test_empty_text_is_not_emitted():
    """Empty text deltas are skipped."""
    rec = Recorder()
    emitter = ChunkEmitter(rec)
    await emitter.text("")
    assert rec.chunks == []
