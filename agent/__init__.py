"""
Agent package - orchestration core.

This package contains the session machinery split into logical modules:
- events: Chunk protocol, ErrorKind and the ChunkEmitter
- history: ChatTurn transcript model and history optimization
- loop: LoopController state machine
- context: SessionState and continuation snapshots
- prompts: System prompt constants and composition
- execution: SessionRunner, one session's model/tool loop
- continuation: ContinuationManager, restarts after context exhaustion or timeouts
- core: Orchestrator, the public entry point (import from agent.core)
"""

# Leaf modules only; agent.core pulls in providers and tools, which import these
from .events import Chunk, ChunkType, ChunkEmitter, ChunkCallback, ErrorKind, CONTINUATION_ELIGIBLE
from .history import ChatTurn, ToolCallRequest, ToolCallResult, optimize_history
from .loop import LoopController, LoopPhase, LoopState, LoopStateError
from .context import SessionState, ContinuationSnapshot, TodoItem, FileWrite
from .prompts import SYSTEM_INSTRUCTION, CONTINUE_PROMPT, compose_system_prompt

__all__ = [
    # Chunk protocol
    "Chunk",
    "ChunkType",
    "ChunkEmitter",
    "ChunkCallback",
    "ErrorKind",
    "CONTINUATION_ELIGIBLE",

    # Transcript
    "ChatTurn",
    "ToolCallRequest",
    "ToolCallResult",
    "optimize_history",

    # Loop and session state
    "LoopController",
    "LoopPhase",
    "LoopState",
    "LoopStateError",
    "SessionState",
    "ContinuationSnapshot",
    "TodoItem",
    "FileWrite",

    # Prompts
    "SYSTEM_INSTRUCTION",
    "CONTINUE_PROMPT",
    "compose_system_prompt",
]
