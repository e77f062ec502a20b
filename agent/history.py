"""
Conversation data model and history optimization.
Turns are append-only; adapters translate them into each backend's message format.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)

HISTORY_SUMMARY_PLACEHOLDER = (
    "[Previous conversation history summarized: {omitted} messages omitted to optimize "
    "context usage. I have already completed several steps of the task.]"
)


@dataclass
class ToolCallRequest:
    """A complete tool invocation recognized in model output"""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: str = ""
    # backend-specific fields echoed back verbatim (e.g. Gemini thought signatures)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallResult:
    """Outcome of one dispatched tool call"""
    call_id: str
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return isinstance(self.payload, dict) and "error" in self.payload

    def to_json(self) -> str:
        return json.dumps(self.payload, default=str)


@dataclass
class ChatTurn:
    """One entry of a conversation transcript"""
    role: str  # user, assistant, tool
    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    tool_result: Optional[ToolCallResult] = None

    @classmethod
    def user(cls, content: str) -> "ChatTurn":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCallRequest]] = None) -> "ChatTurn":
        return cls(role="assistant", content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, result: ToolCallResult) -> "ChatTurn":
        return cls(role="tool", content=result.to_json(), tool_result=result)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatTurn":
        """Build a plain turn from {role, content} as supplied by callers."""
        role = data.get("role", "user")
        if role not in ("user", "assistant"):
            role = "user"
        return cls(role=role, content=str(data.get("content", "")))


def optimize_history(history: List[ChatTurn], provider: str) -> List[ChatTurn]:
    """Trim caller-supplied history before a run.

    Local models keep the last 50 turns. Hosted APIs keep the last 10, plus the very
    first user turn (it usually states the goal) and a placeholder for the rest.
    """
    if not history:
        return []
    if provider == "ollama":
        return list(history[-50:])

    recent = list(history[-10:])
    older = history[:-10]
    if not older:
        return recent

    simplified: List[ChatTurn] = []
    if older[0].role == "user":
        simplified.append(older[0])
    simplified.append(ChatTurn.assistant(HISTORY_SUMMARY_PLACEHOLDER.format(omitted=len(older))))
    logger.debug(f"History optimized for {provider}: {len(older)} older turns summarized")
    return simplified + recent
