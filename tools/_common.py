"""Shared types for the tools package."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def payload(self) -> Dict[str, Any]:
        """The structured object handed back to the model."""
        if self.success:
            return dict(self.output)
        return {**self.output, "error": self.error or "Tool failed"}

    @classmethod
    def fail(cls, error: str, **output: Any) -> "ToolResult":
        return cls(success=False, output=output, error=error)
