"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolError(Exception):
    """Invalid tool input or a tab outside the caller's group."""

    tool: str
    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.tool}] {self.action} failed: {self.reason}"


@dataclass(slots=True)
class ToolContent:
    """Single text content item in a tool response."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for tests and in-process callers; not sent on the wire.
    data: Any | None = None

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        return cls(content=[ToolContent(text=json.dumps(data, ensure_ascii=False, indent=2))], data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        return cls(
            content=[ToolContent(text=json.dumps(payload, ensure_ascii=False, indent=2))],
            is_error=True,
            data=payload,
        )

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


__all__ = ["ToolContent", "ToolError", "ToolResult"]
