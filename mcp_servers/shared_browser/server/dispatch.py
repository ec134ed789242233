"""
Tool registry with dispatch table for MCP server.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .types import ToolResult

if TYPE_CHECKING:
    from .context import ToolContext

logger = logging.getLogger("mcp.shared_browser.registry")

HandlerFunc = Callable[["ToolContext", dict[str, Any]], ToolResult]


class ToolRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunc] = {}

    def register_many(self, handlers: dict[str, HandlerFunc]) -> None:
        self._handlers.update(handlers)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, ctx: ToolContext, arguments: dict[str, Any]) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool: {name}")
        return handler(ctx, arguments)


def create_default_registry() -> ToolRegistry:
    from .handlers.tab_group import TAB_GROUP_HANDLERS
    from .handlers.tabs import TABS_HANDLERS

    registry = ToolRegistry()
    registry.register_many(TAB_GROUP_HANDLERS)
    registry.register_many(TABS_HANDLERS)
    return registry


__all__ = ["HandlerFunc", "ToolRegistry", "create_default_registry"]
