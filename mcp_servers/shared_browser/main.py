"""
MCP stdio server for a browser shared between agents.

Each agent runs its own copy of this server; all copies talk to one Chrome kept
alive by the shared daemon and keep out of each other's tabs via tab groups.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from .daemon_manager import DaemonStartTimeout
from .http_client import HttpClientError
from .server.context import ToolContext
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.dispatch import create_default_registry
from .server.types import ToolError, ToolResult
from .tab_groups import TabGroupNotFoundError

logger = logging.getLogger("mcp.shared_browser")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin; None on EOF."""
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            continue
        try:
            msg = json.loads(line.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("invalid_frame bytes=%d", len(line))
            continue
        if isinstance(msg, dict):
            return msg


class McpServer:
    """MCP Server with registry-based tool dispatch."""

    def __init__(self, ctx: ToolContext | None = None) -> None:
        self.ctx = ctx or ToolContext()
        self.registry = create_default_registry()

    def start(self) -> None:
        """Make sure the browser is reachable and begin extension discovery in the background."""
        self.ctx.seed_extension_ids()
        endpoint = self.ctx.endpoint
        logger.info("shared_browser_ready endpoint=%s agent=%s", endpoint, self.ctx.config.agent_id or "-")
        self.ctx.bridge.warmup_in_background(endpoint)

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(select_protocol(requested))})

    def handle_list_tools(self, request_id: Any) -> None:
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        logger.info("tool=%s args=%s", name, arguments)
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}", tool=name)
            return self.registry.dispatch(name, self.ctx, arguments)
        except ToolError as e:
            logger.info("tool_error tool=%s action=%s reason=%s", e.tool, e.action, e.reason)
            return ToolResult.error(e.reason, tool=e.tool, suggestion=e.suggestion, details=e.details)
        except TabGroupNotFoundError as e:
            logger.info("group_not_found tool=%s group=%s", name, e.group_id)
            return ToolResult.error(
                str(e), tool=name, suggestion='List groups with browser_tab_group(action="list")'
            )
        except HttpClientError as e:
            logger.info("http_error %s", e)
            return ToolResult.error(str(e), tool=name)
        except DaemonStartTimeout as e:
            logger.error("daemon_unavailable %s", e)
            return ToolResult.error(str(e), tool=name, suggestion="Check `shared-browser-daemonctl logs`")
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc), tool=name)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        result = self.call_tool(name, arguments)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif isinstance(method, str) and method.startswith("notifications/"):
            return
        elif method == "tools/list":
            self.handle_list_tools(request_id)
        elif method == "tools/call":
            name = params.get("name")
            arguments = params.get("arguments") or {}
            self.handle_call_tool(request_id, name or "", arguments if isinstance(arguments, dict) else {})
        elif method == "ping":
            _write_message({"jsonrpc": "2.0", "id": request_id, "result": {}})
        else:
            _write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )


def main() -> None:
    """Main entry point for MCP server."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    server = McpServer()
    try:
        server.start()
    except DaemonStartTimeout as exc:
        logger.error("startup_failed %s", exc)
        sys.exit(1)
    while True:
        message = _read_message()
        if message is None:
            break
        server.dispatch(message)


if __name__ == "__main__":
    main()
