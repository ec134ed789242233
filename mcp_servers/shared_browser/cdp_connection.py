"""Transient CDP websocket channel used for one-shot `Runtime.evaluate` calls."""

from __future__ import annotations

import json
import logging
import socket
import time
from contextlib import suppress
from typing import Any

import websocket

from .http_client import HttpClientError

_LOGGER = logging.getLogger("mcp.shared_browser.cdp")


class CdpTimeoutError(HttpClientError):
    """A CDP command got no response within its bound."""


class CdpEvaluationError(RuntimeError):
    """The evaluated expression threw (or resolved to an Error object)."""


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)):
        return True
    return "timed out" in str(exc).lower()


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0) -> None:
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except Exception as exc:  # noqa: BLE001
            if _is_timeout(exc):
                raise CdpTimeoutError(f"CDP connect timed out: {ws_url}") from exc
            raise HttpClientError(f"CDP connect failed: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1

    def __enter__(self) -> CdpConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise HttpClientError(str(exc)) from exc

        return self._recv_until(msg_id, self.timeout if timeout is None else timeout)

    def _recv_until(self, expected_id: int, timeout: float) -> dict[str, Any]:
        """Wait for response with specific ID."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CdpTimeoutError("CDP evaluation timed out")

            # Keep the socket timeout small so our own deadline is enforced.
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    continue
                raise HttpClientError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except (TypeError, json.JSONDecodeError):
                continue

            # Events carry no id.
            if not isinstance(data, dict) or data.get("id") != expected_id:
                continue
            if "error" in data:
                err = data["error"]
                detail = err.get("message") if isinstance(err, dict) else err
                raise HttpClientError(f"CDP error: {detail}")
            result = data.get("result")
            return result if isinstance(result, dict) else {}

    def evaluate(self, expression: str, *, timeout: float | None = None) -> Any:
        """Run `expression` in the target, awaiting promises, and return its value."""
        result = self.send(
            "Runtime.evaluate",
            {"expression": expression, "awaitPromise": True, "returnByValue": True},
            timeout=timeout,
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc_obj = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            text = exc_obj.get("description") or details.get("text") or "unknown error"
            raise CdpEvaluationError(f"Extension error: {text}")
        remote = result.get("result") if isinstance(result.get("result"), dict) else {}
        if remote.get("subtype") == "error":
            raise CdpEvaluationError(f"Extension error: {remote.get('description') or 'unknown error'}")
        return remote.get("value")

    def abort(self) -> None:
        """Hard break of the underlying socket without a close handshake."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(OSError):
                sock.close()

    def close(self) -> None:
        self.abort()


def evaluate_once(ws_url: str, expression: str, *, timeout: float = 10.0) -> Any:
    """Open a connection, evaluate once, close."""
    _LOGGER.debug("cdp_evaluate url=%s timeout=%.1f", ws_url, timeout)
    with CdpConnection(ws_url, timeout=min(timeout, 5.0)) as conn:
        return conn.evaluate(expression, timeout=timeout)


__all__ = ["CdpConnection", "CdpEvaluationError", "CdpTimeoutError", "evaluate_once"]
