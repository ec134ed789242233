"""CDP target directory (`/json/list`, `/json/version`) and browser-level tab control."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

from .cdp_connection import CdpConnection
from .http_client import HttpClientError, headers_with_auth, http_get_json, normalize_endpoint, strip_credentials

_LOGGER = logging.getLogger("mcp.shared_browser.targets")


@dataclass(frozen=True, slots=True)
class CdpTarget:
    id: str
    type: str
    url: str
    title: str = ""
    ws_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CdpTarget:
        ws_url = data.get("webSocketDebuggerUrl")
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            ws_url=str(ws_url) if isinstance(ws_url, str) and ws_url else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"targetId": self.id, "type": self.type, "url": self.url, "title": self.title}


def list_targets(endpoint: str, *, timeout: float = 2.0) -> list[CdpTarget]:
    payload = http_get_json(f"{normalize_endpoint(endpoint)}/json/list", timeout=timeout)
    if not isinstance(payload, list):
        raise HttpClientError("unexpected /json/list payload")
    return [CdpTarget.from_dict(item) for item in payload if isinstance(item, dict) and item.get("id")]


def list_pages(endpoint: str, *, timeout: float = 2.0) -> list[CdpTarget]:
    return [t for t in list_targets(endpoint, timeout=timeout) if t.type == "page"]


def cdp_version(endpoint: str, *, timeout: float = 2.0) -> dict[str, Any]:
    payload = http_get_json(f"{normalize_endpoint(endpoint)}/json/version", timeout=timeout)
    if not isinstance(payload, dict):
        raise HttpClientError("unexpected /json/version payload")
    return payload


def is_reachable(endpoint: str, *, timeout: float = 1.0) -> bool:
    """Liveness probe: `/json/version` answers 200."""
    url = f"{normalize_endpoint(endpoint)}/json/version"
    try:
        req = Request(strip_credentials(url), headers=headers_with_auth(url))
        with urlopen(req, timeout=timeout) as resp:  # noqa: S310
            return resp.status == 200
    except (OSError, TimeoutError, URLError, ValueError):
        return False


def _browser_command(endpoint: str, method: str, params: dict[str, Any], *, timeout: float) -> dict[str, Any]:
    ws_url = cdp_version(endpoint, timeout=timeout).get("webSocketDebuggerUrl")
    if not isinstance(ws_url, str) or not ws_url:
        raise HttpClientError("browser websocket URL not advertised by /json/version")
    with CdpConnection(ws_url, timeout=timeout) as conn:
        return conn.send(method, params)


def create_page(endpoint: str, url: str = "about:blank", *, timeout: float = 5.0) -> str:
    """Open a new page target and return its target id."""
    result = _browser_command(endpoint, "Target.createTarget", {"url": url or "about:blank"}, timeout=timeout)
    target_id = result.get("targetId")
    if not isinstance(target_id, str) or not target_id:
        raise HttpClientError("Target.createTarget returned no targetId")
    _LOGGER.info("page_created target=%s url=%s", target_id, url)
    return target_id


def close_page(endpoint: str, target_id: str, *, timeout: float = 5.0) -> bool:
    result = _browser_command(endpoint, "Target.closeTarget", {"targetId": target_id}, timeout=timeout)
    return bool(result.get("success", True))


def focus_page(endpoint: str, target_id: str, *, timeout: float = 5.0) -> None:
    _browser_command(endpoint, "Target.activateTarget", {"targetId": target_id}, timeout=timeout)


__all__ = [
    "CdpTarget",
    "cdp_version",
    "close_page",
    "create_page",
    "focus_page",
    "is_reachable",
    "list_pages",
    "list_targets",
]
