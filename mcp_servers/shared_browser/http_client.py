from __future__ import annotations

import base64
import json
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    """Transport failure talking to the browser (HTTP or websocket)."""


def normalize_endpoint(endpoint: str) -> str:
    """Turn any CDP endpoint spelling into the http base used for /json/*."""
    base = (endpoint or "").strip().rstrip("/")
    if base.startswith("ws://"):
        base = "http://" + base[len("ws://") :]
    elif base.startswith("wss://"):
        base = "https://" + base[len("wss://") :]
    if base.endswith("/cdp"):
        base = base[: -len("/cdp")]
    return base


def headers_with_auth(url: str, headers: dict[str, str] | None = None) -> dict[str, str]:
    out = {"User-Agent": "shared-browser-mcp", **(headers or {})}
    if any(key.lower() == "authorization" for key in out):
        return out
    parsed = urllib.parse.urlsplit(url)
    if parsed.username or parsed.password:
        token = f"{urllib.parse.unquote(parsed.username or '')}:{urllib.parse.unquote(parsed.password or '')}"
        out["Authorization"] = "Basic " + base64.b64encode(token.encode()).decode("ascii")
    return out


def strip_credentials(url: str) -> str:
    parsed = urllib.parse.urlsplit(url)
    if not (parsed.username or parsed.password):
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    return urllib.parse.urlunsplit((parsed.scheme, netloc, parsed.path, parsed.query, parsed.fragment))


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """GET a CDP HTTP endpoint and decode its JSON body."""
    req = Request(strip_credentials(url), headers=headers_with_auth(url))
    try:
        with urlopen(req, timeout=timeout) as resp:  # noqa: S310
            raw = resp.read()
    except HTTPError as exc:
        raise HttpClientError(f"HTTP {exc.code} from {strip_credentials(url)}") from exc
    except (TimeoutError, URLError, OSError) as exc:
        raise HttpClientError(str(exc)) from exc
    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"invalid JSON from {strip_credentials(url)}") from exc


__all__ = ["HttpClientError", "headers_with_auth", "http_get_json", "normalize_endpoint", "strip_credentials"]
