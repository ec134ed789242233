"""Bridge to the companion tab-grouping extension.

The extension exposes global functions (`groupTabs`, `queryTabs`, ...) in its
background context. The only way in is CDP `Runtime.evaluate` on that target, so
the bridge has to find the right background target first:

1. A handle cached for the endpoint is trusted only while its websocket URL is
   still in `/json/list`.
2. Otherwise every extension background target is feature-probed in parallel;
   the first one (in list order) where `groupTabs` is a function wins.
3. MV3 service workers sleep and vanish from the target list. If nothing answers
   but the extension id is known, another extension's background target is used
   as a relay to send the sleeper a runtime message, which starts it. After a
   settle delay the targets are scanned once more.

Waking is best-effort; callers must treat a miss as "no decoration", never as a
failure of the tab operation itself.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .cdp_connection import CdpEvaluationError, evaluate_once
from .cdp_targets import CdpTarget, list_targets
from .http_client import HttpClientError, normalize_endpoint

if TYPE_CHECKING:
    from .tab_groups import TabGroupStore

_LOGGER = logging.getLogger("mcp.shared_browser.extension")

PROBE_EXPRESSION = "typeof groupTabs === 'function'"
BACKGROUND_TYPES = frozenset({"service_worker", "background_page"})
EXTENSION_SCHEME = "chrome-extension://"
_EXTENSION_ID_RE = re.compile(r"chrome-extension://([a-p]{32})(?:/|$)")
_MAX_PROBE_WORKERS = 8

EXTENSION_NOT_FOUND_MESSAGE = (
    "Tab Grouper extension not found. Visual tab groups require the companion extension.\n"
    "Load it with: MCP_BROWSER_EXTENSIONS=/path/to/tab-grouper"
)


class ExtensionNotFoundError(RuntimeError):
    def __init__(self, message: str = EXTENSION_NOT_FOUND_MESSAGE) -> None:
        super().__init__(message)


def compute_extension_id(path: str | Path) -> str:
    """Chrome's id for an unpacked extension: sha256 of the absolute path, nibbles mapped onto a..p."""
    absolute = str(Path(path).expanduser().resolve())
    digest = hashlib.sha256(absolute.encode("utf-8")).digest()[:16]
    return "".join(chr(ord("a") + (b >> 4)) + chr(ord("a") + (b & 0x0F)) for b in digest)


def extension_id_from_url(url: str) -> str | None:
    match = _EXTENSION_ID_RE.match(url or "")
    return match.group(1) if match else None


def is_extension_background(target: CdpTarget) -> bool:
    return target.type in BACKGROUND_TYPES and target.url.startswith(EXTENSION_SCHEME) and bool(target.ws_url)


def wake_expression(extension_id: str) -> str:
    # Any inbound message starts a sleeping service worker; the reply (or lack of a listener) is irrelevant.
    return (
        f"chrome.runtime.sendMessage({json.dumps(extension_id)}, {{type: 'wake'}})"
        ".then(() => true).catch(() => true)"
    )


class ExtensionBridge:
    """Per-process discovery cache plus the RPC entry point."""

    def __init__(
        self,
        store: TabGroupStore | None = None,
        *,
        probe_timeout: float = 3.0,
        wake_timeout: float = 5.0,
        settle_delay: float = 2.5,
        rpc_timeout: float = 10.0,
        list_timeout: float = 2.0,
    ) -> None:
        self.store = store
        self.probe_timeout = probe_timeout
        self.wake_timeout = wake_timeout
        self.settle_delay = settle_delay
        self.rpc_timeout = rpc_timeout
        self.list_timeout = list_timeout
        self._lock = threading.Lock()
        self._targets: dict[str, CdpTarget] = {}
        self._extension_id: str | None = None

    # ── Extension id ───────────────────────────────────────────────────────

    def known_extension_id(self) -> str | None:
        with self._lock:
            if self._extension_id:
                return self._extension_id
        if self.store is None:
            return None
        ext_id = self.store.get_extension_id()
        if ext_id:
            with self._lock:
                self._extension_id = ext_id
        return ext_id

    def remember_extension_id(self, extension_id: str) -> None:
        with self._lock:
            self._extension_id = extension_id
        if self.store is None:
            return
        try:
            if self.store.get_extension_id() != extension_id:
                self.store.set_extension_id(extension_id)
        except OSError as exc:
            _LOGGER.warning("extension_id_persist_failed id=%s error=%s", extension_id, exc)

    def seed_extension_id(self, path: str | Path) -> str:
        extension_id = compute_extension_id(path)
        self.remember_extension_id(extension_id)
        _LOGGER.info("extension_id_seeded id=%s path=%s", extension_id, path)
        return extension_id

    # ── Discovery ──────────────────────────────────────────────────────────

    def cached_target(self, endpoint: str) -> CdpTarget | None:
        with self._lock:
            return self._targets.get(normalize_endpoint(endpoint))

    def forget(self, endpoint: str) -> None:
        with self._lock:
            self._targets.pop(normalize_endpoint(endpoint), None)

    def _probe(self, target: CdpTarget) -> bool:
        try:
            return evaluate_once(target.ws_url or "", PROBE_EXPRESSION, timeout=self.probe_timeout) is True
        except (HttpClientError, CdpEvaluationError) as exc:
            _LOGGER.debug("extension_probe_failed url=%s error=%s", target.url, exc)
            return False

    def _scan(self, targets: list[CdpTarget]) -> CdpTarget | None:
        candidates = [t for t in targets if is_extension_background(t)]
        if not candidates:
            return None
        with ThreadPoolExecutor(max_workers=min(_MAX_PROBE_WORKERS, len(candidates))) as pool:
            results = list(pool.map(self._probe, candidates))
        for target, ok in zip(candidates, results):
            if ok:
                return target
        return None

    def _wake(self, targets: list[CdpTarget], extension_id: str) -> bool:
        relays = [t for t in targets if is_extension_background(t) and extension_id not in t.url]
        if not relays:
            _LOGGER.info("extension_wake_impossible id=%s reason=no_relay", extension_id)
            return False
        expression = wake_expression(extension_id)
        for relay in relays:
            try:
                evaluate_once(relay.ws_url or "", expression, timeout=self.wake_timeout)
            except (HttpClientError, CdpEvaluationError) as exc:
                _LOGGER.debug("extension_wake_relay_failed relay=%s error=%s", relay.url, exc)
                continue
            _LOGGER.info("extension_wake_sent id=%s relay=%s", extension_id, relay.url)
            return True
        return False

    def _adopt(self, key: str, target: CdpTarget) -> CdpTarget:
        with self._lock:
            self._targets[key] = target
        extension_id = extension_id_from_url(target.url)
        if extension_id:
            self.remember_extension_id(extension_id)
        _LOGGER.info("extension_found endpoint=%s url=%s", key, target.url)
        return target

    def discover(self, endpoint: str) -> CdpTarget | None:
        """Find the responsive extension background target, waking it if needed.

        Raises HttpClientError when the target list itself cannot be fetched.
        """
        key = normalize_endpoint(endpoint)
        targets = list_targets(key, timeout=self.list_timeout)

        cached = self.cached_target(key)
        if cached is not None:
            if any(t.ws_url == cached.ws_url for t in targets):
                return cached
            self.forget(key)

        found = self._scan(targets)
        if found is not None:
            return self._adopt(key, found)

        extension_id = self.known_extension_id()
        if not extension_id or not self._wake(targets, extension_id):
            return None

        time.sleep(self.settle_delay)
        found = self._scan(list_targets(key, timeout=self.list_timeout))
        if found is not None:
            return self._adopt(key, found)
        _LOGGER.info("extension_wake_no_response id=%s", extension_id)
        return None

    def is_available(self, endpoint: str) -> bool:
        try:
            return self.discover(endpoint) is not None
        except HttpClientError:
            return False

    def warmup(self, endpoint: str) -> bool:
        """Discover ahead of the first visual call; never raises."""
        try:
            return self.discover(endpoint) is not None
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("extension_warmup_failed endpoint=%s error=%s", endpoint, exc)
            return False

    def warmup_in_background(self, endpoint: str) -> threading.Thread:
        thread = threading.Thread(target=self.warmup, args=(endpoint,), name="extension-warmup", daemon=True)
        thread.start()
        return thread

    # ── RPC ────────────────────────────────────────────────────────────────

    def call(self, endpoint: str, expression: str, *, timeout: float | None = None) -> Any:
        target = self.discover(endpoint)
        if target is None:
            raise ExtensionNotFoundError()
        try:
            return evaluate_once(target.ws_url or "", expression, timeout=timeout or self.rpc_timeout)
        except HttpClientError:
            # The worker may have gone to sleep between discovery and the call.
            self.forget(endpoint)
            raise


__all__ = [
    "EXTENSION_NOT_FOUND_MESSAGE",
    "PROBE_EXPRESSION",
    "ExtensionBridge",
    "ExtensionNotFoundError",
    "compute_extension_id",
    "extension_id_from_url",
    "is_extension_background",
    "wake_expression",
]
