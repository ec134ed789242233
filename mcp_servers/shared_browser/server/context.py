"""Per-process state shared by every tool call."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from ..cdp_connection import CdpEvaluationError
from ..cdp_targets import CdpTarget, list_pages
from ..chrome_tab_groups import ChromeTabGroups
from ..config import ServerConfig
from ..daemon_manager import ensure_daemon_running
from ..extension_bridge import ExtensionBridge, ExtensionNotFoundError
from ..http_client import HttpClientError
from ..tab_groups import TabGroupStore

_LOGGER = logging.getLogger("mcp.shared_browser.context")

T = TypeVar("T")

# Directory names recognised as the companion extension when seeding its id.
TAB_GROUPER_DIR_MARKERS = ("tab-grouper", "tab_grouper")

VISUAL_ERRORS = (HttpClientError, CdpEvaluationError, ExtensionNotFoundError, OSError, ValueError)


class ToolContext:
    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        store: TabGroupStore | None = None,
        bridge: ExtensionBridge | None = None,
    ) -> None:
        self.config = config or ServerConfig.from_env()
        self.store = store or TabGroupStore()
        self.bridge = bridge or ExtensionBridge(self.store, rpc_timeout=self.config.rpc_timeout)
        self._endpoint = self.config.cdp_endpoint

    @property
    def endpoint(self) -> str:
        """Configured CDP endpoint, or the shared daemon's (started on first use)."""
        if self._endpoint is None:
            self._endpoint = ensure_daemon_running(self.config.daemon)
        return self._endpoint

    def seed_extension_ids(self) -> list[str]:
        seeded: list[str] = []
        for raw in self.config.daemon.extensions:
            if any(marker in Path(raw).name for marker in TAB_GROUPER_DIR_MARKERS):
                seeded.append(self.bridge.seed_extension_id(raw))
        return seeded

    def visual(self) -> ChromeTabGroups:
        return ChromeTabGroups(self.bridge, self.endpoint)

    def extension_available(self) -> bool:
        return bool(self.best_effort("extension_probe", self.bridge.is_available, self.endpoint))

    def live_pages(self) -> list[CdpTarget]:
        return list_pages(self.endpoint)

    def best_effort(self, label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
        """Run a visual-grouping step; failures are logged and dropped."""
        try:
            return fn(*args, **kwargs)
        except VISUAL_ERRORS as exc:
            _LOGGER.info("visual_skipped op=%s error=%s", label, exc)
            return None


__all__ = ["ToolContext"]
