"""Native Chrome tab-group operations, executed inside the companion extension."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .cdp_targets import CdpTarget, list_pages
from .extension_bridge import ExtensionBridge
from .http_client import HttpClientError

_LOGGER = logging.getLogger("mcp.shared_browser.chrome_groups")


@dataclass(frozen=True, slots=True)
class NativeGroup:
    id: int
    title: str
    color: str
    collapsed: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NativeGroup:
        return cls(
            id=int(data["id"]),
            title=str(data.get("title") or ""),
            color=str(data.get("color") or ""),
            collapsed=bool(data.get("collapsed")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "color": self.color, "collapsed": self.collapsed}


@dataclass(frozen=True, slots=True)
class NativeTab:
    id: int
    url: str
    title: str
    group_id: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NativeTab:
        group_id = data.get("groupId")
        return cls(
            id=int(data["id"]),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            # chrome.tabGroups.TAB_GROUP_ID_NONE is -1
            group_id=group_id if isinstance(group_id, int) and group_id >= 0 else None,
        )


@dataclass(frozen=True, slots=True)
class CreatedTab:
    chrome_tab_id: int
    target_id: str | None
    window_id: int | None = None


def correlate_tab(url: str, title: str | None, tabs: Iterable[NativeTab]) -> int | None:
    """Map a (url, title) pair onto a native tab id.

    A single url match wins. Several matches are narrowed by title; if that does not
    settle it, the first candidate is returned and may be the wrong tab.
    """
    matches = [t for t in tabs if t.url == url]
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0].id
    if title:
        for tab in matches:
            if tab.title == title:
                return tab.id
    return matches[0].id


def _js_call(function: str, *args: Any) -> str:
    return f"{function}({', '.join(json.dumps(a) for a in args)})"


class ChromeTabGroups:
    """Thin typed wrappers over the extension's exported functions."""

    def __init__(
        self,
        bridge: ExtensionBridge,
        endpoint: str,
        *,
        poll_attempts: int = 20,
        poll_interval: float = 0.2,
    ) -> None:
        self.bridge = bridge
        self.endpoint = endpoint
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval

    def _call(self, function: str, *args: Any) -> Any:
        return self.bridge.call(self.endpoint, _js_call(function, *args))

    def is_available(self) -> bool:
        return self.bridge.is_available(self.endpoint)

    def group_tabs(
        self,
        tab_ids: list[int],
        title: str,
        color: str | None = None,
        existing_group_id: int | None = None,
    ) -> int:
        if existing_group_id is None:
            result = self._call("groupTabs", tab_ids, title, color)
        else:
            result = self._call("groupTabs", tab_ids, title, color, existing_group_id)
        if not isinstance(result, dict) or not isinstance(result.get("groupId"), int):
            raise HttpClientError(f"groupTabs returned unexpected value: {result!r}")
        return result["groupId"]

    def ungroup_tabs(self, tab_ids: list[int]) -> None:
        self._call("ungroupTabs", tab_ids)

    def update_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: str | None = None,
        collapsed: bool | None = None,
    ) -> None:
        updates: dict[str, Any] = {}
        if title is not None:
            updates["title"] = title
        if color is not None:
            updates["color"] = color
        if collapsed is not None:
            updates["collapsed"] = collapsed
        self._call("updateTabGroup", group_id, updates)

    def list_groups(self) -> list[NativeGroup]:
        result = self._call("listTabGroups")
        return [NativeGroup.from_dict(g) for g in (result or []) if isinstance(g, dict) and "id" in g]

    def query_tabs(self) -> list[NativeTab]:
        result = self._call("queryTabs")
        return [NativeTab.from_dict(t) for t in (result or []) if isinstance(t, dict) and "id" in t]

    def close_tab(self, chrome_tab_id: int) -> None:
        self._call("closeTab", chrome_tab_id)

    def create_tab(self, url: str = "about:blank") -> CreatedTab:
        """Open a tab through the extension and find the CDP target it produced."""
        before = {t.id for t in list_pages(self.endpoint)}
        result = self._call("createTab", url)
        if not isinstance(result, dict) or not isinstance(result.get("tabId"), int):
            raise HttpClientError(f"createTab returned unexpected value: {result!r}")
        window_id = result.get("windowId")

        target_id: str | None = None
        for _ in range(self.poll_attempts):
            fresh = [t for t in list_pages(self.endpoint) if t.id not in before]
            if fresh:
                target_id = next((t.id for t in fresh if t.url == url), fresh[0].id)
                break
            time.sleep(self.poll_interval)
        if target_id is None:
            _LOGGER.warning("create_tab_target_not_found chrome_tab=%s url=%s", result["tabId"], url)
        return CreatedTab(
            chrome_tab_id=result["tabId"],
            target_id=target_id,
            window_id=window_id if isinstance(window_id, int) else None,
        )

    def get_chrome_tab_id(self, url: str, title: str | None = None) -> int | None:
        return correlate_tab(url, title, self.query_tabs())

    def map_target_ids(self, targets: Iterable[CdpTarget]) -> dict[str, int]:
        """Correlate CDP targets with native tab ids in one `queryTabs` round-trip."""
        tabs = self.query_tabs()
        out: dict[str, int] = {}
        for target in targets:
            chrome_tab_id = correlate_tab(target.url, target.title, tabs)
            if chrome_tab_id is not None:
                out[target.id] = chrome_tab_id
        return out


__all__ = ["ChromeTabGroups", "CreatedTab", "NativeGroup", "NativeTab", "correlate_tab"]
