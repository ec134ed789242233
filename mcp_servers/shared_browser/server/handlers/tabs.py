"""
browser_tabs handler: tab lifecycle, scoped to one ownership group when a groupId is given.

Without a groupId, list/close/select see every tab in the browser (each listed tab is
labelled with its owning group); opening a tab always requires a group.

Visual grouping is decoration only. Every extension call here goes through
`ctx.best_effort` so a missing or sleeping extension never fails a tab operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ...cdp_targets import CdpTarget, close_page, create_page, focus_page
from ...tab_groups import TabGroup, TabGroupNotFoundError
from ..types import ToolError, ToolResult

if TYPE_CHECKING:
    from ..context import ToolContext

logger = logging.getLogger("mcp.shared_browser.handlers.tabs")

TOOL = "browser_tabs"
DEFAULT_COLOR = "grey"


def _scope(ctx: ToolContext, args: dict[str, Any], action: str) -> TabGroup | None:
    """The group named by groupId, or None for the whole browser."""
    group_id = args.get("groupId")
    if group_id is None or group_id == "":
        return None
    if not isinstance(group_id, str):
        raise ToolError(TOOL, action, "groupId must be a string")
    group = ctx.store.get_group(group_id)
    if group is None:
        raise TabGroupNotFoundError(group_id)
    return group


def _scoped_pages(ctx: ToolContext, group: TabGroup | None) -> list[CdpTarget]:
    """Live pages in browser order (only the group's when scoped); prunes closed tabs first."""
    pages = ctx.live_pages()
    ctx.store.prune_stale(p.id for p in pages)
    if group is None:
        return pages
    owned = set(ctx.store.get_tabs_in_group(group.group_id))
    return [p for p in pages if p.id in owned]


def _resolve_target(ctx: ToolContext, group: TabGroup | None, args: dict[str, Any], action: str) -> str:
    target_id = args.get("targetId")
    if isinstance(target_id, str) and target_id:
        if group is not None and ctx.store.get_group_for_tab(target_id) != group.group_id:
            raise ToolError(TOOL, action, f"Tab {target_id} does not belong to group {group.group_id}")
        return target_id

    index = args.get("index")
    if isinstance(index, bool) or not isinstance(index, int):
        raise ToolError(TOOL, action, "targetId or index is required", suggestion='List tabs with action="list"')
    pages = _scoped_pages(ctx, group)
    if index < 0 or index >= len(pages):
        scope = "group" if group is not None else "browser"
        raise ToolError(TOOL, action, f"index {index} out of range ({scope} has {len(pages)} tabs)")
    return pages[index].id


def _group_id(group: TabGroup | None) -> str | None:
    return group.group_id if group is not None else None


def _list(ctx: ToolContext, group: TabGroup | None, args: dict[str, Any]) -> ToolResult:
    pages = _scoped_pages(ctx, group)
    tabs = [{"index": i, **p.to_dict()} for i, p in enumerate(pages)]
    if group is None:
        with ctx.store.snapshot() as reg:
            for tab in tabs:
                entry = reg.tabs.get(tab["targetId"])
                owner = reg.groups.get(entry.group_id) if entry is not None else None
                tab["groupId"] = owner.group_id if owner is not None else None
                tab["label"] = f"[{owner.name}]" if owner is not None else "[ungrouped]"
    return ToolResult.json({"action": "list", "groupId": _group_id(group), "tabs": tabs, "total": len(tabs)})


def _attach_visual(ctx: ToolContext, group: TabGroup, chrome_tab_id: int) -> bool:
    visual = ctx.visual()
    color = group.color or DEFAULT_COLOR
    chrome_group_id = ctx.best_effort(
        "group_tabs", visual.group_tabs, [chrome_tab_id], group.name, color, group.chrome_group_id
    )
    if chrome_group_id is None:
        return False
    if group.chrome_group_id is None:
        ctx.store.set_chrome_group_id(group.group_id, chrome_group_id)
    return True


def _new(ctx: ToolContext, group: TabGroup | None, args: dict[str, Any]) -> ToolResult:
    if group is None:
        raise ToolError(
            TOOL,
            "new",
            "groupId is required when creating new tabs",
            suggestion='Create one with browser_tab_group(action="create") and pass its groupId',
        )
    url = args.get("url") if isinstance(args.get("url"), str) and args.get("url") else "about:blank"
    extension = ctx.extension_available()

    target_id: str | None = None
    chrome_tab_id: int | None = None
    if extension:
        visual = ctx.visual()
        created = ctx.best_effort("create_tab", visual.create_tab, url)
        if created is not None and created.target_id:
            target_id = created.target_id
            chrome_tab_id = created.chrome_tab_id
        elif created is not None:
            # The extension opened a tab CDP never reported; close it before opening our own.
            ctx.best_effort("close_orphan_tab", visual.close_tab, created.chrome_tab_id)
    if target_id is None:
        target_id = create_page(ctx.endpoint, url)
        if extension:
            # Weak (url, title) correlation; duplicates of the same URL may pick the wrong tab.
            chrome_tab_id = ctx.best_effort("correlate_tab", ctx.visual().get_chrome_tab_id, url)

    ctx.store.add_tab(target_id, group.group_id, chrome_tab_id)
    grouped = chrome_tab_id is not None and _attach_visual(ctx, group, chrome_tab_id)
    logger.info("tab_opened target=%s group=%s chrome_tab=%s grouped=%s", target_id, group.group_id, chrome_tab_id, grouped)

    payload: dict[str, Any] = {
        "action": "new",
        "groupId": group.group_id,
        "targetId": target_id,
        "url": url,
        "visualGroup": grouped,
    }
    if chrome_tab_id is not None:
        payload["chromeTabId"] = chrome_tab_id
    return ToolResult.json(payload)


def _close(ctx: ToolContext, group: TabGroup | None, args: dict[str, Any]) -> ToolResult:
    target_id = _resolve_target(ctx, group, args, "close")
    chrome_tab_id = ctx.store.get_chrome_tab_id(target_id)

    via_extension = False
    if chrome_tab_id is not None:
        visual = ctx.visual()
        via_extension = bool(ctx.best_effort("close_tab", lambda: visual.close_tab(chrome_tab_id) or True))
    if not via_extension:
        close_page(ctx.endpoint, target_id)

    ctx.store.remove_tab(target_id)
    logger.info("tab_closed target=%s group=%s via_extension=%s", target_id, _group_id(group), via_extension)
    return ToolResult.json({"action": "close", "groupId": _group_id(group), "targetId": target_id})


def _select(ctx: ToolContext, group: TabGroup | None, args: dict[str, Any]) -> ToolResult:
    target_id = _resolve_target(ctx, group, args, "select")
    focus_page(ctx.endpoint, target_id)
    return ToolResult.json({"action": "select", "groupId": _group_id(group), "targetId": target_id})


_ACTIONS = {"list": _list, "new": _new, "close": _close, "select": _select}


def handle_browser_tabs(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    action = args.get("action") or "list"
    handler = _ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        raise ToolError(TOOL, str(action), f"unknown action {action!r}", suggestion="Use list, new, close or select")
    group = _scope(ctx, args, action)
    return handler(ctx, group, args)


TABS_HANDLERS: dict[str, Any] = {TOOL: handle_browser_tabs}
