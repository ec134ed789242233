"""
browser_tab_group handler: create, list and delete ownership groups.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ...cdp_targets import close_page
from ...http_client import HttpClientError
from ..types import ToolError, ToolResult

if TYPE_CHECKING:
    from ..context import ToolContext

logger = logging.getLogger("mcp.shared_browser.handlers.tab_group")

TOOL = "browser_tab_group"


def _create(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    name = args.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ToolError(TOOL, "create", "name is required", suggestion='browser_tab_group(action="create", name="...")')
    group = ctx.store.create_group(name, args.get("color"))
    visual = ctx.extension_available()
    logger.info("group_created id=%s name=%s visual=%s", group.group_id, group.name, visual)
    payload: dict[str, Any] = {"action": "create", "group": group.to_dict(), "visualGroups": visual}
    if not visual:
        payload["note"] = "Tab grouper extension not available; tabs are isolated but not visually grouped."
    return ToolResult.json(payload)


def _list(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    ctx.store.prune_stale(t.id for t in ctx.live_pages())
    summaries = ctx.store.list_groups()

    native: dict[int, dict[str, Any]] = {}
    if any(s.group.chrome_group_id is not None for s in summaries):
        groups = ctx.best_effort("list_groups", ctx.visual().list_groups) or []
        native = {g.id: g.to_dict() for g in groups}

    out: list[dict[str, Any]] = []
    for summary in summaries:
        item = summary.to_dict()
        chrome_group_id = summary.group.chrome_group_id
        if chrome_group_id is not None and chrome_group_id in native:
            item["visual"] = native[chrome_group_id]
        out.append(item)
    return ToolResult.json({"action": "list", "groups": out, "total": len(out)})


def _delete(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    group_id = args.get("groupId")
    if not isinstance(group_id, str) or not group_id:
        raise ToolError(TOOL, "delete", "groupId is required")
    close_tabs = args.get("closeTabs", True) is not False

    entries = ctx.store.pop_group(group_id)
    removed = list(entries)
    native_ids = [e.chrome_tab_id for e in entries.values() if e.chrome_tab_id is not None]
    if native_ids:
        ctx.best_effort("ungroup_tabs", ctx.visual().ungroup_tabs, native_ids)

    closed: list[str] = []
    failed: list[dict[str, str]] = []
    if close_tabs:
        for target_id in removed:
            try:
                close_page(ctx.endpoint, target_id)
            except HttpClientError as exc:
                logger.info("tab_close_failed target=%s error=%s", target_id, exc)
                failed.append({"targetId": target_id, "error": str(exc)})
            else:
                closed.append(target_id)

    logger.info("group_deleted id=%s tabs=%d closed=%d", group_id, len(removed), len(closed))
    payload: dict[str, Any] = {
        "action": "delete",
        "groupId": group_id,
        "removedTargetIds": removed,
        "closedTargetIds": closed,
    }
    if failed:
        payload["closeFailures"] = failed
    return ToolResult.json(payload)


_ACTIONS = {"create": _create, "list": _list, "delete": _delete}


def handle_browser_tab_group(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    action = args.get("action")
    handler = _ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        raise ToolError(TOOL, str(action), f"unknown action {action!r}", suggestion="Use create, list or delete")
    return handler(ctx, args)


TAB_GROUP_HANDLERS: dict[str, Any] = {TOOL: handle_browser_tab_group}
