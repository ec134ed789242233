"""Tool schema definitions."""

from __future__ import annotations

from typing import Any

from ..tab_groups import VALID_COLORS

TAB_GROUP_TOOL: dict[str, Any] = {
    "name": "browser_tab_group",
    "description": """Create, list or delete tab groups. A group is your private set of tabs in the shared browser.
USAGE:
- Create: browser_tab_group(action="create", name="research", color="blue")
- List: browser_tab_group(action="list")
- Delete (closes its tabs): browser_tab_group(action="delete", groupId="g_0123456789abcdef")
- Delete but keep tabs open: browser_tab_group(action="delete", groupId="g_...", closeTabs=false)

Pass the returned groupId to every browser_tabs call. When the tab-grouper extension is
loaded, tabs are also shown as a native Chrome tab group.""",
    "inputSchema": {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["create", "list", "delete"],
                "description": "Group action",
            },
            "name": {"type": "string", "description": "For create: group name"},
            "color": {
                "type": "string",
                "enum": list(VALID_COLORS),
                "description": "For create: group color (invalid values are ignored)",
            },
            "groupId": {"type": "string", "description": "For delete: group id"},
            "closeTabs": {
                "type": "boolean",
                "default": True,
                "description": "For delete: also close the group's tabs (default: true)",
            },
        },
        "required": ["action"],
        "additionalProperties": False,
    },
}

TABS_TOOL: dict[str, Any] = {
    "name": "browser_tabs",
    "description": """Manage browser tabs: list, open, close, focus.
USAGE:
- List your group: browser_tabs(action="list", groupId="g_...")
- List every tab: browser_tabs(action="list")  (each tab labelled [group name] or [ungrouped])
- Open: browser_tabs(action="new", groupId="g_...", url="https://example.com")  (groupId required)
- Close by index: browser_tabs(action="close", groupId="g_...", index=0)
- Focus by id: browser_tabs(action="select", groupId="g_...", targetId="ABC123")

With a groupId, tabs belonging to other groups are invisible and cannot be closed or selected.
Without one, list/close/select act on every tab in the browser.""",
    "inputSchema": {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["list", "new", "close", "select"],
                "default": "list",
                "description": "Tab action",
            },
            "groupId": {
                "type": "string",
                "description": "Tab group id (from browser_tab_group); required for new, optional scope otherwise",
            },
            "url": {"type": "string", "description": "For new: URL to open (default about:blank)"},
            "index": {"type": "integer", "minimum": 0, "description": "For close/select: index from list"},
            "targetId": {"type": "string", "description": "For close/select: CDP target id"},
        },
        "additionalProperties": False,
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [TAB_GROUP_TOOL, TABS_TOOL]

__all__ = ["TABS_TOOL", "TAB_GROUP_TOOL", "TOOL_DEFINITIONS"]
