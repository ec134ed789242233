"""Tool handlers grouped by tool."""
