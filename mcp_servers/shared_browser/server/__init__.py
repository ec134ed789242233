"""MCP server surface: tool contract, dispatch and handlers."""
