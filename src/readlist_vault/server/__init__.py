"""MCP server for readlist-vault."""
