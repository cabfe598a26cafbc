"""MCP tool modules."""
