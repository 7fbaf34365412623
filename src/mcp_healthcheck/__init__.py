"""Validate and health-check MCP server configurations."""

__version__ = "1.0.0"
