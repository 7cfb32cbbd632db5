"""MCP request/response protocol bridge."""

__version__ = "1.0.0"
