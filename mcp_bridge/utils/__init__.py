"""Utility modules: logging."""

from mcp_bridge.utils.logging import setup_logging, get_logger, set_request_id

__all__ = ["setup_logging", "get_logger", "set_request_id"]
