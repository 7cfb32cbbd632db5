"""MCP (Model Context Protocol) bridge core with JSON-RPC 2.0."""

from mcp_bridge.mcp.models import (
    JsonRpcRequest,
    JsonRpcNotification,
    JsonRpcResponse,
    JsonRpcError,
    Tool,
    ToolParameter,
    ToolDescriptor,
    ToolSuccess,
    ToolFailure,
    ToolInvocationResult,
    ErrorObject,
)
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.mcp.session import Session, SessionManager, SessionState
from mcp_bridge.mcp.dispatcher import Dispatcher
from mcp_bridge.mcp.context import current_invocation
from mcp_bridge.mcp.errors import (
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
    ErrorKind,
    BridgeError,
)

__all__ = [
    "JsonRpcRequest",
    "JsonRpcNotification",
    "JsonRpcResponse",
    "JsonRpcError",
    "Tool",
    "ToolParameter",
    "ToolDescriptor",
    "ToolSuccess",
    "ToolFailure",
    "ToolInvocationResult",
    "ErrorObject",
    "ToolRegistry",
    "Session",
    "SessionManager",
    "SessionState",
    "Dispatcher",
    "current_invocation",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "ErrorKind",
    "BridgeError",
]
