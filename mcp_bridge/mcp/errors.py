"""JSON-RPC 2.0 error codes, the bridge error taxonomy and error helpers."""

from enum import Enum
from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700  # Invalid JSON was received
INVALID_REQUEST = -32600  # The JSON sent is not a valid Request object
METHOD_NOT_FOUND = -32601  # The method does not exist / is not available
INVALID_PARAMS = -32602  # Invalid method parameter(s)
INTERNAL_ERROR = -32603  # Internal JSON-RPC error

# Custom error codes (server-defined, must be between -32000 and -32099)
TOOL_EXECUTION_ERROR = -32000  # Tool execution failed
AUTHENTICATION_ERROR = -32001  # Authentication required or failed
SESSION_NOT_READY = -32002  # Request arrived before the handshake completed
HANDSHAKE_ERROR = -32003  # Capability negotiation failed
TOOL_TIMEOUT = -32004  # Tool exceeded its deadline

# MCP / LSP convention for cancelled requests
REQUEST_CANCELLED = -32800


class ErrorKind(str, Enum):
    """Stable, machine-readable error kinds reported in ``error.data.kind``."""

    MALFORMED_MESSAGE = "MalformedMessage"
    INVALID_REQUEST = "InvalidRequest"
    DUPLICATE_TOOL = "DuplicateTool"
    TOOL_NOT_FOUND = "ToolNotFound"
    INVALID_ARGUMENTS = "InvalidArguments"
    SESSION_NOT_READY = "SessionNotReady"
    HANDSHAKE_ERROR = "HandshakeError"
    HANDLER_FAILURE = "HandlerFailure"
    HANDLER_TIMEOUT = "HandlerTimeout"
    REQUEST_CANCELLED = "RequestCancelled"
    AUTHENTICATION_ERROR = "AuthenticationError"
    INTERNAL_ERROR = "InternalError"
    CONNECTION_CLOSED = "ConnectionClosed"
    TRANSPORT_ERROR = "TransportError"


def error_message(code: int) -> str:
    """Get the standard message for a JSON-RPC error code."""
    messages = {
        PARSE_ERROR: "Parse error",
        INVALID_REQUEST: "Invalid Request",
        METHOD_NOT_FOUND: "Method not found",
        INVALID_PARAMS: "Invalid params",
        INTERNAL_ERROR: "Internal error",
        TOOL_EXECUTION_ERROR: "Tool execution error",
        AUTHENTICATION_ERROR: "Authentication required",
        SESSION_NOT_READY: "Session not ready",
        HANDSHAKE_ERROR: "Handshake failed",
        TOOL_TIMEOUT: "Tool timed out",
        REQUEST_CANCELLED: "Request cancelled",
    }
    return messages.get(code, "Unknown error")


def make_error_data(
    code: int,
    message: str | None = None,
    data: Any = None,
    kind: ErrorKind | None = None,
) -> dict[str, Any]:
    """Create an error object for JSON-RPC response."""
    error: dict[str, Any] = {
        "code": code,
        "message": message or error_message(code),
    }
    if kind is not None:
        detail = {"kind": kind.value}
        if isinstance(data, dict):
            detail.update(data)
        elif data is not None:
            detail["detail"] = data
        error["data"] = detail
    elif data is not None:
        error["data"] = data
    return error


# =============================================================================
# Exceptions
# =============================================================================


class BridgeError(Exception):
    """Base class for every error the bridge reports to a peer or operator."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    code: int = INTERNAL_ERROR

    def __init__(self, message: str | None = None, data: Any = None):
        self.message = message or error_message(self.code)
        self.data = data
        super().__init__(self.message)

    def to_error_data(self) -> dict[str, Any]:
        """Render as a JSON-RPC error object."""
        return make_error_data(self.code, self.message, self.data, kind=self.kind)


class MalformedMessage(BridgeError):
    """The codec could not turn the bytes into a valid envelope.

    ``request_id`` holds the correlation id when it could still be read from
    the payload, so the peer can be told which request was rejected.
    """

    kind = ErrorKind.MALFORMED_MESSAGE
    code = INVALID_REQUEST

    def __init__(
        self,
        message: str | None = None,
        data: Any = None,
        request_id: int | str | None = None,
        code: int | None = None,
    ):
        if code is not None:
            self.code = code
        self.request_id = request_id
        super().__init__(message, data)


class InvalidRequest(BridgeError):
    kind = ErrorKind.INVALID_REQUEST
    code = INVALID_REQUEST


class DuplicateTool(BridgeError):
    kind = ErrorKind.DUPLICATE_TOOL
    code = INTERNAL_ERROR


class ToolNotFound(BridgeError):
    kind = ErrorKind.TOOL_NOT_FOUND
    code = METHOD_NOT_FOUND


class InvalidArguments(BridgeError):
    """Argument validation failed; ``violations`` lists every offending parameter."""

    kind = ErrorKind.INVALID_ARGUMENTS
    code = INVALID_PARAMS

    def __init__(self, violations: list[dict[str, str]], message: str | None = None):
        self.violations = violations
        names = ", ".join(v["parameter"] for v in violations)
        super().__init__(
            message or f"Invalid arguments: {names}",
            {"violations": violations},
        )


class SessionNotReady(BridgeError):
    kind = ErrorKind.SESSION_NOT_READY
    code = SESSION_NOT_READY


class HandshakeError(BridgeError):
    kind = ErrorKind.HANDSHAKE_ERROR
    code = HANDSHAKE_ERROR


class HandlerFailure(BridgeError):
    kind = ErrorKind.HANDLER_FAILURE
    code = TOOL_EXECUTION_ERROR


class HandlerTimeout(BridgeError):
    kind = ErrorKind.HANDLER_TIMEOUT
    code = TOOL_TIMEOUT


class RequestCancelled(BridgeError):
    kind = ErrorKind.REQUEST_CANCELLED
    code = REQUEST_CANCELLED


class ConnectionClosed(BridgeError):
    """The peer went away; there is nobody left to send an envelope to."""

    kind = ErrorKind.CONNECTION_CLOSED


class TransportError(BridgeError):
    """Framing on the wire is corrupt; the connection cannot continue."""

    kind = ErrorKind.TRANSPORT_ERROR
