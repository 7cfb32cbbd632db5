"""Pydantic models for the MCP JSON-RPC 2.0 protocol bridge."""

from typing import Any, Callable, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

from mcp_bridge.mcp.errors import ErrorKind

RequestId = StrictInt | StrictStr

# Type tags a tool parameter can declare
TypeTag = Literal["string", "integer", "number", "boolean", "array", "object", "null", "any"]


# =============================================================================
# JSON-RPC 2.0 Base Models
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request object (expects a response)."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification: a request without an id, never answered."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None

    @property
    def kind(self) -> str | None:
        """The stable error kind, when the error came from this bridge."""
        if isinstance(self.data, dict):
            return self.data.get("kind")
        return None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        return data


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response object. Carries a result or an error, never both."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None
    result: Any = None
    error: JsonRpcError | None = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "JsonRpcResponse":
        if self.error is not None and self.result is not None:
            raise ValueError("response must not carry both result and error")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Custom serialization to exclude None fields appropriately."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump()
        else:
            data["result"] = self.result
        return data


# =============================================================================
# Tool Descriptors and Invocation Results
# =============================================================================


class ToolParameter(BaseModel):
    """One entry of a tool's ordered parameter schema."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: TypeTag = "string"
    required: bool = True
    default: Any = None
    description: str = ""


class ToolDescriptor(BaseModel):
    """A registered tool: its schema, documentation and handler.

    Descriptors are immutable once built. ``allow_extra`` opts the tool into
    receiving parameters it did not declare; ``timeout`` overrides the
    dispatcher deadline for this tool (0 disables it).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()
    returns: TypeTag = "any"
    allow_extra: bool = False
    timeout: float | None = None
    handler: Callable[..., Any] = Field(exclude=True)

    @field_validator("parameters")
    @classmethod
    def _unique_parameter_names(
        cls, parameters: tuple[ToolParameter, ...]
    ) -> tuple[ToolParameter, ...]:
        seen: set[str] = set()
        for param in parameters:
            if param.name in seen:
                raise ValueError(f"duplicate parameter name: {param.name}")
            seen.add(param.name)
        return parameters

    def parameter(self, name: str) -> ToolParameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None


class ErrorObject(BaseModel):
    """An error produced by a tool handler before it is put on the wire."""

    kind: ErrorKind = ErrorKind.HANDLER_FAILURE
    message: str
    detail: Any = None


class ToolSuccess(BaseModel):
    status: Literal["success"] = "success"
    value: Any = None


class ToolFailure(BaseModel):
    status: Literal["failure"] = "failure"
    error: ErrorObject

    @classmethod
    def from_message(cls, message: str, detail: Any = None) -> "ToolFailure":
        return cls(error=ErrorObject(message=message, detail=detail))


ToolInvocationResult = ToolSuccess | ToolFailure


# =============================================================================
# MCP Content Types
# =============================================================================


class TextContent(BaseModel):
    """Text content returned by tools."""

    type: Literal["text"] = "text"
    text: str


class ToolCallResult(BaseModel):
    """Result of a ``tools/call`` request."""

    content: list[TextContent]
    isError: bool = False
    structuredContent: Any = None


# =============================================================================
# MCP Protocol Models
# =============================================================================


class Tool(BaseModel):
    """MCP tool summary advertised by ``tools/list``."""

    name: str
    description: str
    inputSchema: dict[str, Any]
    returns: str = "any"


class ClientInfo(BaseModel):
    """Client information sent during initialization."""

    name: str
    version: str = ""


class ServerInfo(BaseModel):
    """Server information returned during initialization."""

    name: str
    version: str


class InitializeParams(BaseModel):
    """Parameters for initialize request."""

    protocolVersion: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: ClientInfo | None = None


class InitializeResult(BaseModel):
    """Result of initialize request."""

    protocolVersion: str
    capabilities: dict[str, Any]
    serverInfo: ServerInfo
    sessionId: str


class ToolsListResult(BaseModel):
    """Result of tools/list request."""

    tools: list[Tool]


class ToolCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class CancelledParams(BaseModel):
    """Parameters of the ``notifications/cancelled`` notification."""

    requestId: RequestId
    reason: str | None = None
