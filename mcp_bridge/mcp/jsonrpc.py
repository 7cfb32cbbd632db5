"""JSON-RPC 2.0 message codec.

Turns raw frames into request/notification envelopes and response envelopes
back into bytes. The codec knows nothing about tools or sessions.
"""

import json
from typing import Any

from pydantic import ValidationError

from mcp_bridge.mcp.errors import (
    PARSE_ERROR,
    BridgeError,
    MalformedMessage,
)
from mcp_bridge.mcp.models import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)

Message = JsonRpcRequest | JsonRpcNotification


def _reject_constant(name: str) -> Any:
    raise MalformedMessage(f"Invalid JSON: {name} is not a JSON value", code=PARSE_ERROR)


def _load_json(raw_data: str | bytes) -> Any:
    try:
        if isinstance(raw_data, (bytes, bytearray)):
            raw_data = bytes(raw_data).decode("utf-8")
        return json.loads(raw_data, parse_constant=_reject_constant)
    except UnicodeDecodeError as e:
        raise MalformedMessage(f"Invalid UTF-8: {e}", code=PARSE_ERROR) from e
    except (ValueError, RecursionError) as e:
        # Also covers oversized integer literals and nesting too deep to parse
        raise MalformedMessage(f"Invalid JSON: {e}", code=PARSE_ERROR) from e


def _recover_id(data: dict[str, Any]) -> int | str | None:
    """Pull a usable correlation id out of an otherwise invalid envelope."""
    request_id = data.get("id")
    if isinstance(request_id, bool):
        return None
    if isinstance(request_id, (int, str)):
        return request_id
    return None


def _validation_detail(e: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "<envelope>",
            "message": err["msg"],
        }
        for err in e.errors()
    ]


def decode(raw_data: str | bytes) -> Message:
    """
    Decode one frame into a request or notification envelope.

    Raises MalformedMessage when the frame is not JSON, is not a single
    JSON-RPC 2.0 object, or lacks required envelope fields. The exception's
    ``request_id`` is set whenever the id could still be recovered.
    """
    data = _load_json(raw_data)

    if isinstance(data, list):
        raise MalformedMessage("Batch requests are not supported")
    if not isinstance(data, dict):
        raise MalformedMessage("JSON-RPC message must be an object")

    request_id = _recover_id(data)

    if data.get("jsonrpc") != "2.0":
        raise MalformedMessage(
            "Invalid JSON-RPC request: 'jsonrpc' must be \"2.0\"",
            request_id=request_id,
        )
    if "method" not in data:
        raise MalformedMessage(
            "Invalid JSON-RPC request: 'method' is required",
            request_id=request_id,
        )

    model = JsonRpcRequest if "id" in data else JsonRpcNotification
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedMessage(
            f"Invalid JSON-RPC request: {e.error_count()} validation error(s)",
            data={"errors": _validation_detail(e)},
            request_id=request_id,
        ) from e


def decode_response(raw_data: str | bytes) -> JsonRpcResponse:
    """Decode a response envelope (used by clients and tests)."""
    data = _load_json(raw_data)
    if not isinstance(data, dict):
        raise MalformedMessage("JSON-RPC response must be an object")
    if data.get("jsonrpc") != "2.0" or ("result" in data) == ("error" in data):
        raise MalformedMessage(
            "Invalid JSON-RPC response: exactly one of 'result' or 'error' is required",
            request_id=_recover_id(data),
        )
    try:
        return JsonRpcResponse.model_validate(data)
    except ValidationError as e:
        raise MalformedMessage(
            "Invalid JSON-RPC response",
            data={"errors": _validation_detail(e)},
            request_id=_recover_id(data),
        ) from e


def _dumps(payload: dict[str, Any]) -> bytes:
    return json.dumps(
        payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def encode(response: JsonRpcResponse) -> bytes:
    """Serialize a response envelope to UTF-8 JSON bytes."""
    return _dumps(response.model_dump())


def encode_notification(method: str, params: dict[str, Any]) -> bytes:
    """Serialize a server-to-client notification (no id)."""
    return _dumps({"jsonrpc": "2.0", "method": method, "params": params})


def error_response(request_id: int | str | None, error: BridgeError) -> JsonRpcResponse:
    """Build an error response envelope from a bridge error.

    Detail that cannot go on the wire as strict JSON is dropped; the kind
    and message always survive.
    """
    error_data = error.to_error_data()
    try:
        _dumps(error_data)
    except (TypeError, ValueError):
        error_data["data"] = {"kind": error.kind.value}
    return JsonRpcResponse(id=request_id, error=JsonRpcError(**error_data))


def success_response(request_id: int | str, result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)
