"""Dispatcher: routes decoded requests to lifecycle methods and tool handlers."""

import asyncio
import inspect
import json
import logging
from typing import Any

from pydantic import ValidationError

from mcp_bridge.mcp.context import InvocationContext, set_current_invocation
from mcp_bridge.mcp.errors import (
    BridgeError,
    ErrorKind,
    HandlerFailure,
    HandlerTimeout,
    InvalidArguments,
    InvalidRequest,
    MalformedMessage,
    RequestCancelled,
    SessionNotReady,
    ToolNotFound,
)
from mcp_bridge.mcp.jsonrpc import decode, error_response, success_response
from mcp_bridge.mcp.models import (
    CancelledParams,
    ErrorObject,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ServerInfo,
    TextContent,
    ToolCallParams,
    ToolCallResult,
    ToolDescriptor,
    ToolFailure,
    ToolsListResult,
    ToolSuccess,
)
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.mcp.schema import validate_arguments
from mcp_bridge.mcp.session import Session
from mcp_bridge.utils.logging import set_request_id

logger = logging.getLogger(__name__)

# A frame after the codec: an envelope, or the reason it was rejected
DecodedFrame = JsonRpcRequest | JsonRpcNotification | MalformedMessage

# Error kinds a handler may report through ToolFailure
_FAILURE_TYPES: dict[ErrorKind, type[BridgeError]] = {
    ErrorKind.HANDLER_FAILURE: HandlerFailure,
    ErrorKind.HANDLER_TIMEOUT: HandlerTimeout,
    ErrorKind.TOOL_NOT_FOUND: ToolNotFound,
    ErrorKind.INVALID_REQUEST: InvalidRequest,
    ErrorKind.SESSION_NOT_READY: SessionNotReady,
}


def failure_to_error(error: ErrorObject) -> BridgeError:
    """Turn a handler-reported ErrorObject into the matching bridge error."""
    if error.kind == ErrorKind.INVALID_ARGUMENTS and isinstance(error.detail, list):
        return InvalidArguments(error.detail, error.message)
    error_type = _FAILURE_TYPES.get(error.kind, HandlerFailure)
    if error_type is not HandlerFailure:
        return error_type(error.message, error.detail)
    # The handler's own message is kept in the detail as well
    if isinstance(error.detail, dict):
        detail = {"message": error.message, **error.detail}
    elif error.detail is None:
        detail = {"message": error.message}
    else:
        detail = {"message": error.message, "detail": error.detail}
    return HandlerFailure(error.message, detail)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, allow_nan=False)


class Dispatcher:
    """Resolve, validate and invoke.

    The dispatcher reads the registry and mutates session state, but owns
    neither. It is the single place where failures are turned into error
    responses; nothing a handler does can escape it.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        server_info: ServerInfo,
        handler_timeout: float | None = 30.0,
    ):
        self.registry = registry
        self.server_info = server_info
        self.handler_timeout = handler_timeout

    # =========================================================================
    # Entry points
    # =========================================================================

    async def handle_frame(self, session: Session, raw_data: str | bytes) -> JsonRpcResponse | None:
        """
        Handle a raw frame end-to-end.

        Returns the response to send, or None for notifications and
        cancelled requests.
        """
        try:
            message = decode(raw_data)
        except MalformedMessage as e:
            return await self.handle_message(session, e)
        return await self.handle_message(session, message)

    async def handle_message(
        self, session: Session, message: DecodedFrame
    ) -> JsonRpcResponse | None:
        """Handle a frame that has already been through the codec."""
        if isinstance(message, MalformedMessage):
            logger.warning(
                f"Malformed message on session {session.session_id}: {message.message}"
            )
            return error_response(message.request_id, message)
        if isinstance(message, JsonRpcNotification):
            await self.notify(session, message)
            return None
        return await self.dispatch(session, message)

    async def dispatch(self, session: Session, request: JsonRpcRequest) -> JsonRpcResponse | None:
        """Produce the response for one request; None if it was cancelled."""
        set_request_id(str(request.id))
        session.touch()
        try:
            result = await self._route(session, request)
        except RequestCancelled:
            logger.info(f"Request {request.id} cancelled; discarding its result")
            return None
        except BridgeError as e:
            logger.info(f"Request {request.id} ({request.method}) failed: {e.kind.value}: {e.message}")
            return error_response(request.id, e)
        except Exception as e:
            logger.exception(f"Error handling method {request.method}")
            return error_response(request.id, BridgeError(f"Internal error: {e}"))
        return success_response(request.id, result)

    async def notify(self, session: Session, notification: JsonRpcNotification) -> None:
        """Handle a notification. Nothing is ever sent back."""
        method = notification.method
        if method == "notifications/initialized":
            logger.info(f"Client confirmed initialization of session {session.session_id}")
        elif method == "notifications/cancelled":
            self._cancel(session, notification.params)
        else:
            logger.debug(f"Ignoring notification {method}")

    # =========================================================================
    # Routing
    # =========================================================================

    async def _route(self, session: Session, request: JsonRpcRequest) -> Any:
        method = request.method

        if method == "initialize":
            return await self.handle_initialize(session, request.params)
        if method == "ping":
            if session.is_closed:
                session.require_ready()
            return {}

        session.require_ready()

        if method == "shutdown":
            await session.shutdown()
            logger.info(f"Session {session.session_id} shut down by peer")
            return {}
        if method == "tools/list":
            return self.handle_tools_list()
        if method == "tools/call":
            return await self.handle_tools_call(session, request.id, request.params)
        return await self.invoke(session, request.id, method, request.params)

    async def handle_initialize(self, session: Session, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the initialize request."""
        negotiated = await session.initialize(params)
        return InitializeResult(
            protocolVersion=negotiated["protocolVersion"],
            capabilities=negotiated["capabilities"],
            serverInfo=self.server_info,
            sessionId=session.session_id,
        ).model_dump()

    def handle_tools_list(self) -> dict[str, Any]:
        """Handle the tools/list request."""
        return ToolsListResult(tools=self.registry.list_tools()).model_dump()

    async def handle_tools_call(
        self, session: Session, request_id: int | str, params: dict[str, Any]
    ) -> dict[str, Any]:
        """Handle the tools/call request, wrapping the value as MCP content."""
        try:
            call_params = ToolCallParams.model_validate(params)
        except ValidationError as e:
            raise InvalidArguments([
                {
                    "parameter": ".".join(str(part) for part in err["loc"]),
                    "reason": "missing" if err["type"] == "missing" else "type",
                    "message": err["msg"],
                }
                for err in e.errors()
            ]) from e

        logger.info(f"Calling tool: {call_params.name}")
        value = await self.invoke(session, request_id, call_params.name, call_params.arguments)
        return ToolCallResult(
            content=[TextContent(text=_as_text(value))],
            structuredContent=value,
        ).model_dump()

    def _cancel(self, session: Session, params: dict[str, Any]) -> None:
        try:
            cancel_params = CancelledParams.model_validate(params)
        except ValidationError:
            logger.warning(f"Ignoring malformed cancellation on session {session.session_id}")
            return
        invocation = session.in_flight.get(cancel_params.requestId)
        if invocation is None:
            logger.debug(f"Nothing in flight for request {cancel_params.requestId}")
            return
        logger.info(
            f"Cancelling request {cancel_params.requestId}: {cancel_params.reason or 'no reason given'}"
        )
        invocation.cancel()

    # =========================================================================
    # Tool invocation
    # =========================================================================

    async def invoke(
        self,
        session: Session,
        request_id: int | str,
        name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """
        Resolve, validate and run a tool, returning its JSON-serializable value.

        Raises:
            ToolNotFound: The tool is not registered.
            InvalidArguments: The arguments do not match the schema.
            HandlerFailure: The handler raised or reported a failure.
            HandlerTimeout: The handler missed its deadline.
            RequestCancelled: The peer cancelled the request.
        """
        descriptor = self.registry.lookup(name)
        bound = validate_arguments(descriptor, arguments)

        context = InvocationContext(session, request_id, name)
        context.task = asyncio.create_task(self._run_handler(descriptor, bound, context))
        session.in_flight[request_id] = context

        timeout = descriptor_timeout(descriptor, self.handler_timeout)
        try:
            done, _ = await asyncio.wait({context.task}, timeout=timeout)
        except asyncio.CancelledError:
            context.cancel()
            raise
        finally:
            if session.in_flight.get(request_id) is context:
                del session.in_flight[request_id]

        if not done:
            # The handler is told to stop but nobody waits for it
            context.task.add_done_callback(_discard_outcome)
            context.cancel()
            raise HandlerTimeout(
                f"Tool '{name}' did not complete within {timeout:g}s",
                {"tool": name, "timeout": timeout},
            )
        if context.cancelled or context.task.cancelled():
            raise RequestCancelled(f"Request {request_id} was cancelled")

        exc = context.task.exception()
        if isinstance(exc, BridgeError):
            raise exc
        if exc is not None:
            logger.error(f"Error executing tool {name}", exc_info=exc)
            message = str(exc) or type(exc).__name__
            raise HandlerFailure(
                message,
                {"tool": name, "exception": type(exc).__name__, "message": message},
            )

        outcome = context.task.result()
        if isinstance(outcome, ToolFailure):
            raise failure_to_error(outcome.error)
        value = outcome.value if isinstance(outcome, ToolSuccess) else outcome

        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise HandlerFailure(
                f"Tool '{name}' returned a value that is not JSON-serializable: {e}",
                {"tool": name},
            ) from e
        return value

    async def _run_handler(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        context: InvocationContext,
    ) -> Any:
        set_current_invocation(context)
        handler = descriptor.handler
        if inspect.iscoroutinefunction(handler):
            outcome = await handler(arguments)
        else:
            # Blocking handlers must not stall other connections
            outcome = await asyncio.to_thread(handler, arguments)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome


def _discard_outcome(task: asyncio.Task[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Abandoned handler finished with {task.exception()!r}")


def descriptor_timeout(descriptor: ToolDescriptor, default: float | None) -> float | None:
    """The deadline for one invocation: the tool's own, else the dispatcher's."""
    if descriptor.timeout is not None:
        return descriptor.timeout if descriptor.timeout > 0 else None
    return default
