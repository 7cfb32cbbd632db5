"""Per-invocation context made available to tool handlers."""

import asyncio
import logging
from contextvars import ContextVar
from typing import Any

from mcp_bridge.mcp.jsonrpc import encode_notification
from mcp_bridge.mcp.session import Session

logger = logging.getLogger(__name__)

# Partial results go out as this JSON-RPC notification inside a "message" event
PARTIAL_RESULT_METHOD = "notifications/partial"


class InvocationContext:
    """What a running handler may know about the request that started it."""

    def __init__(self, session: Session, request_id: int | str, tool_name: str):
        self.session = session
        self.request_id = request_id
        self.tool_name = tool_name
        self.task: asyncio.Task[Any] | None = None
        self._cancelled = asyncio.Event()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def cancelled(self) -> bool:
        """True once the peer cancelled this request or it timed out."""
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Signal the handler to stop; its eventual result is discarded."""
        self._cancelled.set()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def emit_partial(self, value: Any) -> bool:
        """
        Stream a partial result to the peer ahead of the final response.

        The notification carries this request's id as ``requestId`` and
        travels on the stream as an ordinary ``message`` event. Returns False
        when the transport cannot push events (stdio) or the request is
        already cancelled.
        """
        sink = self.session.event_sink
        if sink is None or self.cancelled:
            logger.debug(f"Dropping partial result for request {self.request_id}")
            return False
        payload = encode_notification(
            PARTIAL_RESULT_METHOD,
            {"requestId": self.request_id, "tool": self.tool_name, "value": value},
        )
        await sink("message", payload)
        return True


_current: ContextVar[InvocationContext | None] = ContextVar("mcp_invocation", default=None)


def current_invocation() -> InvocationContext | None:
    """The context of the tool invocation running in this task, if any."""
    return _current.get()


def set_current_invocation(context: InvocationContext | None) -> None:
    _current.set(context)
