"""SSE (Server-Sent Events) transport for MCP.

Each client opens an event stream (``GET /sse``) which becomes one
connection with its own explicit session. Requests arrive through
``POST /message?session_id=...`` and their responses go out on that
connection's stream. Requests on one connection are served one at a time
by the connection's worker; different connections run concurrently.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, AsyncGenerator

from mcp_bridge.mcp.dispatcher import DecodedFrame, Dispatcher
from mcp_bridge.mcp.errors import ConnectionClosed, MalformedMessage
from mcp_bridge.mcp.jsonrpc import decode
from mcp_bridge.mcp.models import JsonRpcNotification, JsonRpcResponse
from mcp_bridge.mcp.session import Session, SessionManager
from mcp_bridge.mcp.transport import Connection, Transport

logger = logging.getLogger(__name__)

# Keepalive ping interval when the stream is idle
KEEPALIVE_SECONDS = 30.0


class SseConnection(Connection):
    """A connection with an inbound message queue and an outbound event queue."""

    def __init__(self, session: Session):
        super().__init__(session)
        # Frames are decoded once, on arrival
        self.inbound: asyncio.Queue[DecodedFrame | None] = asyncio.Queue()
        self.outbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self.worker: asyncio.Task | None = None


class SseTransport(Transport):
    """Push-capable transport: many connections, one event stream each."""

    name = "sse"

    def __init__(
        self,
        dispatcher: Dispatcher,
        sessions: SessionManager,
        message_endpoint: str = "/message",
        keepalive: float = KEEPALIVE_SECONDS,
        host: str = "0.0.0.0",
        port: int = 8000,
    ) -> None:
        super().__init__(dispatcher, sessions)
        self.message_endpoint = message_endpoint
        self.keepalive = keepalive
        self.host = host
        self.port = port
        self._connections: dict[str, SseConnection] = {}
        self.app: Any = None
        sessions.on_remove(self._on_session_removed)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def open_connection(self) -> SseConnection:
        """Create a session and start the worker that serves it."""
        session = self.sessions.create_session()
        connection = SseConnection(session)

        async def sink(event: str, data: bytes) -> None:
            await self.push_event(connection, event, data)

        session.event_sink = sink
        self._connections[connection.connection_id] = connection
        connection.worker = asyncio.create_task(self._serve_connection(connection))
        logger.info(f"Opened SSE connection {connection.connection_id}")
        return connection

    def get_connection(self, session_id: str) -> SseConnection | None:
        """Find an open connection; expired sessions are closed on the way."""
        connection = self._connections.get(session_id)
        if connection is None:
            return None
        if self.sessions.get_session(session_id) is None:
            self.close_connection(connection)
            return None
        return connection

    def close_connection(self, connection: SseConnection) -> None:
        """Tear down a connection, its worker and its session."""
        if connection.closed:
            return
        connection.closed = True
        connection.inbound.put_nowait(None)
        connection.outbound.put_nowait(None)
        self._connections.pop(connection.connection_id, None)
        self.sessions.remove_session(connection.connection_id)

        worker = connection.worker
        if worker is not None and not worker.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if worker is not current:
                worker.cancel()
        logger.info(f"Closed SSE connection {connection.connection_id}")

    def close_all(self) -> None:
        for connection in list(self._connections.values()):
            self.close_connection(connection)

    def _on_session_removed(self, session: Session) -> None:
        connection = self._connections.get(session.session_id)
        if connection is not None:
            self.close_connection(connection)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # Frames in, events out
    # =========================================================================

    async def deliver(self, connection: SseConnection, raw_data: bytes) -> None:
        """
        Accept one inbound frame posted for a connection.

        Notifications are handled right away so a cancellation can reach a
        request that is still running; everything else is queued behind the
        requests already accepted on this connection.
        """
        if connection.closed:
            raise ConnectionClosed(f"Connection {connection.connection_id} is closed")
        connection.session.touch()
        try:
            message: DecodedFrame = decode(raw_data)
        except MalformedMessage as e:
            # The worker reports it in order with everything else
            message = e
        if isinstance(message, JsonRpcNotification):
            await self.dispatcher.notify(connection.session, message)
            return
        connection.inbound.put_nowait(message)

    async def receive(self, connection: SseConnection) -> AsyncIterator[DecodedFrame]:
        while True:
            frame = await connection.inbound.get()
            if frame is None:
                return
            yield frame

    async def handle(
        self, connection: SseConnection, frame: DecodedFrame
    ) -> JsonRpcResponse | None:
        return await self.dispatcher.handle_message(connection.session, frame)

    async def send(self, connection: SseConnection, data: bytes) -> None:
        await self.push_event(connection, "message", data)

    async def push_event(self, connection: SseConnection, event: str, data: bytes) -> None:
        """Queue an event on the connection's stream."""
        if connection.closed:
            raise ConnectionClosed(f"Connection {connection.connection_id} is closed")
        await connection.outbound.put({"event": event, "data": data.decode("utf-8")})

    async def _serve_connection(self, connection: SseConnection) -> None:
        try:
            await self.pump(connection)
        except ConnectionClosed as e:
            logger.info(f"Connection {connection.connection_id} went away: {e.message}")
        except Exception:
            logger.exception(f"Worker for connection {connection.connection_id} failed")
        finally:
            self.close_connection(connection)

    async def events(self, connection: SseConnection) -> AsyncGenerator[dict[str, Any], None]:
        """The event stream for one connection, starting with its endpoint."""
        try:
            yield {
                "event": "endpoint",
                "data": f"{self.message_endpoint}?session_id={connection.connection_id}",
            }

            # Stream events from the connection queue
            while True:
                try:
                    event = await asyncio.wait_for(
                        connection.outbound.get(), timeout=self.keepalive
                    )
                except asyncio.TimeoutError:
                    # Send keepalive ping
                    yield {"event": "ping", "data": ""}
                    continue
                if event is None:
                    break
                yield event
        except asyncio.CancelledError:
            logger.info(f"SSE stream cancelled for session {connection.connection_id}")
            raise
        finally:
            self.close_connection(connection)

    async def serve(self) -> None:
        """Serve the HTTP application with uvicorn."""
        import uvicorn

        if self.app is None:
            raise RuntimeError("SseTransport.app must be set before serving")
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None)
        await uvicorn.Server(config).serve()
        self.close_all()
