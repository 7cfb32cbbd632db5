"""Transport adapter contract shared by the stdio and SSE transports."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from mcp_bridge.mcp.dispatcher import Dispatcher
from mcp_bridge.mcp.jsonrpc import encode
from mcp_bridge.mcp.models import JsonRpcResponse
from mcp_bridge.mcp.session import Session, SessionManager


class Connection:
    """One peer connection and the session bound to it."""

    def __init__(self, session: Session):
        self.session = session
        self.closed = False

    @property
    def connection_id(self) -> str:
        return self.session.session_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.connection_id!r}, closed={self.closed})"


class Transport(ABC):
    """Moves framed messages between peers and the dispatcher.

    A transport only frames bytes; decoding, session checks and tool
    invocation all happen in the dispatcher.
    """

    name: str = "transport"

    def __init__(self, dispatcher: Dispatcher, sessions: SessionManager):
        self.dispatcher = dispatcher
        self.sessions = sessions

    @abstractmethod
    def receive(self, connection: Connection) -> AsyncIterator[Any]:
        """
        Yield inbound frames for a connection, in arrival order.

        Ends when the peer disconnects cleanly. Raises TransportError on
        corrupt framing.
        """

    @abstractmethod
    async def send(self, connection: Connection, data: bytes) -> None:
        """
        Write one frame to the peer.

        Raises ConnectionClosed if the peer has gone away.
        """

    @abstractmethod
    async def serve(self) -> None:
        """Run until the transport shuts down."""

    async def handle(self, connection: Connection, frame: Any) -> JsonRpcResponse | None:
        """Turn one inbound frame into the response to send, if any."""
        return await self.dispatcher.handle_frame(connection.session, frame)

    async def pump(self, connection: Connection) -> None:
        """Serve one connection: frames are handled strictly in arrival order."""
        session = connection.session
        async for frame in self.receive(connection):
            response = await self.handle(connection, frame)
            if response is not None:
                await self.send(connection, encode(response))
            if session.is_closed:
                break
