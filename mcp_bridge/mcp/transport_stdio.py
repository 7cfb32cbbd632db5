"""STDIO transport for MCP.

Newline-delimited JSON-RPC frames over the process's stdin/stdout. There is
exactly one peer and one implicit session; each response is written before
the next frame is read. Logging must go to stderr so it never corrupts the
protocol stream.
"""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from typing import BinaryIO

from mcp_bridge.mcp.dispatcher import Dispatcher
from mcp_bridge.mcp.errors import ConnectionClosed, TransportError
from mcp_bridge.mcp.session import SessionManager
from mcp_bridge.mcp.transport import Connection, Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_BYTES = 1024 * 1024


class StdioTransport(Transport):
    """Duplex-stream transport over a pair of binary streams."""

    name = "stdio"

    def __init__(
        self,
        dispatcher: Dispatcher,
        sessions: SessionManager,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        super().__init__(dispatcher, sessions)
        self._stdin = stdin or sys.stdin.buffer
        self._stdout = stdout or sys.stdout.buffer
        self.max_frame_bytes = max_frame_bytes

    async def receive(self, connection: Connection) -> AsyncIterator[bytes]:
        """Read frames until EOF, skipping blank lines."""
        while not connection.closed:
            try:
                line = await asyncio.to_thread(self._stdin.readline, self.max_frame_bytes + 1)
            except (OSError, ValueError) as e:
                raise TransportError(f"Failed to read from stdin: {e}") from e

            if not line:  # EOF
                return
            if len(line) > self.max_frame_bytes and not line.endswith(b"\n"):
                raise TransportError(
                    f"Frame exceeds {self.max_frame_bytes} bytes",
                    {"max_frame_bytes": self.max_frame_bytes},
                )

            frame = line.strip()
            if frame:  # Skip empty lines
                yield frame

    async def send(self, connection: Connection, data: bytes) -> None:
        """Write one frame and flush before returning."""
        if connection.closed:
            raise ConnectionClosed("stdout is closed")
        try:
            self._stdout.write(data + b"\n")
            self._stdout.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            connection.closed = True
            raise ConnectionClosed(f"Failed to write to stdout: {e}") from e

    async def serve(self) -> None:
        """Serve the single stdio peer until EOF, shutdown or a transport failure."""
        session = self.sessions.create_session(implicit=True)
        connection = Connection(session)
        logger.info(f"Serving MCP over stdio (session {session.session_id})")
        try:
            await self.pump(connection)
        except ConnectionClosed as e:
            logger.warning(f"Peer disconnected: {e.message}")
        except TransportError as e:
            logger.error(f"Transport failure on stdio: {e.message}")
        finally:
            connection.closed = True
            self.sessions.remove_session(session.session_id)
            logger.info("Stdio transport stopped")
