"""MCP session lifecycle and the per-connection session table."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from mcp_bridge.mcp.errors import (
    HandshakeError,
    InvalidRequest,
    SessionNotReady,
)
from mcp_bridge.mcp.models import ClientInfo, InitializeParams

logger = logging.getLogger(__name__)

# Supported MCP protocol versions (oldest first)
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
# Negotiated when the client does not propose one
DEFAULT_PROTOCOL_VERSION = "2024-11-05"

# Default idle timeout for explicit sessions (30 minutes)
SESSION_TIMEOUT = timedelta(minutes=30)

# Receives (event name, encoded payload) for push-capable connections
EventSink = Callable[[str, bytes], Awaitable[None]]


class SessionState(str, Enum):
    """Connection lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """State for one logical connection.

    An implicit session (stdio) starts out Ready and lives as long as the
    process; the client may still send ``initialize`` once to negotiate a
    version. An explicit session (SSE) starts Uninitialized and must complete
    the handshake before tools can be invoked.
    """

    def __init__(
        self,
        session_id: str | None = None,
        implicit: bool = False,
        server_capabilities: dict[str, Any] | None = None,
        timeout: timedelta | None = SESSION_TIMEOUT,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.implicit = implicit
        self.created_at = _now()
        self.last_activity = self.created_at
        self.timeout = None if implicit else timeout
        self.server_capabilities = server_capabilities or {"tools": {"listChanged": False}}

        self.state = SessionState.READY if implicit else SessionState.UNINITIALIZED
        self.protocol_version: str | None = DEFAULT_PROTOCOL_VERSION if implicit else None
        self.capabilities: dict[str, Any] = dict(self.server_capabilities) if implicit else {}
        self.client_info: ClientInfo | None = None
        self.client_capabilities: dict[str, Any] = {}
        self.handshake_completed = False

        self.event_sink: EventSink | None = None
        # request id -> InvocationContext of the handler running for it
        self.in_flight: dict[int | str, Any] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Session({self.session_id!r}, state={self.state.value})"

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = _now()

    def is_expired(self) -> bool:
        """Check if the session has been idle past its timeout."""
        if self.timeout is None or self.is_closed:
            return False
        return _now() - self.last_activity > self.timeout

    def require_ready(self) -> None:
        """
        Assert that tool requests may be served.

        Raises:
            SessionNotReady: If the handshake has not completed or the session is closed.
        """
        if self.state == SessionState.READY:
            return
        if self.state == SessionState.CLOSED:
            message = "Session is closed"
        else:
            message = "Session not initialized; send 'initialize' first"
        raise SessionNotReady(message, {"state": self.state.value})

    async def initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Run the handshake: Uninitialized -> Initializing -> Ready.

        Returns:
            The negotiated protocol version and capability set.

        Raises:
            InvalidRequest: If a handshake already completed on this session.
            SessionNotReady: If the session is closed.
            HandshakeError: If negotiation fails; the session is closed.
        """
        async with self._lock:
            if self.is_closed:
                raise SessionNotReady("Session is closed", {"state": self.state.value})
            if self.handshake_completed or self.state == SessionState.INITIALIZING:
                raise InvalidRequest(
                    "Session already initialized", {"state": self.state.value}
                )
            if not self.implicit and self.state != SessionState.UNINITIALIZED:
                raise InvalidRequest(
                    "Session already initialized", {"state": self.state.value}
                )

            previous = self.state
            self.state = SessionState.INITIALIZING
            try:
                init_params = InitializeParams.model_validate(params)
            except ValueError as e:
                self.state = SessionState.CLOSED
                raise HandshakeError(
                    f"Invalid initialize params: {e}", {"previous_state": previous.value}
                ) from e

            version = init_params.protocolVersion or DEFAULT_PROTOCOL_VERSION
            if version not in SUPPORTED_PROTOCOL_VERSIONS:
                self.state = SessionState.CLOSED
                logger.warning(
                    f"Session {self.session_id} requested unsupported protocol {version}"
                )
                raise HandshakeError(
                    f"Unsupported protocol version: {version}",
                    {
                        "requested": version,
                        "supported": list(SUPPORTED_PROTOCOL_VERSIONS),
                    },
                )

            self.protocol_version = version
            self.capabilities = dict(self.server_capabilities)
            self.client_info = init_params.clientInfo
            self.client_capabilities = init_params.capabilities
            self.handshake_completed = True
            self.state = SessionState.READY
            self.touch()

        logger.info(f"Session {self.session_id} ready (protocol {version})")
        return {"protocolVersion": version, "capabilities": self.capabilities}

    async def shutdown(self) -> None:
        """Explicit teardown requested by the peer."""
        async with self._lock:
            self.close()

    def close(self) -> None:
        """Mark the session closed and cancel anything still running on it."""
        if self.is_closed and not self.in_flight:
            return
        self.state = SessionState.CLOSED
        for invocation in list(self.in_flight.values()):
            invocation.cancel()
        self.in_flight.clear()
        self.event_sink = None


class SessionManager:
    """Manages MCP sessions keyed by session id.

    The table itself is only touched from the event loop; transitions of a
    single session are serialized by that session's own lock, so unrelated
    connections never wait on each other.
    """

    def __init__(
        self,
        timeout: timedelta = SESSION_TIMEOUT,
        cleanup_interval: float = 60.0,
        server_capabilities: dict[str, Any] | None = None,
    ):
        self._sessions: dict[str, Session] = {}
        self._cleanup_task: asyncio.Task | None = None
        self._on_remove: list[Callable[[Session], None]] = []
        self.timeout = timeout
        self.cleanup_interval = cleanup_interval
        self.server_capabilities = server_capabilities

    def create_session(self, implicit: bool = False) -> Session:
        """Create a new session."""
        session = Session(
            implicit=implicit,
            server_capabilities=self.server_capabilities,
            timeout=self.timeout,
        )
        self._sessions[session.session_id] = session
        logger.info(f"Created session: {session.session_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get a live session by ID."""
        session = self._sessions.get(session_id)
        if session is not None:
            if session.is_expired() or session.is_closed:
                self.remove_session(session_id)
                return None
            session.touch()
        return session

    def remove_session(self, session_id: str) -> None:
        """Remove a session."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.close()
            logger.info(f"Removed session: {session_id}")
            for callback in self._on_remove:
                callback(session)

    def on_remove(self, callback: Callable[[Session], None]) -> None:
        """Call back whenever a session leaves the table (closed or expired)."""
        self._on_remove.append(callback)

    async def cleanup_expired(self) -> None:
        """Remove expired sessions."""
        expired = [
            sid for sid, session in self._sessions.items() if session.is_expired()
        ]
        for sid in expired:
            self.remove_session(sid)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")

    async def start_cleanup_task(self) -> None:
        """Start background task to clean up expired sessions."""
        async def cleanup_loop():
            while True:
                await asyncio.sleep(self.cleanup_interval)
                await self.cleanup_expired()

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    def stop_cleanup_task(self) -> None:
        """Stop the cleanup background task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def close_all(self) -> None:
        for sid in list(self._sessions):
            self.remove_session(sid)

    @property
    def session_count(self) -> int:
        """Return the number of active sessions."""
        return len(self._sessions)
