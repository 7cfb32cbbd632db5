"""Pytest configuration and fixtures."""

import io
import json

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from mcp_bridge.config.loader import Settings
from mcp_bridge.main import create_app
from mcp_bridge.mcp.dispatcher import Dispatcher
from mcp_bridge.mcp.models import ServerInfo
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.mcp.session import Session, SessionManager
from mcp_bridge.mcp.transport_sse import SseTransport
from mcp_bridge.tools.example.tools import register_tools


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        transport="sse",
        handler_timeout=5.0,
        sse_keepalive_seconds=0.5,
        log_format="console",
    )


@pytest.fixture
def registry():
    """A frozen registry holding the example tools."""
    registry = ToolRegistry()
    register_tools(registry)
    registry.freeze()
    return registry


@pytest.fixture
def empty_registry():
    """Get a fresh, empty tool registry."""
    return ToolRegistry()


@pytest.fixture
def dispatcher(registry):
    return Dispatcher(
        registry,
        ServerInfo(name="mcp-bridge-test", version="0.0.1"),
        handler_timeout=5.0,
    )


@pytest.fixture
def sessions():
    return SessionManager()


@pytest.fixture
def session():
    """An explicit session that has not been initialized."""
    return Session()


@pytest.fixture
async def ready_session(dispatcher, session, sample_jsonrpc_request):
    """An explicit session that completed the handshake."""
    await dispatcher.handle_frame(
        session,
        json.dumps(sample_jsonrpc_request("initialize", {"protocolVersion": "2024-11-05"}, id=0)),
    )
    assert session.is_ready
    return session


@pytest.fixture
async def sse_transport(dispatcher, sessions):
    transport = SseTransport(dispatcher, sessions, keepalive=0.5)
    yield transport
    transport.close_all()


@pytest.fixture
def app(settings, registry):
    return create_app(settings, registry)


@pytest.fixture
def client(app):
    """Synchronous test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
async def async_client(app):
    """Async test client for FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_jsonrpc_request():
    """Sample JSON-RPC request factory."""
    def _make_request(method: str, params: dict = None, id: int = 1):
        return {
            "jsonrpc": "2.0",
            "id": id,
            "method": method,
            "params": params or {},
        }
    return _make_request


@pytest.fixture
def frames():
    """Encode messages as newline-delimited JSON for the stdio transport."""
    def _frames(*messages) -> io.BytesIO:
        lines = [
            m if isinstance(m, (bytes, str)) else json.dumps(m)
            for m in messages
        ]
        data = "\n".join(l.decode() if isinstance(l, bytes) else l for l in lines) + "\n"
        return io.BytesIO(data.encode("utf-8"))
    return _frames
