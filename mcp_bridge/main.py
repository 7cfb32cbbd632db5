"""MCP bridge - application factory and command-line entrypoint."""

import argparse
import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from mcp_bridge.config.loader import (
    Settings,
    get_enabled_providers,
    get_provider_config,
    get_settings,
    load_tools_config,
)
from mcp_bridge.mcp.dispatcher import Dispatcher
from mcp_bridge.mcp.errors import (
    BridgeError,
    ConnectionClosed,
    DuplicateTool,
    SessionNotReady,
    TransportError,
)
from mcp_bridge.mcp.models import ServerInfo
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.mcp.session import DEFAULT_PROTOCOL_VERSION, SessionManager
from mcp_bridge.mcp.transport import Transport
from mcp_bridge.mcp.transport_sse import SseTransport
from mcp_bridge.mcp.transport_stdio import StdioTransport
from mcp_bridge.security.auth import AuthMiddleware, CredentialCheck, static_token_check
from mcp_bridge.utils.logging import get_logger, set_request_id, setup_logging


# =============================================================================
# Startup wiring
# =============================================================================


def build_registry(settings: Settings) -> ToolRegistry:
    """Load the enabled providers into a fresh registry and freeze it.

    A DuplicateTool raised by a provider propagates: startup must abort.
    """
    log = get_logger("startup")
    config = load_tools_config(settings.tools_config_path)
    enabled_providers = get_enabled_providers(config)
    log.info("Loading providers", providers=enabled_providers)

    registry = ToolRegistry()
    results = registry.load_providers(
        enabled_providers,
        {name: get_provider_config(name, config) for name in enabled_providers},
    )
    for provider, success in results.items():
        if success:
            log.info("Loaded provider", provider=provider)
        else:
            log.warning("Failed to load provider", provider=provider)

    registry.freeze()
    log.info(
        "Tool registry ready",
        tool_count=registry.tool_count,
        provider_count=registry.provider_count,
    )
    return registry


def build_dispatcher(settings: Settings, registry: ToolRegistry) -> Dispatcher:
    return Dispatcher(
        registry,
        ServerInfo(name=settings.server_name, version=settings.server_version),
        handler_timeout=settings.effective_handler_timeout,
    )


def build_session_manager(settings: Settings) -> SessionManager:
    return SessionManager(
        timeout=timedelta(minutes=settings.session_timeout_minutes),
        cleanup_interval=settings.session_cleanup_interval,
    )


def create_transport(settings: Settings, registry: ToolRegistry) -> Transport:
    """Select the transport once, at startup."""
    dispatcher = build_dispatcher(settings, registry)
    sessions = build_session_manager(settings)
    if settings.transport == "stdio":
        return StdioTransport(dispatcher, sessions, max_frame_bytes=settings.max_frame_bytes)

    transport = SseTransport(
        dispatcher,
        sessions,
        keepalive=settings.sse_keepalive_seconds,
        host=settings.host,
        port=settings.port,
    )
    transport.app = create_app(settings, registry, transport=transport)
    return transport


# =============================================================================
# HTTP application (SSE transport)
# =============================================================================


def _jsonrpc_error(status_code: int, error: BridgeError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"jsonrpc": "2.0", "id": None, "error": error.to_error_data()},
    )


def create_app(
    settings: Settings | None = None,
    registry: ToolRegistry | None = None,
    transport: SseTransport | None = None,
    credential_check: CredentialCheck | None = None,
) -> FastAPI:
    """Build the FastAPI application serving the SSE transport."""
    settings = settings or get_settings()
    if transport is None:
        if registry is None:
            registry = build_registry(settings)
        transport = SseTransport(
            build_dispatcher(settings, registry),
            build_session_manager(settings),
            keepalive=settings.sse_keepalive_seconds,
            host=settings.host,
            port=settings.port,
        )
    registry = transport.dispatcher.registry

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        log = get_logger("startup")
        log.info(
            "Starting MCP server",
            server_name=settings.server_name,
            version=settings.server_version,
            auth_enabled=settings.auth_enabled,
            tool_count=registry.tool_count,
        )
        # Start session cleanup task
        await transport.sessions.start_cleanup_task()

        yield

        # Shutdown
        log.info("Shutting down MCP server")
        transport.sessions.stop_cleanup_task()
        transport.close_all()

    app = FastAPI(
        title="MCP Bridge",
        description="JSON-RPC 2.0 bridge between MCP clients and registered tool handlers",
        version=settings.server_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.transport = transport

    # Middleware: last added processes incoming requests first
    app.add_middleware(
        AuthMiddleware,
        credential_check=credential_check or static_token_check(settings.auth_token),
        enabled=credential_check is not None or settings.auth_enabled,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for MCP compatibility
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # =========================================================================
    # Health and Info Endpoints
    # =========================================================================

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with server info."""
        return {
            "name": settings.server_name,
            "version": settings.server_version,
            "endpoints": {
                "health": "/health",
                "sse": "/sse",
                "message": "/message",
            },
            "tools_available": registry.tool_count,
            "active_sessions": transport.connection_count,
            "mcp_protocol_version": DEFAULT_PROTOCOL_VERSION,
        }

    # =========================================================================
    # MCP Endpoints
    # =========================================================================

    @app.get("/sse")
    async def sse_endpoint(request: Request):
        """
        SSE endpoint for MCP session establishment.

        Returns an SSE stream that:
        1. Sends an 'endpoint' event with the message URL
        2. Streams responses, partial results and keepalive pings
        """
        connection = transport.open_connection()
        log = get_logger("sse")
        log.info("SSE session created", session_id=connection.connection_id)
        return EventSourceResponse(transport.events(connection))

    @app.post("/message")
    async def message_endpoint(request: Request) -> JSONResponse:
        """
        Message endpoint for JSON-RPC frames.

        The frame is queued on the caller's connection and answered with 202;
        the JSON-RPC response arrives on that connection's SSE stream.
        """
        session_id = request.query_params.get("session_id")
        if not session_id:
            return _jsonrpc_error(
                400, SessionNotReady("Missing session_id; open /sse first")
            )

        connection = transport.get_connection(session_id)
        if connection is None:
            return _jsonrpc_error(
                404, SessionNotReady(f"Unknown or expired session: {session_id}")
            )

        body = await request.body()
        if len(body) > settings.max_frame_bytes:
            return _jsonrpc_error(
                413, TransportError(f"Frame exceeds {settings.max_frame_bytes} bytes")
            )

        try:
            await transport.deliver(connection, body)
        except ConnectionClosed as e:
            return _jsonrpc_error(410, e)

        return JSONResponse(content={"status": "accepted"}, status_code=202)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mcp-bridge",
        description="Serve registered tools over MCP (JSON-RPC 2.0).",
    )
    parser.add_argument("--transport", choices=["stdio", "sse"], help="Transport to serve on")
    parser.add_argument("--host", help="Bind address for the sse transport")
    parser.add_argument("--port", type=int, help="Port for the sse transport")
    parser.add_argument("--config", dest="tools_config_path", help="Path to tools YAML config")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Run the bridge on the configured transport."""
    args = parse_args(argv)
    overrides = {
        key: value
        for key, value in vars(args).items()
        if value is not None
    }
    settings = get_settings().model_copy(update=overrides)
    setup_logging(settings)

    try:
        registry = build_registry(settings)
    except DuplicateTool as e:
        get_logger("startup").error("Tool registration failed", error=e.message)
        sys.exit(1)

    transport = create_transport(settings, registry)
    get_logger("startup").info("Starting transport", transport=transport.name)
    try:
        asyncio.run(transport.serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
