"""Authentication middleware and the credential-check contract."""

import hmac
import logging
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from mcp_bridge.mcp.errors import AUTHENTICATION_ERROR, ErrorKind, make_error_data

logger = logging.getLogger(__name__)

# Decides whether a presented bearer token (or None) is acceptable
CredentialCheck = Callable[[str | None], bool]


def static_token_check(expected: str) -> CredentialCheck:
    """
    Build a check against one configured token.

    An empty expected token disables authentication.
    """

    def check(token: str | None) -> bool:
        if not expected:
            return True
        if token is None:
            return False
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))

    return check


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from Authorization header."""
    if authorization is None:
        return None

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce authentication on the MCP endpoints."""

    # Paths that require authentication (when enabled)
    PROTECTED_PATHS = ["/sse", "/message"]

    def __init__(self, app: ASGIApp, credential_check: CredentialCheck, enabled: bool = True):
        super().__init__(app)
        self.credential_check = credential_check
        self.enabled = enabled

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        # Skip auth if not enabled
        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        if any(path.startswith(p) for p in self.PROTECTED_PATHS):
            token = extract_bearer_token(request.headers.get("Authorization"))

            if not self.credential_check(token):
                logger.warning(f"Unauthorized access attempt to {path}")
                return JSONResponse(
                    status_code=401,
                    content={
                        "jsonrpc": "2.0",
                        "id": None,
                        "error": make_error_data(
                            AUTHENTICATION_ERROR, kind=ErrorKind.AUTHENTICATION_ERROR
                        ),
                    },
                )

        return await call_next(request)
