"""Security modules: authentication."""

from mcp_bridge.security.auth import AuthMiddleware, CredentialCheck, static_token_check

__all__ = ["AuthMiddleware", "CredentialCheck", "static_token_check"]
