"""
Authentication Module

Bearer token, API key and session cookie authentication.
"""

from __future__ import annotations

from mcp_gateway.auth.authenticator import (
    API_KEY_HEADER,
    Authenticator,
    DefaultAuthenticator,
    create_access_token,
)
from mcp_gateway.auth.models import AuthContext, AuthMethod, TokenPayload

__all__ = [
    "API_KEY_HEADER",
    "AuthContext",
    "AuthMethod",
    "Authenticator",
    "DefaultAuthenticator",
    "TokenPayload",
    "create_access_token",
]
