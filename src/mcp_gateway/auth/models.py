"""
Authentication Models

Pydantic models describing an authenticated caller.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class AuthMethod(str, Enum):
    """Credential form a caller authenticated with."""

    BEARER = "bearer"
    API_KEY = "api_key"
    SESSION_COOKIE = "session_cookie"


class AuthContext(BaseModel):
    """Authenticated tenant and user for one request."""

    tenant_id: str = Field(..., description="Tenant the caller acts for")
    user_id: str = Field(..., description="Authenticated user or service identity")
    scopes: frozenset[str] = Field(default_factory=frozenset, description="Granted scopes")
    auth_method: AuthMethod = Field(..., description="How the caller authenticated")

    model_config = {"frozen": True}


class TokenPayload(BaseModel):
    """Claims carried by a gateway access token."""

    sub: str = Field(..., description="Subject (user ID)")
    tenant_id: str = Field(..., description="Tenant ID")
    scope: str = Field(default="", description="Space separated scopes")
    exp: int = Field(..., description="Expiration timestamp")
    iat: int = Field(..., description="Issued at timestamp")
    iss: str | None = Field(None, description="Token issuer")
    aud: str | None = Field(None, description="Token audience")
