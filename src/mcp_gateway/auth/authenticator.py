"""
Request Authentication

Resolves a request to an AuthContext from a bearer token, an API key or a
session cookie. Credential validation beyond signature and expiry checks is
left to whoever issues the tokens and keys.
"""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any, NoReturn

import structlog
from fastapi import Request
from jose import JWTError, jwt
from pydantic import ValidationError

from mcp_gateway.auth.models import AuthContext, AuthMethod, TokenPayload
from mcp_gateway.monitoring.metrics import AUTH_FAILURES
from mcp_gateway.protocol.errors import AuthenticationRequiredError

logger = structlog.get_logger()

API_KEY_HEADER = "X-API-Key"


class Authenticator(ABC):
    """Turns an inbound request into an AuthContext."""

    @abstractmethod
    async def authenticate(self, request: Request) -> AuthContext:
        """
        Authenticate a request.

        Raises:
            AuthenticationRequiredError: If no valid credentials are present
        """


class DefaultAuthenticator(Authenticator):
    """
    Accepts, in order of precedence:

    - ``Authorization: Bearer <jwt>``
    - ``X-API-Key: <key>`` matched against configured keys
    - a session cookie holding a JWT
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str | None = None,
        audience: str | None = None,
        api_keys: dict[str, str] | None = None,
        cookie_name: str = "mcp_session",
    ) -> None:
        """
        Initialize authenticator.

        Args:
            secret_key: JWT verification key
            algorithm: JWT algorithm
            issuer: Required ``iss`` claim, if set
            audience: Required ``aud`` claim, if set
            api_keys: Mapping of API key to ``tenant_id:user_id[:scope,scope]``
            cookie_name: Name of the session cookie
        """
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.cookie_name = cookie_name
        self._api_keys = {key: self._parse_api_key_grant(grant) for key, grant in (api_keys or {}).items()}

    @staticmethod
    def _parse_api_key_grant(grant: str) -> tuple[str, str, frozenset[str]]:
        parts = grant.split(":", 2)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid API key grant: {grant!r}")
        scopes = frozenset(s for s in parts[2].split(",") if s) if len(parts) == 3 else frozenset()
        return parts[0], parts[1], scopes

    async def authenticate(self, request: Request) -> AuthContext:
        authorization = request.headers.get("Authorization")
        if authorization:
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() != "bearer" or not token.strip():
                self._fail(AuthMethod.BEARER, "malformed_header")
            return self._from_token(token.strip(), AuthMethod.BEARER)

        api_key = request.headers.get(API_KEY_HEADER)
        if api_key:
            return self._from_api_key(api_key)

        cookie = request.cookies.get(self.cookie_name)
        if cookie:
            return self._from_token(cookie, AuthMethod.SESSION_COOKIE)

        raise AuthenticationRequiredError("Missing authentication credentials")

    def _fail(self, method: AuthMethod, reason: str) -> NoReturn:
        AUTH_FAILURES.labels(auth_method=method.value, failure_reason=reason).inc()
        raise AuthenticationRequiredError("Invalid authentication credentials", data={"reason": reason})

    def _from_token(self, token: str, method: AuthMethod) -> AuthContext:
        options = {"verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
            payload = TokenPayload.model_validate(claims)
        except JWTError as e:
            logger.warning("Token validation failed", auth_method=method.value, error=str(e))
            self._fail(method, "invalid_token")
        except ValidationError as e:
            logger.warning("Token claims invalid", auth_method=method.value, error=str(e))
            self._fail(method, "invalid_claims")

        return AuthContext(
            tenant_id=payload.tenant_id,
            user_id=payload.sub,
            scopes=frozenset(payload.scope.split()),
            auth_method=method,
        )

    def _from_api_key(self, api_key: str) -> AuthContext:
        for key, (tenant_id, user_id, scopes) in self._api_keys.items():
            if hmac.compare_digest(key, api_key):
                return AuthContext(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    scopes=scopes,
                    auth_method=AuthMethod.API_KEY,
                )

        logger.warning("Unknown API key")
        self._fail(AuthMethod.API_KEY, "unknown_key")


def create_access_token(
    tenant_id: str,
    user_id: str,
    secret_key: str,
    scopes: list[str] | None = None,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
    issuer: str | None = None,
    audience: str | None = None,
) -> str:
    """
    Create a signed access token accepted by DefaultAuthenticator.

    Args:
        tenant_id: Tenant claim
        user_id: Subject claim
        secret_key: Signing key
        scopes: Granted scopes
        algorithm: JWT algorithm
        expires_minutes: Lifetime in minutes (negative values produce expired tokens)
        issuer: Optional ``iss`` claim
        audience: Optional ``aud`` claim

    Returns:
        Encoded JWT string
    """
    now = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "scope": " ".join(scopes or []),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    if issuer:
        claims["iss"] = issuer
    if audience:
        claims["aud"] = audience
    return jwt.encode(claims, secret_key, algorithm=algorithm)
