"""
Tests for request authentication.
"""

from __future__ import annotations

import pytest
from starlette.requests import Request

from mcp_gateway.auth.authenticator import DefaultAuthenticator, create_access_token
from mcp_gateway.auth.models import AuthMethod
from mcp_gateway.protocol.errors import AuthenticationRequiredError

SECRET = "unit-test-secret"


def make_request(headers: dict[str, str]) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/mcp",
            "query_string": b"",
            "headers": [(name.lower().encode(), value.encode()) for name, value in headers.items()],
        }
    )


@pytest.fixture
def authenticator() -> DefaultAuthenticator:
    return DefaultAuthenticator(
        secret_key=SECRET,
        api_keys={"key-1": "tenant-a:svc-1:orders:read,orders:write", "key-2": "tenant-b:svc-2"},
    )


@pytest.mark.asyncio
class TestBearerTokens:
    """Tests for JWT bearer authentication."""

    async def test_valid_token(self, authenticator):
        token = create_access_token("tenant-a", "user-1", SECRET, scopes=["orders:read"])

        auth = await authenticator.authenticate(make_request({"Authorization": f"Bearer {token}"}))

        assert auth.tenant_id == "tenant-a"
        assert auth.user_id == "user-1"
        assert auth.scopes == frozenset({"orders:read"})
        assert auth.auth_method == AuthMethod.BEARER

    async def test_expired_token(self, authenticator):
        token = create_access_token("tenant-a", "user-1", SECRET, expires_minutes=-5)

        with pytest.raises(AuthenticationRequiredError) as exc_info:
            await authenticator.authenticate(make_request({"Authorization": f"Bearer {token}"}))

        assert exc_info.value.http_status == 401
        assert exc_info.value.data == {"reason": "invalid_token"}

    async def test_wrong_signature(self, authenticator):
        token = create_access_token("tenant-a", "user-1", "another-secret")

        with pytest.raises(AuthenticationRequiredError):
            await authenticator.authenticate(make_request({"Authorization": f"Bearer {token}"}))

    async def test_malformed_header(self, authenticator):
        with pytest.raises(AuthenticationRequiredError) as exc_info:
            await authenticator.authenticate(make_request({"Authorization": "Basic abc"}))

        assert exc_info.value.data == {"reason": "malformed_header"}

    async def test_audience_enforced(self):
        authenticator = DefaultAuthenticator(secret_key=SECRET, audience="mcp-gateway")
        good = create_access_token("t", "u", SECRET, audience="mcp-gateway")
        bad = create_access_token("t", "u", SECRET, audience="someone-else")

        assert (await authenticator.authenticate(make_request({"Authorization": f"Bearer {good}"}))).tenant_id == "t"
        with pytest.raises(AuthenticationRequiredError):
            await authenticator.authenticate(make_request({"Authorization": f"Bearer {bad}"}))


@pytest.mark.asyncio
class TestApiKeys:
    """Tests for static API keys."""

    async def test_known_key_with_scopes(self, authenticator):
        auth = await authenticator.authenticate(make_request({"X-API-Key": "key-1"}))

        assert auth.tenant_id == "tenant-a"
        assert auth.user_id == "svc-1"
        assert auth.scopes == frozenset({"orders:read", "orders:write"})
        assert auth.auth_method == AuthMethod.API_KEY

    async def test_known_key_without_scopes(self, authenticator):
        auth = await authenticator.authenticate(make_request({"X-API-Key": "key-2"}))

        assert auth.scopes == frozenset()

    async def test_unknown_key(self, authenticator):
        with pytest.raises(AuthenticationRequiredError) as exc_info:
            await authenticator.authenticate(make_request({"X-API-Key": "nope"}))

        assert exc_info.value.data == {"reason": "unknown_key"}


def test_invalid_api_key_grant_rejected():
    with pytest.raises(ValueError):
        DefaultAuthenticator(secret_key=SECRET, api_keys={"k": "tenant-only"})


@pytest.mark.asyncio
class TestSessionCookie:
    """Tests for cookie authentication and precedence."""

    async def test_cookie_token(self, authenticator):
        token = create_access_token("tenant-c", "user-3", SECRET)

        auth = await authenticator.authenticate(make_request({"Cookie": f"mcp_session={token}"}))

        assert auth.tenant_id == "tenant-c"
        assert auth.auth_method == AuthMethod.SESSION_COOKIE

    async def test_bearer_takes_precedence(self, authenticator):
        token = create_access_token("tenant-a", "user-1", SECRET)

        auth = await authenticator.authenticate(
            make_request({"Authorization": f"Bearer {token}", "X-API-Key": "key-2"})
        )

        assert auth.auth_method == AuthMethod.BEARER

    async def test_missing_credentials(self, authenticator):
        with pytest.raises(AuthenticationRequiredError, match="Missing authentication credentials"):
            await authenticator.authenticate(make_request({}))
