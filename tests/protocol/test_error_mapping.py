"""
Tests for error classes and their wire code / HTTP status mapping.
"""

from __future__ import annotations

import pytest

from mcp_gateway.protocol.errors import (
    AuthenticationRequiredError,
    AuthorizationFailedError,
    GatewayError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    ParseError,
    ProtocolVersionUnsupportedError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SessionNotFoundError,
    ToolExecutionError,
    status_for_code,
    status_for_response,
    to_gateway_error,
)
from mcp_gateway.protocol.models import create_success_response
from mcp_gateway.ratelimit.limiter import RateLimitResult, RateLimitScope


@pytest.mark.parametrize(
    ("error_class", "code", "status"),
    [
        (ParseError, -32700, 400),
        (InvalidRequestError, -32600, 400),
        (MethodNotFoundError, -32601, 404),
        (InvalidParamsError, -32602, 400),
        (InternalError, -32603, 500),
        (AuthenticationRequiredError, -32001, 401),
        (ResourceNotFoundError, -32002, 404),
        (AuthorizationFailedError, -32003, 403),
        (ProtocolVersionUnsupportedError, -32004, 400),
        (ToolExecutionError, -32005, 500),
        (SessionNotFoundError, -32007, 404),
    ],
)
def test_error_codes_and_statuses(error_class, code, status):
    error = error_class()

    assert error.code.value == code
    assert error.http_status == status
    assert status_for_code(code) == status


def test_rate_limit_error_carries_quota_data():
    result = RateLimitResult(
        allowed=False,
        limit=10,
        remaining=0,
        reset_at=1_700_000_060,
        retry_after=42,
        tier="high",
        scope=RateLimitScope.TOOL_TIER,
        key="mcp:ratelimit:t:tools/call:send",
    )

    error = RateLimitExceededError(result)

    assert error.code.value == -32006
    assert error.http_status == 429
    assert error.message == "Rate limit exceeded. Retry after 42 seconds."
    assert error.data == {
        "limit": 10,
        "remaining": 0,
        "resetAt": 1_700_000_060,
        "retryAfter": 42,
        "tier": "high",
    }


def test_unknown_code_maps_to_500():
    assert status_for_code(-31999) == 500


def test_success_response_status():
    assert status_for_response(create_success_response(1, {})) == 200


def test_error_response_status():
    response = MethodNotFoundError("Method not found: nope").to_response(5)

    assert response.id == 5
    assert status_for_response(response) == 404


def test_to_gateway_error_keeps_gateway_errors():
    error = InvalidParamsError("bad")

    assert to_gateway_error(error) is error


def test_to_gateway_error_wraps_unknown_exceptions():
    error = to_gateway_error(KeyError("missing"))

    assert isinstance(error, InternalError)
    assert isinstance(error, GatewayError)
    assert "missing" in error.message


def test_default_messages():
    assert ParseError().message == "Parse error"
    assert MethodNotFoundError().message == "Method not found"
