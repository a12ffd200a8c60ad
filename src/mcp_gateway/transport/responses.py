"""
Transport Responses

Helpers that render envelopes and errors as HTTP responses and build the
CORS and rate limit headers shared by every endpoint of the gateway.
"""

from __future__ import annotations

from collections.abc import Iterable

from starlette.responses import JSONResponse, Response

from mcp_gateway.protocol.errors import AuthenticationRequiredError, GatewayError, status_for_response
from mcp_gateway.protocol.models import JsonRpcResponse, RequestId

ALLOWED_METHODS = "GET, POST, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-API-Key, Last-Event-ID"
EXPOSED_HEADERS = (
    "X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset, X-RateLimit-Tier, "
    "Retry-After, X-Trace-ID, X-Request-ID"
)


def cors_headers(origin: str | None, allowed_origins: Iterable[str] = ("*",)) -> dict[str, str]:
    """
    Permissive CORS headers for the JSON-RPC endpoint family.

    With a wildcard allow-list every origin gets ``*``. Otherwise a listed
    origin is echoed back and credentials are allowed.
    """
    allowed = list(allowed_origins)
    headers = {
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Expose-Headers": EXPOSED_HEADERS,
        "Access-Control-Max-Age": "86400",
    }
    if "*" in allowed:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin and origin in allowed:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    return headers


def envelope_response(
    response: JsonRpcResponse,
    headers: dict[str, str] | None = None,
    status_code: int | None = None,
) -> JSONResponse:
    """Write an envelope directly to the caller with its mapped status."""
    return JSONResponse(
        content=response.to_wire(),
        status_code=status_code if status_code is not None else status_for_response(response),
        headers=headers,
    )


def error_response(
    error: GatewayError,
    request_id: RequestId = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render a GatewayError as an error envelope with its HTTP status."""
    merged = dict(headers or {})
    if isinstance(error, AuthenticationRequiredError):
        merged.setdefault("WWW-Authenticate", 'Bearer realm="mcp"')
    return envelope_response(error.to_response(request_id), headers=merged, status_code=error.http_status)


def accepted_response(headers: dict[str, str] | None = None) -> Response:
    """Empty 202 acknowledgment."""
    return Response(status_code=202, headers=headers)
