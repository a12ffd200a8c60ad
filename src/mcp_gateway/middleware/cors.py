"""
CORS Middleware

Permissive cross-origin handling for the gateway. Preflight requests are
answered here with 204 before routing, and every other response carries the
same CORS headers.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fastapi import Request, Response

from mcp_gateway.transport.responses import cors_headers


def make_cors_middleware(allowed_origins: Iterable[str]) -> Callable:
    """Build a CORS middleware function for the given origin allow-list."""
    origins = list(allowed_origins)

    async def cors_middleware(request: Request, call_next: Callable) -> Response:
        headers = cors_headers(request.headers.get("Origin"), origins)

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response

    return cors_middleware
