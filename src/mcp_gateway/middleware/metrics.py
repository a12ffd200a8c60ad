"""
Metrics Middleware

Prometheus request metrics for every HTTP endpoint.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import Request, Response

from mcp_gateway.monitoring.metrics import (
    ACTIVE_REQUESTS,
    REQUEST_COUNT,
    REQUEST_DURATION,
)


def _path_label(request: Request) -> str:
    # Route templates keep label cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def metrics_middleware(request: Request, call_next: Callable) -> Response:
    """
    Collect Prometheus metrics for requests.

    Stream durations cover only the time to the first response byte.
    """
    ACTIVE_REQUESTS.inc()
    start_time = time.time()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path = _path_label(request)
        REQUEST_COUNT.labels(
            method=request.method,
            path=path,
            status_code=status_code,
        ).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(
            time.time() - start_time
        )
        ACTIVE_REQUESTS.dec()
