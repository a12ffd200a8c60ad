"""
Health Check Endpoints

Health, readiness and liveness probes plus the Prometheus scrape endpoint.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from mcp_gateway.models.health import (
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    StoreCheck,
)
from mcp_gateway.monitoring.metrics import get_registry

router = APIRouter()
logger = structlog.get_logger()


def _stores(request: Request) -> dict[str, Any]:
    """Configured backing stores keyed by check name."""
    state = request.app.state
    stores = {
        "quota_store": getattr(state, "quota_store", None),
        "relay_store": getattr(state, "relay_store", None),
    }
    return {name: store for name, store in stores.items() if store is not None}


async def _store_checks(request: Request) -> dict[str, bool]:
    return {name: await store.ping() for name, store in _stores(request).items()}


def _sessions_available(request: Request) -> bool:
    return getattr(request.app.state, "session_bridge", None) is not None


@router.get("/health", response_model=HealthResponse, summary="Comprehensive health check")
async def health_check(request: Request) -> HealthResponse:
    """
    Overall health including backing stores.

    A failing quota store only degrades the gateway when the limiter fails
    open. A failing relay store disables session-bridge streams.
    """
    settings = request.app.state.settings
    stores = _stores(request)
    results = await _store_checks(request)

    checks = {
        name: StoreCheck(
            status="healthy" if results[name] else "unhealthy",
            backend=type(store).__name__,
        )
        for name, store in stores.items()
    }

    transports = ["streamable-http"]
    if _sessions_available(request):
        transports.append("sse")

    return HealthResponse(
        status="healthy" if all(results.values()) else "degraded",
        version=settings.SERVER_VERSION,
        timestamp=datetime.now(UTC).isoformat(),
        transports=transports,
        checks=checks,
    )


@router.get("/ready", response_model=ReadinessResponse, summary="Service readiness check")
async def readiness_check(request: Request) -> ReadinessResponse:
    """
    Ready to serve traffic right now.

    Returns 503 when a backing store is unreachable.
    """
    checks = await _store_checks(request)

    if not all(checks.values()):
        logger.warning("Readiness check failed", checks=checks)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")

    return ReadinessResponse(ready=True, sessions_available=_sessions_available(request), checks=checks)


@router.get("/live", response_model=LivenessResponse, summary="Service liveness check")
async def liveness_check() -> LivenessResponse:
    """Always 200 while the process is serving requests."""
    return LivenessResponse()


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    if not request.app.state.settings.ENABLE_METRICS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return Response(content=generate_latest(get_registry()), media_type=CONTENT_TYPE_LATEST)
