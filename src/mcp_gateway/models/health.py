"""
Probe Models

Response bodies of the gateway's health, readiness and liveness probes. Checks
are keyed by backing store: ``quota_store`` always, ``relay_store`` when the
session bridge is enabled.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

StoreStatus = Literal["healthy", "unhealthy"]


class StoreCheck(BaseModel):
    """Ping outcome of one backing store."""

    status: StoreStatus = Field(..., description="healthy when the store answered a ping")
    backend: str = Field(..., description="Store implementation, e.g. RedisQuotaStore")


class HealthResponse(BaseModel):
    """Gateway health including every backing store."""

    status: Literal["healthy", "degraded"] = Field(
        ..., description="degraded when any store failed its ping"
    )
    version: str = Field(..., description="Server version reported on initialize")
    timestamp: str = Field(..., description="Check time, ISO 8601")
    transports: list[str] = Field(..., description="Transports currently offered on /mcp")
    checks: dict[str, StoreCheck] = Field(..., description="Checks keyed by store name")


class ReadinessResponse(BaseModel):
    """Whether calls can be served right now."""

    ready: bool = Field(..., description="True when every configured store answered")
    sessions_available: bool = Field(..., description="Whether GET /mcp opens an event stream")
    checks: dict[str, bool] = Field(..., description="Ping result keyed by store name")


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"
