"""
Manifest Models

Discovery document describing the capabilities a gateway exposes.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ServerInfo(BaseModel):
    """Identity of the gateway."""

    name: str = Field(..., description="Server name")
    version: str = Field(..., description="Server version")


class ManifestResponse(BaseModel):
    """Capability manifest."""

    server: ServerInfo = Field(..., description="Server identity")
    protocol_versions: list[str] = Field(
        ..., serialization_alias="protocolVersions", description="Supported protocol versions, newest first"
    )
    endpoint: str = Field(..., description="JSON-RPC endpoint path")
    transports: list[str] = Field(..., description="Available transports")
    tools: dict[str, list[dict[str, Any]]] = Field(..., description="Tool listings grouped by category")
    resources: list[dict[str, Any]] = Field(default_factory=list, description="Resource listings")
    prompts: list[dict[str, Any]] = Field(default_factory=list, description="Prompt listings")
    rate_limits: dict[str, Any] | None = Field(
        default=None, serialization_alias="rateLimits", description="Active rate limit policies"
    )
