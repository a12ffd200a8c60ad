"""
Manifest Endpoint

Public discovery document built from the capability registry.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from fastapi import APIRouter, Request

from mcp_gateway.models.manifest import ManifestResponse, ServerInfo
from mcp_gateway.protocol.dispatcher import ProtocolDispatcher
from mcp_gateway.registry.capabilities import CapabilityKind, CapabilityRegistry

router = APIRouter()


def build_manifest(
    registry: CapabilityRegistry,
    dispatcher: ProtocolDispatcher,
    endpoint: str,
    rate_limits: dict[str, Any] | None = None,
    streaming_sessions: bool = False,
) -> ManifestResponse:
    """
    Describe what a gateway exposes.

    Args:
        registry: Capability registry
        dispatcher: Dispatcher supplying server identity and protocol versions
        endpoint: JSON-RPC endpoint path
        rate_limits: Active policies, as returned by ``RateLimiter.get_config``
        streaming_sessions: Whether the session bridge is available

    Returns:
        Manifest with tools grouped by category
    """
    tools: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for tool in registry.list(CapabilityKind.TOOL):
        tools[tool.category].append(
            {
                "name": tool.name,
                "description": tool.description,
                "streaming": tool.streaming,
                "requiredScopes": sorted(tool.required_scopes),
                "annotations": tool.annotations.to_dict(),
            }
        )

    transports = ["streamable-http"]
    if streaming_sessions:
        transports.append("sse")

    return ManifestResponse(
        server=ServerInfo(name=dispatcher.server_name, version=dispatcher.server_version),
        protocol_versions=dispatcher.supported_protocol_versions,
        endpoint=endpoint,
        transports=transports,
        tools=dict(sorted(tools.items())),
        resources=[resource.to_listing() for resource in registry.list(CapabilityKind.RESOURCE)],
        prompts=[prompt.to_listing() for prompt in registry.list(CapabilityKind.PROMPT)],
        rate_limits=rate_limits,
    )


@router.get(
    "/mcp/manifest",
    response_model=ManifestResponse,
    response_model_by_alias=True,
    summary="Capability manifest",
)
async def get_manifest(request: Request) -> ManifestResponse:
    """
    Capability manifest for client discovery.

    **No authentication required.**
    """
    state = request.app.state
    rate_limiter = getattr(state, "rate_limiter", None)
    return build_manifest(
        registry=state.registry,
        dispatcher=state.dispatcher,
        endpoint="/mcp",
        rate_limits=rate_limiter.get_config() if rate_limiter else None,
        streaming_sessions=getattr(state, "session_bridge", None) is not None,
    )
