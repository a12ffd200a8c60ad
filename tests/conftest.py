"""Shared fixtures for the gateway test suite."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from mcp_gateway.auth.authenticator import create_access_token
from mcp_gateway.auth.models import AuthContext, AuthMethod
from mcp_gateway.config import GatewaySettings
from mcp_gateway.main import create_app
from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.dispatcher import ProtocolDispatcher
from mcp_gateway.protocol.errors import ToolExecutionError
from mcp_gateway.protocol.streaming import complete_chunk, progress_chunk
from mcp_gateway.ratelimit.store import InMemoryQuotaStore
from mcp_gateway.registry.capabilities import (
    CapabilityArgument,
    CapabilityRegistry,
    RateLimitTier,
    ToolAnnotations,
)
from mcp_gateway.relay.store import InMemoryRelayStore

JWT_SECRET = "test-secret-key"
API_KEY = "test-api-key"


class CallCounter:
    """Counts handler invocations."""

    def __init__(self) -> None:
        self.calls = 0


@pytest.fixture
def call_counter() -> CallCounter:
    return CallCounter()


@pytest.fixture
def registry(call_counter: CallCounter) -> CapabilityRegistry:
    """Registry with a small set of test capabilities."""
    registry = CapabilityRegistry()

    @registry.tool(
        input_schema={
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
        annotations=ToolAnnotations(read_only=True),
    )
    async def add(arguments: dict[str, Any], context: CallContext) -> dict[str, Any]:
        """Add two numbers."""
        call_counter.calls += 1
        return {"sum": arguments["a"] + arguments["b"]}

    @registry.tool()
    async def explode(arguments: dict[str, Any], context: CallContext) -> str:
        """Always fails."""
        raise RuntimeError("boom")

    @registry.tool()
    async def refuse(arguments: dict[str, Any], context: CallContext) -> str:
        """Fails with a client-facing message."""
        raise ToolExecutionError("Upstream unavailable")

    @registry.tool(required_scopes=["orders:write"])
    async def cancel_order(arguments: dict[str, Any], context: CallContext) -> str:
        """Needs a write scope."""
        return "cancelled"

    @registry.tool(annotations=ToolAnnotations(rate_limit_tier=RateLimitTier.HIGH, cost=10))
    async def send_email(arguments: dict[str, Any], context: CallContext) -> str:
        """High-tier tool."""
        return "sent"

    @registry.tool()
    async def count_up(arguments: dict[str, Any], context: CallContext):
        """Stream a few progress chunks, then complete."""
        total = int(arguments.get("total", 3))
        for i in range(total):
            yield progress_chunk((i + 1) / total * 100, f"step {i + 1}")
            await asyncio.sleep(0)
        yield complete_chunk({"counted": total})

    @registry.tool()
    async def fail_midway(arguments: dict[str, Any], context: CallContext):
        """Stream one chunk, then fail."""
        yield "first"
        raise RuntimeError("stream broke")

    @registry.resource(uri="config://settings", name="settings")
    async def read_settings(arguments: dict[str, Any], context: CallContext) -> dict[str, Any]:
        """Tenant settings."""
        return {"tenant": context.tenant_id, "theme": "dark"}

    @registry.prompt(arguments=[CapabilityArgument(name="topic", required=True)])
    async def summarize(arguments: dict[str, Any], context: CallContext) -> str:
        """Summarize a topic."""
        return f"Summarize {arguments['topic']}"

    return registry


@pytest.fixture
def dispatcher(registry: CapabilityRegistry) -> ProtocolDispatcher:
    return ProtocolDispatcher(
        registry,
        server_name="test-gateway",
        server_version="9.9.9",
        supported_protocol_versions=["2025-03-26", "2024-11-05"],
    )


@pytest.fixture
def context() -> CallContext:
    return CallContext(tenant_id="tenant-a", user_id="user-1", scopes=frozenset({"orders:read"}))


@pytest.fixture
def auth() -> AuthContext:
    return AuthContext(
        tenant_id="tenant-a",
        user_id="user-1",
        scopes=frozenset({"*"}),
        auth_method=AuthMethod.API_KEY,
    )


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        JWT_SECRET_KEY=JWT_SECRET,
        API_KEYS={API_KEY: "tenant-a:user-1:*"},
        RATE_LIMIT_TENANT_LIMIT=5,
        RATE_LIMIT_HIGH_TIER_LIMIT=2,
        RELAY_IN_MEMORY=True,
    )


@pytest.fixture
def relay_store() -> InMemoryRelayStore:
    return InMemoryRelayStore()


@pytest.fixture
def app(settings: GatewaySettings, registry: CapabilityRegistry, relay_store: InMemoryRelayStore):
    return create_app(
        settings=settings,
        registry=registry,
        quota_store=InMemoryQuotaStore(),
        relay_store=relay_store,
    )


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def api_key_headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}


@pytest.fixture
def bearer_headers() -> dict[str, str]:
    token = create_access_token("tenant-b", "user-2", JWT_SECRET, scopes=["orders:read"])
    return {"Authorization": f"Bearer {token}"}

