"""
HTTP tests for the manifest, health probes and metrics.
"""

from __future__ import annotations

import pytest

from mcp_gateway.relay.store import InMemoryRelayStore


class UnreachableRelayStore(InMemoryRelayStore):
    async def ping(self) -> bool:
        return False


@pytest.mark.asyncio
class TestManifest:
    """Tests for GET /mcp/manifest."""

    async def test_no_auth_required(self, client):
        response = await client.get("/mcp/manifest")

        assert response.status_code == 200

    async def test_tools_grouped_by_category(self, client):
        manifest = (await client.get("/mcp/manifest")).json()

        names = {tool["name"] for tool in manifest["tools"]["general"]}
        assert {"add", "count_up", "send_email"} <= names
        count_up = next(tool for tool in manifest["tools"]["general"] if tool["name"] == "count_up")
        assert count_up["streaming"] is True
        cancel = next(tool for tool in manifest["tools"]["general"] if tool["name"] == "cancel_order")
        assert cancel["requiredScopes"] == ["orders:write"]

    async def test_protocol_and_rate_limits(self, client, settings):
        manifest = (await client.get("/mcp/manifest")).json()

        assert manifest["protocolVersions"] == settings.SUPPORTED_PROTOCOL_VERSIONS
        assert manifest["rateLimits"]["tenant"]["limit"] == 5
        assert "ping" in manifest["rateLimits"]["exemptMethods"]
        assert manifest["transports"] == ["streamable-http", "sse"]
        assert manifest["endpoint"] == "/mcp"

    async def test_resources_and_prompts(self, client):
        manifest = (await client.get("/mcp/manifest")).json()

        assert [r["uri"] for r in manifest["resources"]] == ["config://settings"]
        assert [p["name"] for p in manifest["prompts"]] == ["summarize"]


@pytest.mark.asyncio
class TestHealth:
    """Tests for health probes."""

    async def test_health(self, client, settings):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == settings.SERVER_VERSION
        assert body["transports"] == ["streamable-http", "sse"]
        assert body["checks"] == {
            "quota_store": {"status": "healthy", "backend": "InMemoryQuotaStore"},
            "relay_store": {"status": "healthy", "backend": "InMemoryRelayStore"},
        }

    async def test_ready(self, client):
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {
            "ready": True,
            "sessions_available": True,
            "checks": {"quota_store": True, "relay_store": True},
        }

    async def test_live(self, client):
        response = await client.get("/live")

        assert response.json() == {"status": "alive"}

    async def test_unreachable_store_degrades_health(self, app, client):
        app.state.relay_store = UnreachableRelayStore()

        health = await client.get("/health")
        ready = await client.get("/ready")

        assert health.json()["status"] == "degraded"
        assert health.json()["checks"]["relay_store"] == {
            "status": "unhealthy",
            "backend": "UnreachableRelayStore",
        }
        assert ready.status_code == 503

    async def test_metrics(self, client, api_key_headers):
        await client.post("/mcp", json={"version": "2.0", "method": "ping", "id": 1}, headers=api_key_headers)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "mcp_gateway_http_requests_total" in response.text
