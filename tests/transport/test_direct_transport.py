"""
Tests for the direct transport.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from starlette.responses import StreamingResponse

from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.dispatcher import ProtocolDispatcher
from mcp_gateway.ratelimit.limiter import RateLimiter, RateLimitPolicy
from mcp_gateway.ratelimit.store import InMemoryQuotaStore
from mcp_gateway.registry.capabilities import CapabilityRegistry
from mcp_gateway.transport.direct import NDJSON_MEDIA_TYPE, DirectTransport


def body(method: str, params: dict[str, Any] | None = None, request_id: Any = 1) -> bytes:
    envelope: dict[str, Any] = {"version": "2.0", "method": method, "params": params or {}}
    if request_id is not None:
        envelope["id"] = request_id
    return json.dumps(envelope).encode()


@pytest.fixture
def transport(dispatcher, registry) -> DirectTransport:
    limiter = RateLimiter(
        store=InMemoryQuotaStore(),
        registry=registry,
        tenant_policy=RateLimitPolicy(limit=2, window_seconds=60),
    )
    return DirectTransport(dispatcher, limiter)


@pytest.mark.asyncio
class TestDirectTransport:
    """Tests for request/response handling."""

    async def test_ping_example(self, transport, auth):
        response = await transport.handle(b'{"version":"2.0","method":"ping","id":7}', auth)

        assert response.status_code == 200
        assert json.loads(response.body) == {"version": "2.0", "id": 7, "result": {"status": "ok"}}
        assert "X-RateLimit-Limit" not in response.headers

    async def test_parse_error_has_null_id(self, transport, auth):
        response = await transport.handle(b"{oops", auth)

        assert response.status_code == 400
        payload = json.loads(response.body)
        assert payload["id"] is None
        assert payload["error"]["code"] == -32700

    async def test_unknown_method_is_404_with_id(self, transport, auth):
        response = await transport.handle(body("tools/destroy", request_id="x-1"), auth)

        assert response.status_code == 404
        assert json.loads(response.body)["id"] == "x-1"

    async def test_notification_gets_202(self, transport, auth):
        response = await transport.handle(body("notifications/initialized", request_id=None), auth)

        assert response.status_code == 202
        assert response.body == b""

    async def test_rate_limit_headers_on_limited_methods(self, transport, auth):
        response = await transport.handle(
            body("tools/call", {"name": "add", "arguments": {"a": 1, "b": 1}}), auth
        )

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert response.headers["X-RateLimit-Tier"] == "low"

    async def test_exhausted_quota_skips_handler(self, transport, auth, call_counter):
        call = body("tools/call", {"name": "add", "arguments": {"a": 1, "b": 1}}, request_id=11)

        await transport.handle(call, auth)
        await transport.handle(call, auth)
        response = await transport.handle(call, auth)

        assert response.status_code == 429
        payload = json.loads(response.body)
        assert payload["id"] == 11
        assert payload["error"]["code"] == -32006
        assert payload["error"]["data"]["retryAfter"] >= 1
        assert response.headers["Retry-After"] == str(payload["error"]["data"]["retryAfter"])
        assert call_counter.calls == 2

    async def test_streaming_tool_renders_ndjson(self, transport, auth):
        response = await transport.handle(
            body("tools/call", {"name": "count_up", "arguments": {"total": 2}}, request_id=5), auth
        )

        assert isinstance(response, StreamingResponse)
        assert response.media_type == NDJSON_MEDIA_TYPE
        lines = [json.loads(line) async for line in response.body_iterator]
        assert [line["id"] for line in lines] == [5, 5, 5]
        assert [line["result"]["type"] for line in lines] == ["progress", "progress", "complete"]
        assert all(line["version"] == "2.0" for line in lines)

    async def test_stream_failure_ends_with_error_line(self, transport, auth):
        response = await transport.handle(body("tools/call", {"name": "fail_midway"}), auth)

        lines = [json.loads(line) async for line in response.body_iterator]
        assert lines[-1]["result"]["type"] == "error"
        assert lines[-1]["result"]["message"] == "stream broke"


@pytest.mark.asyncio
async def test_first_chunk_written_before_last_is_produced(auth):
    registry = CapabilityRegistry()
    release = asyncio.Event()
    produced: list[str] = []

    @registry.tool()
    async def slow_report(arguments: dict[str, Any], context: CallContext):
        """Emit one row, then wait before finishing."""
        produced.append("first")
        yield "row 1"
        await release.wait()
        produced.append("last")
        yield "row 2"

    transport = DirectTransport(ProtocolDispatcher(registry))
    response = await transport.handle(body("tools/call", {"name": "slow_report"}), auth)

    iterator = response.body_iterator.__aiter__()
    first = json.loads(await iterator.__anext__())

    assert first["result"]["content"][0]["text"] == "row 1"
    assert produced == ["first"]

    release.set()
    rest = [json.loads(line) async for line in iterator]
    assert rest[0]["result"]["content"][0]["text"] == "row 2"
    assert produced == ["first", "last"]
