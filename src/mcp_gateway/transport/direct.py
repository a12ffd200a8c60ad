"""
Direct Transport

Synchronous request/response path: parse, rate-limit, dispatch, respond.
Streaming tools are rendered as an NDJSON body, one line per chunk, written
while the handler is still producing.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog
from starlette.responses import Response, StreamingResponse

from mcp_gateway.auth.models import AuthContext
from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.dispatcher import (
    McpMethod,
    ProtocolDispatcher,
    StreamingExecution,
    parse_envelope,
)
from mcp_gateway.protocol.errors import GatewayError, RateLimitExceededError
from mcp_gateway.protocol.models import JsonRpcRequest, RequestId
from mcp_gateway.ratelimit.limiter import RateLimiter, RateLimitResult
from mcp_gateway.transport.responses import accepted_response, envelope_response, error_response

logger = structlog.get_logger()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class CallRejected(Exception):
    """A call stopped before dispatch. Always answered directly to the caller."""

    def __init__(
        self,
        error: GatewayError,
        request_id: RequestId = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.error = error
        self.request_id = request_id
        self.headers = headers or {}
        super().__init__(error.message)

    def to_response(self) -> Response:
        return error_response(self.error, self.request_id, self.headers)


@dataclass
class PreparedCall:
    """A parsed envelope that has passed the rate limiter."""

    request: JsonRpcRequest
    rate_limit: RateLimitResult | None = None

    @property
    def headers(self) -> dict[str, str]:
        return self.rate_limit.headers() if self.rate_limit else {}


def tool_name_of(request: JsonRpcRequest) -> str | None:
    if request.method != McpMethod.TOOLS_CALL.value:
        return None
    name = request.params.get("name")
    return name if isinstance(name, str) else None


class DirectTransport:
    """Direct request/response transport over the shared dispatcher."""

    def __init__(self, dispatcher: ProtocolDispatcher, rate_limiter: RateLimiter | None = None) -> None:
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter

    @staticmethod
    def parse(raw_body: bytes | str) -> JsonRpcRequest:
        """
        Parse the envelope.

        Raises:
            CallRejected: Malformed envelope, answered with a null id
        """
        try:
            return parse_envelope(raw_body)
        except GatewayError as e:
            raise CallRejected(e) from e

    async def admit(self, request: JsonRpcRequest, auth: AuthContext) -> PreparedCall:
        """
        Consume quota for a parsed call.

        Raises:
            CallRejected: Quota exceeded, answered with the request id echoed
        """
        rate_limit = None
        if self.rate_limiter is not None:
            try:
                rate_limit = await self.rate_limiter.enforce(
                    auth.tenant_id, request.method, tool_name_of(request)
                )
            except RateLimitExceededError as e:
                raise CallRejected(e, request.id, e.result.headers()) from e

        return PreparedCall(request=request, rate_limit=rate_limit)

    async def prepare(self, raw_body: bytes | str, auth: AuthContext) -> PreparedCall:
        """Parse then admit."""
        return await self.admit(self.parse(raw_body), auth)

    @staticmethod
    def context_for(
        auth: AuthContext,
        supports_streaming: bool,
        session_id: str | None = None,
        protocol_version: str | None = None,
    ) -> CallContext:
        return CallContext(
            tenant_id=auth.tenant_id,
            user_id=auth.user_id,
            scopes=auth.scopes,
            session_id=session_id,
            supports_streaming=supports_streaming,
            protocol_version=protocol_version,
        )

    async def handle(self, raw_body: bytes | str, auth: AuthContext) -> Response:
        """Process one call and write the outcome as the HTTP response."""
        try:
            prepared = await self.prepare(raw_body, auth)
        except CallRejected as rejection:
            return rejection.to_response()

        result = await self.dispatcher.dispatch(
            prepared.request, self.context_for(auth, supports_streaming=True)
        )
        headers = prepared.headers

        if result is None:
            return accepted_response(headers)

        if isinstance(result, StreamingExecution):
            logger.info(
                "Streaming tool response",
                tool=result.tool_name,
                request_id=result.request_id,
            )
            return StreamingResponse(
                render_ndjson(result),
                media_type=NDJSON_MEDIA_TYPE,
                headers={**headers, "Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        return envelope_response(result, headers)


async def render_ndjson(execution: StreamingExecution) -> AsyncIterator[bytes]:
    """One ``{version, id, result: chunk}`` line per produced chunk."""
    async for envelope in execution.envelopes():
        yield (json.dumps(envelope.to_wire(), default=str) + "\n").encode("utf-8")
