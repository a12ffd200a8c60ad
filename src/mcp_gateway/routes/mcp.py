"""
JSON-RPC Endpoint

``/mcp`` carries both transports. A POST without ``sessionId`` is a direct
call. A GET opens a session-bridge stream, and a POST with ``sessionId``
relays a call into that stream. CORS and preflight handling live in the CORS
middleware.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from mcp_gateway.auth.authenticator import Authenticator
from mcp_gateway.auth.models import AuthContext
from mcp_gateway.protocol.errors import (
    AuthenticationRequiredError,
    GatewayError,
    InvalidRequestError,
    SessionNotFoundError,
)
from mcp_gateway.protocol.models import RequestId
from mcp_gateway.transport.direct import DirectTransport
from mcp_gateway.transport.responses import error_response
from mcp_gateway.transport.session_bridge import SessionBridge

router = APIRouter()
logger = structlog.get_logger()

SESSION_QUERY_PARAM = "sessionId"


def _peek_request_id(raw_body: bytes) -> RequestId:
    """Best-effort id of an envelope that has not been parsed yet."""
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("id"), (str, int)):
        return payload["id"]
    return None


async def _authenticate(request: Request) -> AuthContext:
    authenticator: Authenticator = request.app.state.authenticator
    return await authenticator.authenticate(request)


def _bridge(request: Request) -> SessionBridge | None:
    return getattr(request.app.state, "session_bridge", None)


def _direct_only_info(request: Request) -> JSONResponse:
    """Describe the direct transport when no session stream can be offered."""
    settings = request.app.state.settings
    return JSONResponse(
        content={
            "name": settings.SERVER_NAME,
            "version": settings.SERVER_VERSION,
            "transport": "streamable-http",
            "endpoint": request.url.path,
            "methods": ["POST"],
            "note": "SSE sessions are unavailable. POST JSON-RPC calls to this endpoint.",
        }
    )


@router.get("/mcp", summary="Open a session-bridge event stream")
async def open_stream(request: Request) -> Response:
    """
    Open an SSE stream.

    The first event is ``endpoint`` with the URL to POST calls to. Replies to
    those calls arrive as ``message`` events. Without a relay store the
    gateway only offers the direct transport and describes itself instead.
    The same happens when the relay store cannot register the session.
    """
    bridge = _bridge(request)
    if bridge is None:
        return _direct_only_info(request)

    try:
        auth = await _authenticate(request)
    except AuthenticationRequiredError as e:
        return error_response(e)

    try:
        session = await bridge.open_session(auth)
    except Exception as e:
        logger.error("Session open failed", tenant_id=auth.tenant_id, error=str(e))
        return _direct_only_info(request)

    endpoint_url = str(request.url.replace(query=f"{SESSION_QUERY_PARAM}={session.session_id}"))

    return EventSourceResponse(
        bridge.stream_events(session, endpoint_url, request.is_disconnected),
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/mcp", summary="Send a JSON-RPC call")
async def post_call(request: Request) -> Response:
    """
    Process one JSON-RPC call.

    Direct calls are answered in the response body, streamed as NDJSON for
    streaming tools. Calls carrying ``sessionId`` are acknowledged with 202
    and answered on the session's event stream.
    """
    raw_body = await request.body()

    try:
        auth = await _authenticate(request)
    except AuthenticationRequiredError as e:
        return error_response(e, _peek_request_id(raw_body))

    session_id = request.query_params.get(SESSION_QUERY_PARAM)
    if session_id:
        bridge = _bridge(request)
        if bridge is None:
            return error_response(
                SessionNotFoundError(f"Session not found: {session_id}"),
                _peek_request_id(raw_body),
            )
        return await bridge.relay_call(session_id, raw_body, auth)

    direct: DirectTransport = request.app.state.direct_transport
    return await direct.handle(raw_body, auth)


@router.delete("/mcp", summary="Close a session-bridge stream")
async def close_stream(request: Request) -> Response:
    """Close the session named by ``sessionId``. Its stream ends on its next poll."""
    session_id = request.query_params.get(SESSION_QUERY_PARAM)
    if not session_id:
        return error_response(InvalidRequestError(f"Missing {SESSION_QUERY_PARAM} query parameter"))

    try:
        auth = await _authenticate(request)
        bridge = _bridge(request)
        if bridge is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        await bridge.close_session(session_id, auth)
    except GatewayError as e:
        return error_response(e)

    return Response(status_code=204)
