"""
Transport Module

HTTP transports over the shared protocol dispatcher: direct request/response
with NDJSON streaming, and the SSE session bridge.
"""

from __future__ import annotations

from mcp_gateway.transport.direct import (
    NDJSON_MEDIA_TYPE,
    CallRejected,
    DirectTransport,
    PreparedCall,
    render_ndjson,
)
from mcp_gateway.transport.responses import (
    accepted_response,
    cors_headers,
    envelope_response,
    error_response,
)
from mcp_gateway.transport.session_bridge import (
    CloseReason,
    Session,
    SessionBridge,
    SessionState,
)

__all__ = [
    "NDJSON_MEDIA_TYPE",
    "CallRejected",
    "CloseReason",
    "DirectTransport",
    "PreparedCall",
    "Session",
    "SessionBridge",
    "SessionState",
    "accepted_response",
    "cors_headers",
    "envelope_response",
    "error_response",
    "render_ndjson",
]
