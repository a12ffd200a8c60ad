"""
Call Context

Per-call context handed to capability handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mcp_gateway.protocol.models import RequestId


@dataclass(frozen=True)
class CallContext:
    """
    Identity and transport facts for one dispatched call.

    Tenant and user always come from authentication, never from client
    supplied arguments.
    """

    tenant_id: str
    user_id: str
    scopes: frozenset[str] = field(default_factory=frozenset)
    request_id: RequestId = None
    session_id: str | None = None
    supports_streaming: bool = False
    protocol_version: str | None = None

    def has_scopes(self, required: frozenset[str]) -> bool:
        """``*`` grants every scope."""
        return "*" in self.scopes or required <= self.scopes
