"""
Gateway Monitoring

Prometheus metrics for the gateway.
"""

from __future__ import annotations

from .metrics import (
    ACTIVE_REQUESTS,
    ACTIVE_SESSIONS,
    AUTH_FAILURES,
    RATE_LIMIT_REJECTIONS,
    RATE_LIMIT_STORE_ERRORS,
    RELAY_FAILURES,
    RELAY_MESSAGES,
    REQUEST_COUNT,
    REQUEST_DURATION,
    RPC_REQUESTS,
    SESSIONS_CLOSED,
    TOOL_CALL_DURATION,
    clear_metrics_cache,
    get_registry,
)

__all__ = [
    "ACTIVE_REQUESTS",
    "ACTIVE_SESSIONS",
    "AUTH_FAILURES",
    "RATE_LIMIT_REJECTIONS",
    "RATE_LIMIT_STORE_ERRORS",
    "RELAY_FAILURES",
    "RELAY_MESSAGES",
    "REQUEST_COUNT",
    "REQUEST_DURATION",
    "RPC_REQUESTS",
    "SESSIONS_CLOSED",
    "TOOL_CALL_DURATION",
    "clear_metrics_cache",
    "get_registry",
]
