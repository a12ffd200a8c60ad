"""
Prometheus Metrics Collection

Metrics for the gateway:
- HTTP request/response metrics
- JSON-RPC method outcomes and tool latency
- Rate limit rejections
- Session bridge activity
"""

from __future__ import annotations

import os
from typing import Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

# Tests get a private registry so repeated app construction cannot collide
_is_test_mode = "PYTEST_CURRENT_TEST" in os.environ
_REGISTRY: CollectorRegistry = CollectorRegistry() if _is_test_mode else REGISTRY

_metrics_cache: dict[str, Any] = {}


def get_registry() -> CollectorRegistry:
    return _REGISTRY


def clear_metrics_cache() -> None:
    """Clear the metrics cache. Useful for testing."""
    _metrics_cache.clear()


def _find_registered(name: str) -> Any:
    for collector in list(_REGISTRY._collector_to_names.keys()):
        if getattr(collector, "_name", None) == name:
            _metrics_cache[name] = collector
            return collector
    return None


def _get_or_create_counter(
    name: str, documentation: str, labelnames: list[str] | None = None
) -> Counter:
    """Get existing Counter metric or create new one, handling duplicates."""
    if name in _metrics_cache:
        return _metrics_cache[name]

    try:
        metric = Counter(name, documentation, labelnames or [], registry=_REGISTRY)
        _metrics_cache[name] = metric
        return metric
    except ValueError:
        # Metric already registered, retrieve it from registry
        existing = _find_registered(name)
        if existing is None:
            raise
        return existing


def _get_or_create_gauge(
    name: str, documentation: str, labelnames: list[str] | None = None
) -> Gauge:
    """Get existing Gauge metric or create new one, handling duplicates."""
    if name in _metrics_cache:
        return _metrics_cache[name]

    try:
        metric = Gauge(name, documentation, labelnames or [], registry=_REGISTRY)
        _metrics_cache[name] = metric
        return metric
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        return existing


def _get_or_create_histogram(
    name: str,
    documentation: str,
    labelnames: list[str] | None = None,
    buckets: tuple[float, ...] | None = None,
) -> Histogram:
    """Get existing Histogram metric or create new one, handling duplicates."""
    if name in _metrics_cache:
        return _metrics_cache[name]

    try:
        kwargs = {"buckets": buckets} if buckets else {}
        metric = Histogram(
            name, documentation, labelnames or [], registry=_REGISTRY, **kwargs
        )
        _metrics_cache[name] = metric
        return metric
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        return existing


# HTTP Request Metrics
REQUEST_COUNT = _get_or_create_counter(
    "mcp_gateway_http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_DURATION = _get_or_create_histogram(
    "mcp_gateway_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ACTIVE_REQUESTS = _get_or_create_gauge(
    "mcp_gateway_http_requests_active",
    "Number of active HTTP requests",
)

# JSON-RPC Metrics
RPC_REQUESTS = _get_or_create_counter(
    "mcp_gateway_rpc_requests_total",
    "Total number of dispatched JSON-RPC calls",
    ["method", "outcome"],
)

TOOL_CALL_DURATION = _get_or_create_histogram(
    "mcp_gateway_tool_call_duration_seconds",
    "Tool handler execution time in seconds",
    ["tool", "streaming"],
)

# Rate Limiting Metrics
RATE_LIMIT_REJECTIONS = _get_or_create_counter(
    "mcp_gateway_rate_limit_rejections_total",
    "Total number of calls rejected by the rate limiter",
    ["scope"],
)

RATE_LIMIT_STORE_ERRORS = _get_or_create_counter(
    "mcp_gateway_rate_limit_store_errors_total",
    "Total number of quota store failures",
)

# Session Bridge Metrics
ACTIVE_SESSIONS = _get_or_create_gauge(
    "mcp_gateway_sse_sessions_active",
    "Number of open session-bridge streams",
)

SESSIONS_CLOSED = _get_or_create_counter(
    "mcp_gateway_sse_sessions_closed_total",
    "Total number of closed session-bridge streams",
    ["reason"],
)

RELAY_MESSAGES = _get_or_create_counter(
    "mcp_gateway_relay_messages_total",
    "Total number of messages moved through the relay store",
    ["direction"],
)

RELAY_FAILURES = _get_or_create_counter(
    "mcp_gateway_relay_failures_total",
    "Total number of relay store failures seen by the poll loop",
)

# Authentication Metrics
AUTH_FAILURES = _get_or_create_counter(
    "mcp_gateway_auth_failures_total",
    "Total number of failed authentication attempts",
    ["auth_method", "failure_reason"],
)
