"""
Rate Limiting Module

Per-tenant quota enforcement on top of an atomic counter store.
"""

from __future__ import annotations

from mcp_gateway.ratelimit.algorithms import (
    FixedWindowCounter,
    RateLimitAlgorithm,
    SlidingWindowCounter,
)
from mcp_gateway.ratelimit.limiter import (
    RATE_LIMIT_EXEMPT_METHODS,
    RateLimitAlgorithmType,
    RateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    RateLimitScope,
)
from mcp_gateway.ratelimit.store import InMemoryQuotaStore, QuotaStore, RedisQuotaStore

__all__ = [
    "RATE_LIMIT_EXEMPT_METHODS",
    "FixedWindowCounter",
    "InMemoryQuotaStore",
    "QuotaStore",
    "RateLimitAlgorithm",
    "RateLimitAlgorithmType",
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimitScope",
    "RateLimiter",
    "RedisQuotaStore",
    "SlidingWindowCounter",
]
