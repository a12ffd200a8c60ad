"""
Rate Limiting Algorithms

Window algorithms built on the quota store's atomic increment. Every decision
is taken from the post-increment count returned by the store.
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from mcp_gateway.ratelimit.store import QuotaStore


class RateLimitAlgorithm(ABC):
    """Base class for rate limiting algorithms."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    @abstractmethod
    async def is_allowed(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
        cost: int = 1,
    ) -> tuple[bool, dict[str, Any]]:
        """
        Consume ``cost`` units and decide whether the call is allowed.

        Args:
            key: Counter key (tenant, method and optionally tool)
            limit: Maximum units allowed in the window
            window_seconds: Time window in seconds
            store: Quota store instance
            cost: Units consumed by this call

        Returns:
            Tuple of (is_allowed, metadata) where metadata contains:
                - remaining: Units remaining in the window
                - reset_at: Unix timestamp when the window resets
                - retry_after: Seconds to wait before retry (if blocked)
        """

    @abstractmethod
    async def peek(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
    ) -> dict[str, Any]:
        """Report usage for ``key`` without consuming quota."""

    def _window_start(self, now: float, window_seconds: int) -> int:
        return int(now // window_seconds) * window_seconds

    @staticmethod
    def _metadata(
        allowed: bool, used: float, limit: int, window_seconds: int, reset_at: int, now: float
    ) -> dict[str, Any]:
        return {
            "remaining": max(0, limit - math.ceil(used)),
            "reset_at": reset_at,
            "retry_after": 0 if allowed else max(1, math.ceil(reset_at - now)),
            "limit": limit,
            "window_seconds": window_seconds,
        }


class FixedWindowCounter(RateLimitAlgorithm):
    """
    Fixed window counter algorithm.

    One counter per window, aligned to multiples of ``window_seconds``.
    Allows up to 2x the limit across a window boundary.
    """

    async def is_allowed(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
        cost: int = 1,
    ) -> tuple[bool, dict[str, Any]]:
        now = self._clock()
        window_start = self._window_start(now, window_seconds)
        count, _ = await store.increment(f"{key}:{window_start}", window_seconds, cost)

        allowed = count <= limit
        return allowed, self._metadata(
            allowed, count, limit, window_seconds, window_start + window_seconds, now
        )

    async def peek(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
    ) -> dict[str, Any]:
        now = self._clock()
        window_start = self._window_start(now, window_seconds)
        count = await store.get(f"{key}:{window_start}")
        metadata = self._metadata(
            count < limit, count, limit, window_seconds, window_start + window_seconds, now
        )
        metadata["used"] = count
        return metadata


class SlidingWindowCounter(RateLimitAlgorithm):
    """
    Approximate sliding window counter.

    Weights the previous window's count by the fraction of it still inside
    the sliding window and adds the current window's post-increment count.
    The previous window is closed, so reading it cannot race with writers.
    """

    async def _estimate(
        self, key: str, window_seconds: int, store: QuotaStore, current: int, now: float
    ) -> float:
        window_start = self._window_start(now, window_seconds)
        previous = await store.get(f"{key}:{window_start - window_seconds}")
        weight = 1.0 - (now - window_start) / window_seconds
        return previous * weight + current

    async def is_allowed(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
        cost: int = 1,
    ) -> tuple[bool, dict[str, Any]]:
        now = self._clock()
        window_start = self._window_start(now, window_seconds)
        # Counters live for two windows so the next window can weight this one
        count, _ = await store.increment(f"{key}:{window_start}", window_seconds * 2, cost)
        estimated = await self._estimate(key, window_seconds, store, count, now)

        allowed = estimated <= limit
        return allowed, self._metadata(
            allowed, estimated, limit, window_seconds, window_start + window_seconds, now
        )

    async def peek(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        store: QuotaStore,
    ) -> dict[str, Any]:
        now = self._clock()
        window_start = self._window_start(now, window_seconds)
        current = await store.get(f"{key}:{window_start}")
        estimated = await self._estimate(key, window_seconds, store, current, now)
        metadata = self._metadata(
            estimated < limit, estimated, limit, window_seconds, window_start + window_seconds, now
        )
        metadata["used"] = math.ceil(estimated)
        return metadata
