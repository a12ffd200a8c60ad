"""
Quota Stores

Counter stores with an atomic increment-with-TTL primitive. The rate limiter
decides from the value returned by ``increment``, never from a separate read.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
import structlog
from redis.asyncio.connection import ConnectionPool

logger = structlog.get_logger()


class QuotaStore(ABC):
    """Counter store used by the rate limiter."""

    @abstractmethod
    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> tuple[int, int]:
        """
        Atomically add ``amount`` to ``key`` and return the new value.

        The key expires ``window_seconds`` after its first increment.

        Returns:
            Tuple of (count after increment, seconds until the key expires)
        """

    @abstractmethod
    async def get(self, key: str) -> int:
        """Current value of ``key`` (0 when absent)."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True


class RedisQuotaStore(QuotaStore):
    """
    Redis-backed quota store.

    ``SET NX EX``, ``INCRBY`` and ``TTL`` run inside a single MULTI/EXEC so
    concurrent callers across processes observe a strictly increasing count.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        client: aioredis.Redis | None = None,
    ) -> None:
        """
        Initialize quota store.

        Args:
            redis_url: Redis connection URL (used by ``initialize``)
            client: Pre-built client, mainly for tests
        """
        self.redis_url = redis_url
        self._client: aioredis.Redis | None = client
        self._pool: ConnectionPool | None = None
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize Redis connection."""
        if self._client is not None:
            return
        if not self.redis_url:
            raise RuntimeError("RedisQuotaStore requires a redis_url or client")

        logger.info("Initializing quota store", redis_url=self.redis_url)

        self._pool = ConnectionPool.from_url(
            self.redis_url,
            decode_responses=False,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        self._client = aioredis.Redis(connection_pool=self._pool)
        await self._client.ping()

        logger.info("Quota store initialized successfully")

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self._owns_client and self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

    @property
    def client(self) -> aioredis.Redis:
        """Get Redis client instance."""
        if not self._client:
            raise RuntimeError("Quota store not initialized. Call initialize() first.")
        return self._client

    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> tuple[int, int]:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incrby(key, amount)
            pipe.ttl(key)
            _, count, ttl = await pipe.execute()

        if ttl < 0:
            # Key exists without an expiry
            await self.client.expire(key, window_seconds)
            ttl = window_seconds

        return int(count), int(ttl)

    async def get(self, key: str) -> int:
        value = await self.client.get(key)
        return int(value) if value is not None else 0

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(key))

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("Quota store ping failed", error=str(e))
            return False


class InMemoryQuotaStore(QuotaStore):
    """
    Process-local quota store.

    There are no awaits between reading and writing a counter, so increments
    are atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._counters: dict[str, tuple[int, float]] = {}

    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> tuple[int, int]:
        now = time.monotonic()
        count, expires_at = self._counters.get(key, (0, 0.0))
        if expires_at <= now:
            count, expires_at = 0, now + window_seconds
        count += amount
        self._counters[key] = (count, expires_at)
        return count, max(0, int(expires_at - now))

    async def get(self, key: str) -> int:
        entry = self._counters.get(key)
        if entry is None or entry[1] <= time.monotonic():
            return 0
        return entry[0]

    async def delete(self, key: str) -> bool:
        return self._counters.pop(key, None) is not None

    def cleanup(self) -> int:
        """Drop expired counters. Returns the number removed."""
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
        return len(expired)
