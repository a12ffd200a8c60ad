"""
Relay Stores

Message hand-off between a call-relay POST and the open stream of the same
session. The store only carries session records and queued messages; it does
not own session lifecycle.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.asyncio.connection import ConnectionPool

logger = structlog.get_logger()


class RelayStore(ABC):
    """Push/drain queue per session plus a small session record."""

    @abstractmethod
    async def register(self, session_id: str, record: dict[str, Any]) -> None:
        """Create the session record and an empty queue."""

    @abstractmethod
    async def get_record(self, session_id: str) -> dict[str, Any] | None:
        """Return the session record, or None when unknown or expired."""

    @abstractmethod
    async def update_record(self, session_id: str, record: dict[str, Any]) -> None:
        """Replace the session record and refresh its expiry."""

    @abstractmethod
    async def push(self, session_id: str, message: str) -> None:
        """Append a serialized message to the session queue."""

    @abstractmethod
    async def drain(self, session_id: str) -> list[str]:
        """Atomically remove and return every queued message, oldest first."""

    @abstractmethod
    async def unregister(self, session_id: str) -> None:
        """Delete the session record and any undelivered messages."""

    async def exists(self, session_id: str) -> bool:
        return await self.get_record(session_id) is not None

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True


class RedisRelayStore(RelayStore):
    """
    Redis-backed relay store.

    Messages are queued with RPUSH and drained with LRANGE+DEL inside one
    MULTI/EXEC, so a message is either returned by exactly one drain or left
    in the queue.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        client: aioredis.Redis | None = None,
        key_prefix: str = "mcp:relay",
        ttl_seconds: int = 600,
    ) -> None:
        """
        Initialize relay store.

        Args:
            redis_url: Redis connection URL (used by ``initialize``)
            client: Pre-built client, mainly for tests
            key_prefix: Prefix for record and queue keys
            ttl_seconds: Expiry of session records and undrained queues
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._client: aioredis.Redis | None = client
        self._pool: ConnectionPool | None = None
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize Redis connection."""
        if self._client is not None:
            return
        if not self.redis_url:
            raise RuntimeError("RedisRelayStore requires a redis_url or client")

        logger.info("Initializing relay store", redis_url=self.redis_url)

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

        logger.info("Relay store initialized successfully")

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
            raise RuntimeError("Relay store not initialized. Call initialize() first.")
        return self._client

    def _record_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:session:{session_id}"

    def _queue_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:queue:{session_id}"

    async def register(self, session_id: str, record: dict[str, Any]) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self._record_key(session_id), json.dumps(record), ex=self.ttl_seconds)
            pipe.delete(self._queue_key(session_id))
            await pipe.execute()

    async def get_record(self, session_id: str) -> dict[str, Any] | None:
        raw = await self.client.get(self._record_key(session_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def update_record(self, session_id: str, record: dict[str, Any]) -> None:
        await self.client.set(self._record_key(session_id), json.dumps(record), ex=self.ttl_seconds)

    async def push(self, session_id: str, message: str) -> None:
        queue_key = self._queue_key(session_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.rpush(queue_key, message)
            pipe.expire(queue_key, self.ttl_seconds)
            await pipe.execute()

    async def drain(self, session_id: str) -> list[str]:
        queue_key = self._queue_key(session_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrange(queue_key, 0, -1)
            pipe.delete(queue_key)
            messages, _ = await pipe.execute()

        return [m.decode("utf-8") if isinstance(m, bytes) else m for m in messages]

    async def unregister(self, session_id: str) -> None:
        await self.client.delete(self._record_key(session_id), self._queue_key(session_id))

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("Relay store ping failed", error=str(e))
            return False


class InMemoryRelayStore(RelayStore):
    """
    Process-local relay store.

    Suitable when the stream and its call-relay POSTs are served by the same
    process (single worker or tests).
    """

    def __init__(self, ttl_seconds: int = 600) -> None:
        self.ttl_seconds = ttl_seconds
        self._records: dict[str, tuple[dict[str, Any], float]] = {}
        self._queues: dict[str, deque[str]] = {}

    def _expired(self, session_id: str) -> bool:
        entry = self._records.get(session_id)
        return entry is None or entry[1] <= time.monotonic()

    async def register(self, session_id: str, record: dict[str, Any]) -> None:
        self._records[session_id] = (dict(record), time.monotonic() + self.ttl_seconds)
        self._queues[session_id] = deque()

    async def get_record(self, session_id: str) -> dict[str, Any] | None:
        if self._expired(session_id):
            self._records.pop(session_id, None)
            return None
        return dict(self._records[session_id][0])

    async def update_record(self, session_id: str, record: dict[str, Any]) -> None:
        self._records[session_id] = (dict(record), time.monotonic() + self.ttl_seconds)

    async def push(self, session_id: str, message: str) -> None:
        self._queues.setdefault(session_id, deque()).append(message)

    async def drain(self, session_id: str) -> list[str]:
        queue = self._queues.get(session_id)
        if not queue:
            return []
        messages = list(queue)
        queue.clear()
        return messages

    async def unregister(self, session_id: str) -> None:
        self._records.pop(session_id, None)
        self._queues.pop(session_id, None)

    @property
    def session_count(self) -> int:
        return len(self._records)
