"""Redis-based key-value store implementation.

Provides a Redis backend so several host processes can share graphs,
checkpoints and logs.

Data Structures:
- {namespace}{key} (STRING): JSON-encoded value

Design: Adapter Pattern
Implements KeyValueStore for Redis.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from pyworkgraph.storage.base import KeyValueStore, StorageError


class RedisKeyValueStore(KeyValueStore):
    """Redis key-value store using connection pooling.

    All dependencies (Redis connection) passed explicitly.

    Usage:
        storage = RedisKeyValueStore("redis://localhost:6379")
        await storage.connect()

        await storage.set("workgraph:default:graph:release", {...})
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        max_connections: int = 16,
        namespace: str = "",
    ):
        """Initialize Redis key-value store.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
            namespace: Prefix added to every key
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._namespace = namespace
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisKeyValueStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> redis.Redis:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        client = self._check_connected()
        try:
            raw = await client.get(self._key(key))
        except redis.RedisError as e:
            raise StorageError(f"Failed to read key {key!r}: {e}") from e

        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        client = self._check_connected()
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for key {key!r} is not JSON-compatible: {e}") from e

        try:
            await client.set(self._key(key), encoded)
        except redis.RedisError as e:
            raise StorageError(f"Failed to write key {key!r}: {e}") from e

    async def delete(self, key: str) -> None:
        client = self._check_connected()
        try:
            await client.delete(self._key(key))
        except redis.RedisError as e:
            raise StorageError(f"Failed to delete key {key!r}: {e}") from e
