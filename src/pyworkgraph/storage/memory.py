"""In-memory storage implementation for pyworkgraph.

Values go through a JSON round trip on set and are deep-copied on get,
so the store rejects what SQLite or Redis would reject and callers never
share state with it.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Any

from pyworkgraph.storage.base import KeyValueStore, StorageError


class InMemoryKeyValueStore(KeyValueStore):
    """In-memory storage for testing.

    Values are round-tripped through JSON on write so that anything the
    SQLite or Redis adapters would reject is rejected here too, and
    callers never share mutable state with the store.

    Usage:
        storage = InMemoryKeyValueStore()
        await storage.set("key", {"a": 1})
    """

    def __init__(self):
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "InMemoryKeyValueStore"

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for key {key!r} is not JSON-compatible: {e}") from e

        async with self._lock:
            self._data[key] = encoded

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix`` (test helper)."""
        async with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    async def reset(self) -> None:
        """Clear all data (for testing)."""
        async with self._lock:
            self._data.clear()
