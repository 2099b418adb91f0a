"""
Storage adapters for pyworkgraph.

Available adapters:
- InMemoryKeyValueStore: for testing
- SqliteKeyValueStore: durable single-host storage (aiosqlite)
- RedisKeyValueStore: shared storage for several hosts (redis.asyncio)
"""

from pyworkgraph.storage.base import KeyValueStore, StorageError
from pyworkgraph.storage.graphs import GraphStore
from pyworkgraph.storage.memory import InMemoryKeyValueStore
from pyworkgraph.storage.redis import RedisKeyValueStore
from pyworkgraph.storage.sqlite import SqliteKeyValueStore

__all__ = [
    "KeyValueStore",
    "StorageError",
    "GraphStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "RedisKeyValueStore",
]
