"""SQLite-backed storage implementation for pyworkgraph.

Design Pattern: Adapter Pattern
SqliteKeyValueStore adapts a SQLite database to the KeyValueStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- One ``kv`` table, values stored as JSON text
- INSERT ... ON CONFLICT for last-write-wins upserts
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from pyworkgraph.storage.base import KeyValueStore, StorageError


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed durable storage.

    Not usable until connect() has been awaited.

    Usage:
        storage = SqliteKeyValueStore("workgraph.db")
        await storage.connect()
        try:
            await storage.set("key", {"a": 1})
        finally:
            await storage.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteKeyValueStore:
        """
        Create an in-memory SQLite storage for testing.

        Returns:
            Connected in-memory storage instance
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteKeyValueStore(in-memory)"
        return f"SqliteKeyValueStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create table
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> aiosqlite.Connection:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")
        return self._connection

    async def get(self, key: str, default: Any = None) -> Any:
        connection = self._check_connected()

        async with self._lock:
            try:
                cursor = await connection.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = await cursor.fetchone()
                await cursor.close()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to read key {key!r}: {e}") from e

        if row is None:
            return default
        return json.loads(row[0])

    async def set(self, key: str, value: Any) -> None:
        connection = self._check_connected()

        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for key {key!r} is not JSON-compatible: {e}") from e

        updated_at = int(datetime.now(UTC).timestamp() * 1000)

        async with self._lock:
            try:
                await connection.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, encoded, updated_at),
                )
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to write key {key!r}: {e}") from e

    async def delete(self, key: str) -> None:
        connection = self._check_connected()

        async with self._lock:
            try:
                await connection.execute("DELETE FROM kv WHERE key = ?", (key,))
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to delete key {key!r}: {e}") from e

    async def reset(self) -> None:
        """Delete all stored keys (for testing)."""
        connection = self._check_connected()
        async with self._lock:
            await connection.execute("DELETE FROM kv")
