"""
KeyValueStore - Abstract interface for persistence backends.

Design Pattern: Adapter Pattern
KeyValueStore defines the target interface that all storage adapters
implement. Different backends (SQLite, Redis, Memory) adapt to this
common interface.

Design Principle: Dependency Inversion (SOLID)
The engine, checkpoint store and run log depend on this abstraction,
not on concrete implementations. Tests use InMemoryKeyValueStore.

No transactional guarantees are assumed beyond last-write-wins per key.
Values must be JSON-compatible (dict, list, str, int, float, bool, None).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """
    Storage operation failed.

    Custom exception with context, not generic Exception.
    """

    pass


class KeyValueStore(ABC):
    """
    Abstract key-value storage used for graphs, checkpoints and logs.

    Implementations must be safe to call from several coroutines of the
    same event loop.
    """

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Args:
            key: Storage key
            default: Returned when the key does not exist

        Returns:
            The stored value, or ``default``

        Raises:
            StorageError: If the backend operation fails
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Write a value, replacing any previous one.

        Args:
            key: Storage key
            value: JSON-compatible value

        Raises:
            StorageError: If the value cannot be encoded or stored
        """
        pass

    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored.

        Default implementation stores None; adapters override it.
        """
        await self.set(key, None)

    async def connect(self) -> None:
        """Open backend resources. No-op for backends that need none."""
        return None

    async def close(self) -> None:
        """Release backend resources. No-op for backends that hold none."""
        return None

    async def __aenter__(self) -> KeyValueStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
