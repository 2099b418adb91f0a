"""
Checkpoint store: restorable snapshots of work graphs.

A checkpoint serializes a graph's units (statuses, attempts, progress,
outputs), edges, blocks and the run log cursor. Records are immutable
once written. Restore verifies the checksum and the snapshot structure
before building anything, so a corrupt snapshot is never partially
applied.

Retention: at most ``max_checkpoints`` records per graph (oldest pruned
first), optionally also dropping records older than ``max_age_seconds``.

Key layout (project-scoped):
- workgraph:{project}:checkpoint:{checkpoint_id}    one CheckpointRecord dict
- workgraph:{project}:checkpoints:{graph_id}        checkpoint ids, oldest first
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import timedelta

from uuid_extensions import uuid7

from pyworkgraph.core.clock import Clock, SystemClock
from pyworkgraph.core.errors import IntegrityError
from pyworkgraph.models import CheckpointKind, CheckpointRecord, WorkGraph
from pyworkgraph.storage.base import KeyValueStore
from pyworkgraph.storage.codec import canonical_json, checksum, graph_from_dict, graph_to_dict

logger = logging.getLogger(__name__)

__all__ = ["CheckpointStore"]


class CheckpointStore:
    """Create, list, verify and restore checkpoints.

    Usage:
        store = CheckpointStore(storage, max_checkpoints=10)
        record = await store.checkpoint(graph, name="before deploy")
        graph = await store.restore(record.id)
    """

    def __init__(
        self,
        storage: KeyValueStore,
        clock: Clock | None = None,
        project_id: str = "default",
        max_checkpoints: int = 10,
        max_age_seconds: float | None = None,
    ):
        if max_checkpoints < 1:
            raise ValueError(f"max_checkpoints must be >= 1, got {max_checkpoints}")
        self._storage = storage
        self._clock = clock or SystemClock()
        self._project_id = project_id
        self._max_checkpoints = max_checkpoints
        self._max_age_seconds = max_age_seconds
        self._index_lock = asyncio.Lock()

    # Key builders

    @staticmethod
    def record_key(project_id: str, checkpoint_id: str) -> str:
        return f"workgraph:{project_id}:checkpoint:{checkpoint_id}"

    @staticmethod
    def index_key(project_id: str, graph_id: str) -> str:
        return f"workgraph:{project_id}:checkpoints:{graph_id}"

    async def checkpoint(
        self,
        graph: WorkGraph,
        kind: CheckpointKind = CheckpointKind.MANUAL,
        name: str = "",
        description: str = "",
        tags: Iterable[str] = (),
        log_cursor: int = 0,
    ) -> CheckpointRecord:
        """Snapshot ``graph`` and persist the record.

        Raises:
            StorageError: If the record cannot be written
        """
        now = self._clock.now()
        graph.last_checkpoint_at = now
        graph.completed_since_checkpoint = 0

        snapshot = graph_to_dict(graph)
        encoded = canonical_json(snapshot)

        record = CheckpointRecord(
            id=str(uuid7()),
            graph_id=graph.id,
            timestamp=now,
            snapshot=snapshot,
            checksum=checksum(snapshot),
            kind=kind,
            name=name or f"{kind} checkpoint of {graph.name}",
            description=description,
            tags=tuple(tags),
            size=len(encoded.encode("utf-8")),
            log_cursor=log_cursor,
            integrity_ok=True,
        )

        await self._storage.set(self.record_key(self._project_id, record.id), record.to_dict())
        async with self._index_lock:
            index = await self._storage.get(self.index_key(self._project_id, graph.id), [])
            index.append(record.id)
            await self._storage.set(self.index_key(self._project_id, graph.id), index)

        logger.info(
            f"Checkpoint {record.id} ({kind}) taken for graph {graph.id}: "
            f"{len(graph.units)} units, {record.size} bytes"
        )

        await self._prune(graph.id)
        return record

    async def get(self, checkpoint_id: str) -> CheckpointRecord | None:
        """Load a record, None if it does not exist.

        Raises:
            IntegrityError: If the stored record is malformed
        """
        data = await self._storage.get(self.record_key(self._project_id, checkpoint_id))
        if data is None:
            return None
        try:
            return CheckpointRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise IntegrityError(f"Checkpoint {checkpoint_id} record is malformed: {e}") from e

    async def list(self, graph_id: str) -> list[CheckpointRecord]:
        """Checkpoints of a graph, newest first."""
        index = await self._storage.get(self.index_key(self._project_id, graph_id), [])
        records = []
        for checkpoint_id in reversed(index):
            record = await self.get(checkpoint_id)
            if record is not None:
                records.append(record)
        return records

    async def latest(self, graph_id: str) -> CheckpointRecord | None:
        index = await self._storage.get(self.index_key(self._project_id, graph_id), [])
        for checkpoint_id in reversed(index):
            record = await self.get(checkpoint_id)
            if record is not None:
                return record
        return None

    async def delete(self, checkpoint_id: str) -> bool:
        """Remove a checkpoint. Returns False if it did not exist."""
        record = await self.get(checkpoint_id)
        if record is None:
            return False

        await self._storage.delete(self.record_key(self._project_id, checkpoint_id))
        async with self._index_lock:
            index = await self._storage.get(self.index_key(self._project_id, record.graph_id), [])
            if checkpoint_id in index:
                index.remove(checkpoint_id)
                await self._storage.set(self.index_key(self._project_id, record.graph_id), index)

        logger.debug(f"Deleted checkpoint {checkpoint_id} of graph {record.graph_id}")
        return True

    def _check(self, record: CheckpointRecord) -> WorkGraph:
        if checksum(record.snapshot) != record.checksum:
            raise IntegrityError(f"Checkpoint {record.id} failed its checksum")
        graph = graph_from_dict(record.snapshot)
        if graph.id != record.graph_id:
            raise IntegrityError(
                f"Checkpoint {record.id} belongs to graph {record.graph_id!r} "
                f"but holds graph {graph.id!r}"
            )
        return graph

    async def verify(self, checkpoint_id: str) -> bool:
        """True if the checkpoint exists and would restore cleanly."""
        try:
            record = await self.get(checkpoint_id)
            if record is None:
                return False
            self._check(record)
        except IntegrityError as e:
            logger.warning(f"Checkpoint {checkpoint_id} is corrupt: {e}")
            return False
        return True

    async def restore(self, checkpoint_id: str) -> WorkGraph:
        """Rebuild the graph exactly as it was persisted.

        Raises:
            KeyError: If no checkpoint has that id
            IntegrityError: If the checksum or the structural check fails
        """
        record = await self.get(checkpoint_id)
        if record is None:
            raise KeyError(f"No checkpoint with id {checkpoint_id!r}")

        graph = self._check(record)
        logger.info(f"Restored graph {graph.id} from checkpoint {checkpoint_id}")
        return graph

    async def _prune(self, graph_id: str) -> None:
        async with self._index_lock:
            index = await self._storage.get(self.index_key(self._project_id, graph_id), [])
            doomed = index[: max(0, len(index) - self._max_checkpoints)]
            kept = index[len(doomed) :]

            if self._max_age_seconds is not None:
                cutoff = self._clock.now() - timedelta(seconds=self._max_age_seconds)
                fresh = []
                for checkpoint_id in kept:
                    record = await self.get(checkpoint_id)
                    if record is not None and record.timestamp < cutoff:
                        doomed.append(checkpoint_id)
                    else:
                        fresh.append(checkpoint_id)
                kept = fresh

            if not doomed:
                return

            for checkpoint_id in doomed:
                await self._storage.delete(self.record_key(self._project_id, checkpoint_id))
            await self._storage.set(self.index_key(self._project_id, graph_id), kept)

        logger.debug(f"Pruned {len(doomed)} checkpoints of graph {graph_id}")
