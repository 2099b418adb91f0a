"""
Progress & log aggregation.

Two concerns live here:

- RunLog: the append-only execution log of one graph. Appends are
  serialized under an asyncio.Lock so sequence numbers are strictly
  increasing and timestamps never go backwards, even when several unit
  tasks report at once. Every entry is persisted through the injected
  KeyValueStore so a resumed run keeps its audit trail.

- Pure summaries: summarize(), overall_progress(), block_progress() and
  block_status() read a graph and never mutate it. Calling them twice
  on the same graph returns equal results.

Key layout (project-scoped):
- workgraph:{project}:log:{graph_id}:cursor        last sequence number
- workgraph:{project}:log:{graph_id}:{sequence}    one LogEntry dict
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pyworkgraph.core.clock import Clock, SystemClock
from pyworkgraph.models import (
    BlockStatus,
    LogEntry,
    LogEvent,
    UnitStatus,
    WorkGraph,
    WorkUnit,
    clamp_progress,
)
from pyworkgraph.storage.base import KeyValueStore

logger = logging.getLogger(__name__)

__all__ = [
    "RunLog",
    "GraphSummary",
    "ProgressReporter",
    "summarize",
    "overall_progress",
    "block_progress",
    "block_status",
]


class RunLog:
    """Append-only execution log for one graph.

    Usage:
        log = RunLog(storage, "release", clock=clock)
        await log.load()
        await log.append("build", LogEvent.STARTED)
        log.entries(event=LogEvent.COMPLETED)
    """

    def __init__(
        self,
        storage: KeyValueStore,
        graph_id: str,
        clock: Clock | None = None,
        project_id: str = "default",
    ):
        self._storage = storage
        self._graph_id = graph_id
        self._clock = clock or SystemClock()
        self._project_id = project_id
        self._entries: list[LogEntry] = []
        self._lock = asyncio.Lock()
        self._loaded = False

    @staticmethod
    def cursor_key(project_id: str, graph_id: str) -> str:
        return f"workgraph:{project_id}:log:{graph_id}:cursor"

    @staticmethod
    def entry_key(project_id: str, graph_id: str, sequence: int) -> str:
        return f"workgraph:{project_id}:log:{graph_id}:{sequence}"

    @property
    def graph_id(self) -> str:
        return self._graph_id

    @property
    def cursor(self) -> int:
        """Sequence number of the last entry, 0 for an empty log."""
        return self._entries[-1].sequence if self._entries else 0

    async def load(self) -> None:
        """Read previously persisted entries. Safe to call more than once."""
        async with self._lock:
            if self._loaded:
                return
            cursor = await self._storage.get(self.cursor_key(self._project_id, self._graph_id), 0)
            entries = []
            for sequence in range(1, int(cursor) + 1):
                data = await self._storage.get(
                    self.entry_key(self._project_id, self._graph_id, sequence)
                )
                if data is not None:
                    entries.append(LogEntry.from_dict(data))
            self._entries = entries
            self._loaded = True

        if entries:
            logger.debug(f"Loaded {len(entries)} log entries for graph {self._graph_id}")

    async def append(
        self, unit_id: str, event: LogEvent, data: dict[str, Any] | None = None
    ) -> LogEntry:
        """Append and persist one entry.

        Raises:
            StorageError: If the entry cannot be persisted
        """
        async with self._lock:
            timestamp = self._clock.now()
            if self._entries and timestamp < self._entries[-1].timestamp:
                timestamp = self._entries[-1].timestamp

            entry = LogEntry(
                sequence=self.cursor + 1,
                timestamp=timestamp,
                graph_id=self._graph_id,
                unit_id=unit_id,
                event=event,
                data=dict(data or {}),
            )
            await self._storage.set(
                self.entry_key(self._project_id, self._graph_id, entry.sequence), entry.to_dict()
            )
            await self._storage.set(
                self.cursor_key(self._project_id, self._graph_id), entry.sequence
            )
            self._entries.append(entry)

        logger.debug(f"Graph {self._graph_id}: {unit_id} {event}")
        return entry

    def entries(
        self, unit_id: str | None = None, event: LogEvent | None = None
    ) -> list[LogEntry]:
        """Entries in append order, optionally filtered by unit and/or event."""
        return [
            e
            for e in self._entries
            if (unit_id is None or e.unit_id == unit_id) and (event is None or e.event is event)
        ]

    def since(self, cursor: int) -> list[LogEntry]:
        """Entries appended after ``cursor``."""
        return [e for e in self._entries if e.sequence > cursor]

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"RunLog(graph_id={self._graph_id!r}, entries={len(self._entries)})"


@dataclass(frozen=True)
class GraphSummary:
    """Counts per unit status plus overall progress."""

    total_units: int
    idle: int
    pending: int
    running: int
    completed: int
    failed: int
    blocked: int
    skipped: int
    rolled_back: int
    overall_progress: float

    @property
    def finished(self) -> int:
        """Units in a terminal status."""
        return self.completed + self.failed + self.blocked + self.skipped + self.rolled_back


def overall_progress(units: Iterable[WorkUnit]) -> float:
    """Unweighted mean of unit progress, 0.0 for no units."""
    values = [u.progress for u in units]
    if not values:
        return 0.0
    return sum(values) / len(values)


def summarize(graph: WorkGraph) -> GraphSummary:
    """Aggregate a graph in one pass over its units."""
    counts = dict.fromkeys(UnitStatus, 0)
    total_progress = 0.0
    for unit in graph.units:
        counts[unit.status] += 1
        total_progress += unit.progress

    total = len(graph.units)
    return GraphSummary(
        total_units=total,
        idle=counts[UnitStatus.IDLE],
        pending=counts[UnitStatus.PENDING],
        running=counts[UnitStatus.RUNNING],
        completed=counts[UnitStatus.COMPLETED],
        failed=counts[UnitStatus.FAILED],
        blocked=counts[UnitStatus.BLOCKED],
        skipped=counts[UnitStatus.SKIPPED],
        rolled_back=counts[UnitStatus.ROLLED_BACK],
        overall_progress=total_progress / total if total else 0.0,
    )


def _block_units(graph: WorkGraph, block_id: str) -> list[WorkUnit]:
    block = graph.get_block(block_id)
    if block is None:
        raise KeyError(f"graph {graph.id!r} has no block {block_id!r}")
    return [u for u in (graph.get_unit(uid) for uid in block.unit_ids) if u is not None]


def block_progress(graph: WorkGraph, block_id: str) -> float:
    """Mean progress of a block's units."""
    return overall_progress(_block_units(graph, block_id))


def block_status(graph: WorkGraph, block_id: str) -> BlockStatus:
    """Completed when every unit completed or was skipped, not started while
    no unit has started, otherwise in progress."""
    units = _block_units(graph, block_id)
    if units and all(u.status in (UnitStatus.COMPLETED, UnitStatus.SKIPPED) for u in units):
        return BlockStatus.COMPLETED
    untouched = all(
        u.status in (UnitStatus.IDLE, UnitStatus.PENDING) and u.started_at is None for u in units
    )
    if untouched:
        return BlockStatus.NOT_STARTED
    return BlockStatus.IN_PROGRESS


class ProgressReporter:
    """Handed to executors so a running unit can report its own progress.

    The reporter only touches ``unit.progress``; the callback (owned by the
    scheduler) logs the change and wakes the coordinator, which
    recomputes the graph progress.
    """

    def __init__(
        self,
        unit: WorkUnit,
        on_progress: Callable[[WorkUnit, float], Awaitable[None]] | None = None,
    ):
        self._unit = unit
        self._on_progress = on_progress

    @property
    def unit_id(self) -> str:
        return self._unit.id

    async def report(self, value: float) -> None:
        """Set the unit's progress (clamped to 0-100)."""
        if self._unit.status is not UnitStatus.RUNNING:
            return
        progress = clamp_progress(value)
        if progress == self._unit.progress:
            return
        self._unit.progress = progress
        if self._on_progress is not None:
            await self._on_progress(self._unit, progress)
