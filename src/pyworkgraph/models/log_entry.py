"""Execution log entries."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pyworkgraph.models.status import LogEvent

__all__ = ["LogEntry"]


@dataclass(frozen=True)
class LogEntry:
    """One append-only record of a unit state transition.

    Entries are never mutated or deleted; together they form the audit
    trail of a run. ``sequence`` is strictly increasing per graph.
    """

    sequence: int
    timestamp: datetime
    graph_id: str
    unit_id: str
    event: LogEvent
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "graph_id": self.graph_id,
            "unit_id": self.unit_id,
            "event": self.event.value,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        return cls(
            sequence=int(data["sequence"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            graph_id=data["graph_id"],
            unit_id=data["unit_id"],
            event=LogEvent(data["event"]),
            data=dict(data.get("data") or {}),
        )

    def __repr__(self) -> str:
        return (
            f"LogEntry(#{self.sequence} {self.timestamp.isoformat()} "
            f"{self.unit_id!r} {self.event})"
        )
