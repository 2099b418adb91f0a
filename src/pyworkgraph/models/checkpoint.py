"""Checkpoint records: immutable persisted snapshots of a WorkGraph."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pyworkgraph.models.status import CheckpointKind

__all__ = ["CheckpointRecord"]


@dataclass(frozen=True)
class CheckpointRecord:
    """A restorable snapshot of one WorkGraph.

    Immutable: frozen=True prevents modification after creation.
    The snapshot is the codec's dict form of the graph; ``checksum`` is
    computed over its canonical JSON encoding when the record is written.
    """

    id: str
    graph_id: str
    timestamp: datetime
    snapshot: dict[str, Any]
    checksum: int
    kind: CheckpointKind = CheckpointKind.MANUAL
    name: str = ""
    description: str = ""
    tags: tuple[str, ...] = field(default_factory=tuple)
    size: int = 0
    """Size in bytes of the encoded snapshot."""

    log_cursor: int = 0
    """Sequence number of the last log entry at checkpoint time."""

    integrity_ok: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "graph_id": self.graph_id,
            "timestamp": self.timestamp.isoformat(),
            "snapshot": self.snapshot,
            "checksum": self.checksum,
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "size": self.size,
            "log_cursor": self.log_cursor,
            "integrity_ok": self.integrity_ok,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckpointRecord":
        return cls(
            id=data["id"],
            graph_id=data["graph_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            snapshot=data["snapshot"],
            checksum=int(data["checksum"]),
            kind=CheckpointKind(data.get("kind", "manual")),
            name=data.get("name", ""),
            description=data.get("description", ""),
            tags=tuple(data.get("tags", ())),
            size=int(data.get("size", 0)),
            log_cursor=int(data.get("log_cursor", 0)),
            integrity_ok=bool(data.get("integrity_ok", True)),
        )

    def __repr__(self) -> str:
        return (
            f"CheckpointRecord(id={self.id!r}, graph_id={self.graph_id!r}, "
            f"kind={self.kind}, timestamp={self.timestamp.isoformat()}, size={self.size})"
        )
