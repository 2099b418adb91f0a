"""
Snapshot codec: WorkGraph <-> JSON-compatible dict.

Snapshots are what the checkpoint store and the graph store persist. The
dict form is plain JSON so every KeyValueStore adapter can hold it.

Unit outputs are opaque to the engine, so they are pickled and embedded as
base64 text. ``params`` and ``metadata`` are stored as-is and must be
JSON-compatible.

Checksums use xxhash over the canonical JSON encoding (sorted keys, no
whitespace), so two equal snapshots always hash the same.
"""

from __future__ import annotations

import base64
import binascii
import json
import pickle
from datetime import datetime
from typing import Any

import xxhash

from pyworkgraph.core.errors import IntegrityError
from pyworkgraph.models import (
    Edge,
    EdgeKind,
    GraphStatus,
    Priority,
    UnitBlock,
    UnitStatus,
    WorkGraph,
    WorkUnit,
)

__all__ = [
    "SNAPSHOT_VERSION",
    "encode_output",
    "decode_output",
    "graph_to_dict",
    "graph_from_dict",
    "canonical_json",
    "checksum",
    "validate_snapshot",
]

SNAPSHOT_VERSION = 1

_UNIT_KEYS = ("id", "kind", "status", "dependencies", "priority", "progress", "attempt")


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def encode_output(value: Any) -> str | None:
    """Pickle an opaque unit output into base64 text (None stays None)."""
    if value is None:
        return None
    return base64.b64encode(pickle.dumps(value)).decode("ascii")


def decode_output(encoded: str | None) -> Any:
    """Inverse of encode_output()."""
    if encoded is None:
        return None
    return pickle.loads(base64.b64decode(encoded.encode("ascii")))


def _unit_to_dict(unit: WorkUnit) -> dict[str, Any]:
    return {
        "id": unit.id,
        "kind": unit.kind,
        "title": unit.title,
        "description": unit.description,
        "status": unit.status.value,
        "dependencies": sorted(unit.dependencies),
        "priority": unit.priority.value,
        "progress": unit.progress,
        "attempt": unit.attempt,
        "max_attempts": unit.max_attempts,
        "started_at": _dt(unit.started_at),
        "ended_at": _dt(unit.ended_at),
        "output": encode_output(unit.output),
        "error": unit.error,
        "created_at": _dt(unit.created_at),
        "params": unit.params,
        "metadata": unit.metadata,
        "estimated_duration": unit.estimated_duration,
        "next_attempt_at": _dt(unit.next_attempt_at),
        "requires_approval": unit.requires_approval,
        "approved_by": unit.approved_by,
        "approved_at": _dt(unit.approved_at),
    }


def _unit_from_dict(data: dict[str, Any]) -> WorkUnit:
    unit = WorkUnit(
        id=data["id"],
        kind=data["kind"],
        title=data.get("title", ""),
        description=data.get("description", ""),
        status=UnitStatus(data["status"]),
        dependencies=set(data["dependencies"]),
        priority=Priority(data["priority"]),
        progress=data["progress"],
        attempt=data["attempt"],
        max_attempts=data.get("max_attempts", 0),
        started_at=_parse_dt(data.get("started_at")),
        ended_at=_parse_dt(data.get("ended_at")),
        output=decode_output(data.get("output")),
        error=data.get("error"),
        params=dict(data.get("params") or {}),
        metadata=dict(data.get("metadata") or {}),
        estimated_duration=data.get("estimated_duration"),
        next_attempt_at=_parse_dt(data.get("next_attempt_at")),
        requires_approval=bool(data.get("requires_approval", False)),
        approved_by=data.get("approved_by"),
        approved_at=_parse_dt(data.get("approved_at")),
    )
    created_at = _parse_dt(data.get("created_at"))
    if created_at is not None:
        unit.created_at = created_at
    return unit


def graph_to_dict(graph: WorkGraph) -> dict[str, Any]:
    """Serialize a graph, its units, edges and blocks."""
    return {
        "version": SNAPSHOT_VERSION,
        "id": graph.id,
        "name": graph.name,
        "description": graph.description,
        "status": graph.status.value,
        "overall_progress": graph.overall_progress,
        "auto_mode": graph.auto_mode,
        "allow_partial_success": graph.allow_partial_success,
        "checkpoint_interval_units": graph.checkpoint_interval_units,
        "completed_since_checkpoint": graph.completed_since_checkpoint,
        "last_checkpoint_at": _dt(graph.last_checkpoint_at),
        "started_at": _dt(graph.started_at),
        "ended_at": _dt(graph.ended_at),
        "units": [_unit_to_dict(u) for u in graph.units],
        "edges": [
            {
                "from_id": e.from_id,
                "to_id": e.to_id,
                "kind": e.kind.value,
                "condition": e.condition,
            }
            for e in graph.edges
        ],
        "blocks": [
            {
                "id": b.id,
                "name": b.name,
                "description": b.description,
                "unit_ids": list(b.unit_ids),
                "dependencies": list(b.dependencies),
                "priority": b.priority.value,
            }
            for b in graph.blocks
        ],
    }


def graph_from_dict(data: dict[str, Any]) -> WorkGraph:
    """Rebuild a WorkGraph from graph_to_dict() output.

    Raises:
        IntegrityError: If the dict is structurally invalid or an output
            cannot be decoded
    """
    validate_snapshot(data)

    try:
        units = [_unit_from_dict(u) for u in data["units"]]
    except (pickle.UnpicklingError, binascii.Error, EOFError, AttributeError, ValueError) as e:
        raise IntegrityError(f"Snapshot of graph {data.get('id')!r} has corrupt units: {e}") from e

    return WorkGraph(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        status=GraphStatus(data["status"]),
        units=units,
        edges=[
            Edge(
                from_id=e["from_id"],
                to_id=e["to_id"],
                kind=EdgeKind(e["kind"]),
                condition=e.get("condition"),
            )
            for e in data["edges"]
        ],
        blocks=[
            UnitBlock(
                id=b["id"],
                name=b["name"],
                description=b.get("description", ""),
                unit_ids=list(b.get("unit_ids", [])),
                dependencies=list(b.get("dependencies", [])),
                priority=Priority(b.get("priority", "medium")),
            )
            for b in data.get("blocks", [])
        ],
        overall_progress=data.get("overall_progress", 0.0),
        auto_mode=data.get("auto_mode", True),
        allow_partial_success=data.get("allow_partial_success", False),
        checkpoint_interval_units=data.get("checkpoint_interval_units", 0),
        completed_since_checkpoint=data.get("completed_since_checkpoint", 0),
        last_checkpoint_at=_parse_dt(data.get("last_checkpoint_at")),
        started_at=_parse_dt(data.get("started_at")),
        ended_at=_parse_dt(data.get("ended_at")),
    )


def canonical_json(data: Any) -> str:
    """Deterministic JSON encoding used for checksums and sizes."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def checksum(data: Any) -> int:
    """xxh64 of the canonical JSON encoding, masked to a positive int64."""
    return xxhash.xxh64(canonical_json(data).encode("utf-8")).intdigest() & 0x7FFFFFFFFFFFFFFF


def validate_snapshot(data: Any) -> None:
    """
    Structural check of a snapshot dict.

    Verifies required keys, known enum values, unique unit ids and that
    every dependency and edge endpoint refers to a unit of the snapshot.

    Raises:
        IntegrityError: On the first problem found
    """
    if not isinstance(data, dict):
        raise IntegrityError("Snapshot is not a mapping")

    for key in ("id", "name", "status", "units", "edges"):
        if key not in data:
            raise IntegrityError(f"Snapshot is missing {key!r}")

    if data.get("version", SNAPSHOT_VERSION) != SNAPSHOT_VERSION:
        raise IntegrityError(f"Unsupported snapshot version: {data.get('version')}")

    try:
        GraphStatus(data["status"])
    except ValueError as e:
        raise IntegrityError(f"Snapshot has unknown graph status: {data['status']!r}") from e

    if not isinstance(data["units"], list) or not isinstance(data["edges"], list):
        raise IntegrityError("Snapshot units and edges must be lists")

    ids: set[str] = set()
    for unit in data["units"]:
        if not isinstance(unit, dict):
            raise IntegrityError("Snapshot unit is not a mapping")
        for key in _UNIT_KEYS:
            if key not in unit:
                raise IntegrityError(f"Snapshot unit is missing {key!r}")
        if unit["id"] in ids:
            raise IntegrityError(f"Snapshot has duplicate unit id {unit['id']!r}")
        ids.add(unit["id"])
        try:
            UnitStatus(unit["status"])
            Priority(unit["priority"])
        except ValueError as e:
            raise IntegrityError(f"Snapshot unit {unit['id']!r} has an invalid value: {e}") from e
        if not 0 <= unit["progress"] <= 100:
            raise IntegrityError(f"Snapshot unit {unit['id']!r} has progress out of range")

    for unit in data["units"]:
        for dep in unit["dependencies"]:
            if dep not in ids:
                raise IntegrityError(f"Snapshot unit {unit['id']!r} depends on unknown {dep!r}")

    for edge in data["edges"]:
        if edge.get("from_id") not in ids or edge.get("to_id") not in ids:
            raise IntegrityError(
                f"Snapshot edge {edge.get('from_id')}->{edge.get('to_id')} is dangling"
            )
        try:
            EdgeKind(edge.get("kind"))
        except ValueError as e:
            raise IntegrityError(f"Snapshot edge has unknown kind: {edge.get('kind')!r}") from e
