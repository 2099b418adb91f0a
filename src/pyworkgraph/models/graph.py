"""WorkGraph, Edge and UnitBlock: the run-level data model.

A WorkGraph exclusively owns its units, edges and blocks. Other
components (checkpoint store, run log) only refer to it by id.
"""

from dataclasses import dataclass, field
from datetime import datetime

from pyworkgraph.models.status import EdgeKind, GraphStatus, Priority
from pyworkgraph.models.unit import WorkUnit


@dataclass(frozen=True)
class Edge:
    """Directed edge ``from_id → to_id``.

    Sequential and parallel edges both make ``to_id`` wait for ``from_id``.
    A conditional edge additionally names a predicate (registered with the
    executor registry) evaluated against the source unit's output; a false
    result skips the target.
    """

    from_id: str
    to_id: str
    kind: EdgeKind = EdgeKind.SEQUENTIAL
    condition: str | None = None
    """Name of a registered predicate, only used by CONDITIONAL edges."""

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            object.__setattr__(self, "kind", EdgeKind(self.kind))
        if self.kind is EdgeKind.CONDITIONAL and not self.condition:
            raise ValueError(f"conditional edge {self.from_id}->{self.to_id} needs a condition")

    @property
    def is_conditional(self) -> bool:
        return self.kind is EdgeKind.CONDITIONAL


@dataclass
class UnitBlock:
    """A named group of units tracked together (a "task block").

    Block dependencies are expanded at submission: every unit of this block
    waits for every unit of the blocks listed in ``dependencies``.
    """

    id: str
    name: str
    unit_ids: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    description: str = ""
    priority: Priority = Priority.MEDIUM

    def __post_init__(self) -> None:
        self.priority = Priority.parse(self.priority)


@dataclass
class WorkGraph:
    """An ordered collection of work units plus edges, representing one run.

    Usage:
        graph = WorkGraph(id="release", name="Release pipeline")
        graph.add_unit(WorkUnit(id="build", kind="shell"))
        graph.add_unit(WorkUnit(id="test", kind="shell"))
        graph.connect("build", "test")
    """

    id: str
    name: str
    status: GraphStatus = GraphStatus.DRAFT
    units: list[WorkUnit] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    blocks: list[UnitBlock] = field(default_factory=list)
    description: str = ""
    overall_progress: float = 0.0

    auto_mode: bool = True
    """False runs step by step: the scheduler pauses after every completion."""

    allow_partial_success: bool = False
    """True lets the graph end COMPLETED even when some units failed."""

    checkpoint_interval_units: int = 0
    """Auto-checkpoint every N completed units, 0 disables."""

    last_checkpoint_at: datetime | None = None
    completed_since_checkpoint: int = 0

    started_at: datetime | None = None
    ended_at: datetime | None = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = GraphStatus(self.status)
        self._index: dict[str, WorkUnit] = {}
        self._reindex()

    def _reindex(self) -> None:
        self._index = {unit.id: unit for unit in self.units}

    def get_unit(self, unit_id: str) -> WorkUnit | None:
        """Look up a unit by id, None if the graph has no such unit."""
        if len(self._index) != len(self.units):
            self._reindex()
        return self._index.get(unit_id)

    def unit(self, unit_id: str) -> WorkUnit:
        """Look up a unit by id, raising KeyError if missing."""
        found = self.get_unit(unit_id)
        if found is None:
            raise KeyError(f"graph {self.id!r} has no unit {unit_id!r}")
        return found

    def has_unit(self, unit_id: str) -> bool:
        return self.get_unit(unit_id) is not None

    def add_unit(self, unit: WorkUnit) -> WorkUnit:
        if self.has_unit(unit.id):
            raise ValueError(f"graph {self.id!r} already has a unit {unit.id!r}")
        self.units.append(unit)
        self._index[unit.id] = unit
        return unit

    def remove_unit(self, unit_id: str) -> WorkUnit | None:
        """Remove a unit (not its edges); returns it, or None if missing."""
        found = self.get_unit(unit_id)
        if found is not None:
            self.units.remove(found)
            self._index.pop(unit_id, None)
        return found

    def connect(
        self,
        from_id: str,
        to_id: str,
        kind: EdgeKind = EdgeKind.SEQUENTIAL,
        condition: str | None = None,
    ) -> Edge:
        edge = Edge(from_id=from_id, to_id=to_id, kind=kind, condition=condition)
        self.edges.append(edge)
        return edge

    def get_block(self, block_id: str) -> UnitBlock | None:
        return next((b for b in self.blocks if b.id == block_id), None)

    def incoming(self, unit_id: str) -> list[Edge]:
        return [e for e in self.edges if e.to_id == unit_id]

    def outgoing(self, unit_id: str) -> list[Edge]:
        return [e for e in self.edges if e.from_id == unit_id]

    def __repr__(self) -> str:
        return (
            f"WorkGraph(id={self.id!r}, name={self.name!r}, status={self.status}, "
            f"units={len(self.units)}, edges={len(self.edges)}, "
            f"progress={self.overall_progress:.1f})"
        )
