"""WorkUnit: one schedulable piece of work inside a WorkGraph."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyworkgraph.models.status import Priority, UnitStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkUnit:
    """A node of work with dependencies, a retry budget and progress.

    Design: Value Object
        Holds the full execution state of one unit. Only the coordinator
        (or the task executing the unit, for ``progress``) writes to it.

    Example:
        unit = WorkUnit(id="build", kind="shell", dependencies={"fetch"}, max_attempts=2)
    """

    id: str
    """Unique identifier within the owning graph."""

    kind: str
    """Tag selecting the executor registered for this kind."""

    title: str = ""
    description: str = ""

    status: UnitStatus = UnitStatus.IDLE

    dependencies: set[str] = field(default_factory=set)
    """Ids of units that must be COMPLETED before this unit can run."""

    priority: Priority = Priority.MEDIUM

    progress: float = 0.0
    """Completion percentage, 0-100."""

    attempt: int = 0
    """Number of retries consumed so far."""

    max_attempts: int = 0
    """Retries allowed after the initial execution."""

    started_at: datetime | None = None
    ended_at: datetime | None = None

    output: Any = None
    error: str | None = None

    created_at: datetime = field(default_factory=_utcnow)

    params: dict[str, Any] = field(default_factory=dict)
    """Executor input (the unit's configuration)."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Free-form annotations, e.g. ``component_id`` on repair units."""

    estimated_duration: float | None = None
    """Expected run time in seconds, informational only."""

    next_attempt_at: datetime | None = None
    """A retried unit is not ready before this instant."""

    requires_approval: bool = False
    """An operator must approve the unit before it can be dispatched."""

    approved_by: str | None = None
    approved_at: datetime | None = None

    def __post_init__(self) -> None:
        self.dependencies = set(self.dependencies)
        self.priority = Priority.parse(self.priority)
        if isinstance(self.status, str):
            self.status = UnitStatus(self.status)
        if self.attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {self.attempt}")
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        self.progress = clamp_progress(self.progress)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def awaiting_approval(self) -> bool:
        return self.requires_approval and self.approved_at is None

    @property
    def retries_left(self) -> int:
        return max(0, self.max_attempts - self.attempt)

    @property
    def duration(self) -> float | None:
        """Seconds between start and end, None while not finished."""
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        return (
            f"WorkUnit(id={self.id!r}, kind={self.kind!r}, status={self.status}, "
            f"attempt={self.attempt}/{self.max_attempts}, progress={self.progress:.0f})"
        )


def clamp_progress(value: float) -> float:
    """Clamp a progress value into 0-100."""
    return max(0.0, min(100.0, float(value)))
