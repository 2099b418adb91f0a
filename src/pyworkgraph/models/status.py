"""Status enumerations for work graph execution tracking.

Defines lifecycle states for individual work units, whole graphs,
unit blocks and monitored components, plus the small tag enums
(priority, edge kind, log event, checkpoint kind) used throughout
the engine.
"""

from enum import Enum


class UnitStatus(Enum):
    """Status of a single work unit.

    Lifecycle:
        IDLE → PENDING → RUNNING → COMPLETED/FAILED
        RUNNING → PENDING (retry) → RUNNING → ...
        PENDING → BLOCKED/SKIPPED
        COMPLETED → ROLLED_BACK
    """

    IDLE = "idle"
    """Unit was created but not yet submitted."""

    PENDING = "pending"
    """Unit is waiting for its dependencies or a retry backoff."""

    RUNNING = "running"
    """Unit is currently being executed."""

    COMPLETED = "completed"
    """Unit finished successfully."""

    FAILED = "failed"
    """Unit failed and has no retries left."""

    BLOCKED = "blocked"
    """A dependency can never be satisfied."""

    SKIPPED = "skipped"
    """Unit was skipped by an operator or a false condition."""

    ROLLED_BACK = "rolled-back"
    """A compensating action undid this unit's work."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (the unit will not run again)."""
        return self in (
            UnitStatus.COMPLETED,
            UnitStatus.FAILED,
            UnitStatus.BLOCKED,
            UnitStatus.SKIPPED,
            UnitStatus.ROLLED_BACK,
        )

    @property
    def is_active(self) -> bool:
        """Check if this status still needs the scheduler's attention."""
        return self in (UnitStatus.PENDING, UnitStatus.RUNNING)

    @property
    def is_unsatisfiable(self) -> bool:
        """Check if dependents of a unit in this status can never run."""
        return self in (UnitStatus.FAILED, UnitStatus.BLOCKED, UnitStatus.ROLLED_BACK)

    def __str__(self) -> str:
        return self.value


class GraphStatus(Enum):
    """Status of a whole work graph run.

    Lifecycle:
        DRAFT → READY → RUNNING ⇄ PAUSED → COMPLETED/FAILED
    """

    DRAFT = "draft"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if the run is over."""
        return self in (GraphStatus.COMPLETED, GraphStatus.FAILED)

    def __str__(self) -> str:
        return self.value


class Priority(Enum):
    """Scheduling priority of a work unit.

    Only breaks ties between ready units at the same dependency depth.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank, higher runs first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: "str | Priority") -> "Priority":
        """Parse a priority name; ``"urgent"`` is accepted as CRITICAL."""
        if isinstance(value, Priority):
            return value
        normalized = value.strip().lower()
        if normalized == "urgent":
            return cls.CRITICAL
        return cls(normalized)

    def __str__(self) -> str:
        return self.value


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class EdgeKind(Enum):
    """Kind of edge between two work units."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"

    def __str__(self) -> str:
        return self.value


class LogEvent(Enum):
    """Event recorded in the execution log."""

    QUEUED = "queued"
    STARTED = "started"
    PROGRESSED = "progressed"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    RETRIED = "retried"
    BLOCKED = "blocked"
    ROLLED_BACK = "rolled-back"
    APPROVED = "approved"

    def __str__(self) -> str:
        return self.value


class CheckpointKind(Enum):
    """Why a checkpoint was taken."""

    MANUAL = "manual"
    AUTO = "auto"
    PRE_OPERATION = "pre-operation"
    RECOVERY_POINT = "recovery-point"

    def __str__(self) -> str:
        return self.value


class ComponentStatus(Enum):
    """Health classification of a monitored component."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    OFFLINE = "offline"

    def __str__(self) -> str:
        return self.value


class BlockStatus(Enum):
    """Aggregate status of a unit block."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value
