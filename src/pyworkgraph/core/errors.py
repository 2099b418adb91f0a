"""
Error taxonomy for work graph execution.

Configuration errors (cycles, dangling dependencies, unknown kinds or
conditions) abort graph submission before any unit runs. Execution errors
are caught at the unit boundary and handed to the recovery controller.
Only IntegrityError on restore and InvariantViolation propagate to the
caller as fatal.
"""

from __future__ import annotations

__all__ = [
    "WorkGraphError",
    "ConfigurationError",
    "CycleDetected",
    "DanglingDependency",
    "UnknownExecutor",
    "UnknownCondition",
    "ExecutionFailed",
    "RetriesExhausted",
    "IntegrityError",
    "CancelledError",
    "InvalidTransition",
    "InvariantViolation",
]


class WorkGraphError(Exception):
    """Base class for all pyworkgraph errors."""


class ConfigurationError(WorkGraphError):
    """The submitted graph is not runnable as declared."""


class CycleDetected(ConfigurationError):
    """
    The dependency relation contains a directed cycle.

    Attributes:
        cycle: Unit ids along the cycle, first id repeated at the end
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")


class DanglingDependency(ConfigurationError):
    """A dependency or edge references a unit id that does not exist."""

    def __init__(self, unit_id: str, missing_id: str):
        self.unit_id = unit_id
        self.missing_id = missing_id
        super().__init__(f"Unit '{unit_id}' depends on non-existent unit '{missing_id}'")


class UnknownExecutor(ConfigurationError):
    """No executor is registered for a unit's kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(
            f"No executor registered for kind: {kind}. Did you forget to call registry.register()?"
        )


class UnknownCondition(ConfigurationError):
    """A conditional edge names a predicate that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No condition registered with name: {name}")


class ExecutionFailed(WorkGraphError):
    """
    A unit's execution raised or timed out.

    Recoverable: the retry policy decides what happens next.

    Attributes:
        unit_id: The failing unit
        cause: The original exception
    """

    def __init__(self, unit_id: str, cause: BaseException):
        self.unit_id = unit_id
        self.cause = cause
        message = str(cause) or type(cause).__name__
        super().__init__(f"Unit '{unit_id}' failed: {message}")

    def is_retryable(self) -> bool:
        """Delegate to the cause when it knows whether it is retryable."""
        check = getattr(self.cause, "is_retryable", None)
        if callable(check):
            return bool(check())
        return True


class RetriesExhausted(WorkGraphError):
    """A unit failed and has no retries left (terminal per-unit failure)."""

    def __init__(self, unit_id: str, attempts: int, last_error: str | None):
        self.unit_id = unit_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Unit '{unit_id}' failed after {attempts} retries: {last_error or 'unknown error'}"
        )


class IntegrityError(WorkGraphError):
    """A checkpoint snapshot failed its checksum or consistency check."""


class CancelledError(WorkGraphError):
    """The run was stopped by an operator."""


class InvalidTransition(WorkGraphError):
    """An operation was requested on a unit in a status that does not allow it."""


class InvariantViolation(WorkGraphError):
    """The engine reached a state its invariants rule out."""
