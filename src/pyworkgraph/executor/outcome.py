"""
Unit execution outcomes.

This module defines the UnitOutcome state machine for the result of running
one work unit. Unit tasks never raise into the coordinator: they always
return an outcome, and the coordinator applies the state transition.

**Design Pattern**: State Machine using Union types

Example:
    ```python
    outcome = await run_unit(unit)

    match outcome:
        case Succeeded(unit_id, output):
            print(f"{unit_id} produced {output!r}")
        case Failed(unit_id, error):
            print(f"{unit_id} failed: {error}")
    ```
"""

from dataclasses import dataclass
from typing import Any

__all__ = [
    "Succeeded",
    "Failed",
    "UnitOutcome",
]


@dataclass(frozen=True)
class Succeeded:
    """
    The executor returned normally.

    Attributes:
        unit_id: The unit that ran
        output: Whatever the executor returned (opaque to the engine)
    """

    unit_id: str
    output: Any = None

    def __str__(self) -> str:
        return f"Succeeded({self.unit_id}, output={self.output!r})"


@dataclass(frozen=True)
class Failed:
    """
    The executor raised or exceeded its timeout.

    Attributes:
        unit_id: The unit that ran
        error: The raised exception (ExecutionFailed wrapping the cause)
        timed_out: True when the per-kind timeout expired
    """

    unit_id: str
    error: BaseException
    timed_out: bool = False

    def __str__(self) -> str:
        return f"Failed({self.unit_id}, error={type(self.error).__name__}: {self.error})"


# UnitOutcome is a Union type representing the result of one execution.
#
# Pattern matching:
#     match outcome:
#         case Succeeded(unit_id, output): ...
#         case Failed(unit_id, error): ...
UnitOutcome = Succeeded | Failed
