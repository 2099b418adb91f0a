"""Registry mapping unit kinds to their executors.

The scheduler never switches on a unit's ``kind``: it looks the kind up
here. New kinds are added by registering an executor, without touching the
scheduler.

Three things can be registered:
- executors: ``async def execute(unit, context) -> output`` per kind,
  with an optional timeout
- compensators: ``async def compensate(unit)`` per kind, used by rollback
- conditions: named predicates ``(output) -> bool`` used by conditional
  edges (sync or async)

Executors and compensators may be plain async functions or objects with
an ``execute`` / ``compensate`` method.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pyworkgraph.core.clock import Clock
from pyworkgraph.core.errors import UnknownCondition, UnknownExecutor
from pyworkgraph.executor.progress import ProgressReporter
from pyworkgraph.models import WorkUnit

logger = logging.getLogger(__name__)

__all__ = [
    "ExecutionContext",
    "ExecutorEntry",
    "Registry",
]


@dataclass
class ExecutionContext:
    """Everything an executor may use besides the unit itself.

    Attributes:
        graph_id: Graph the unit belongs to
        attempt: Retries consumed before this execution (0 on first run)
        inputs: Outputs of the unit's completed dependencies, by unit id
        reporter: Progress reporter bound to the unit
        clock: Engine clock, for executors that need to wait
    """

    graph_id: str
    attempt: int
    inputs: dict[str, Any] = field(default_factory=dict)
    reporter: ProgressReporter | None = None
    clock: Clock | None = None

    async def report_progress(self, value: float) -> None:
        """Shortcut for ``context.reporter.report(value)``."""
        if self.reporter is not None:
            await self.reporter.report(value)


Executor = Callable[[WorkUnit, ExecutionContext], Awaitable[Any]]
Compensator = Callable[[WorkUnit], Awaitable[Any]]
Condition = Callable[[Any], Any]


@dataclass
class ExecutorEntry:
    """A registered kind."""

    kind: str
    execute: Executor
    timeout: float | None = None
    """Seconds before the execution is cancelled and counted as a failure."""

    compensate: Compensator | None = None


class Registry:
    """Registry of executors, compensators and conditions.

    Example:
        ```python
        registry = Registry()

        @registry.executor("http-check", timeout=10.0)
        async def http_check(unit, context):
            ...

        @registry.compensator("deploy")
        async def undeploy(unit):
            ...

        registry.register_condition("has_changes", lambda output: bool(output))
        ```
    """

    def __init__(self):
        """Create a new empty registry."""
        self._executors: dict[str, ExecutorEntry] = {}
        self._conditions: dict[str, Condition] = {}

    def register(
        self,
        kind: str,
        executor: Any,
        timeout: float | None = None,
        compensator: Any = None,
    ) -> None:
        """Register an executor for a unit kind.

        Registering a kind twice replaces the previous executor, keeping its
        compensator unless a new one is given.

        Args:
            kind: Unit kind tag
            executor: Async callable ``(unit, context)`` or object with ``execute``
            timeout: Optional per-kind timeout in seconds
            compensator: Optional async callable ``(unit)`` or object with ``compensate``
        """
        execute = getattr(executor, "execute", executor)
        if not callable(execute):
            raise TypeError(f"executor for kind {kind!r} is not callable")

        previous = self._executors.get(kind)
        compensate = _as_compensator(compensator)
        if compensate is None and previous is not None:
            compensate = previous.compensate

        self._executors[kind] = ExecutorEntry(
            kind=kind, execute=execute, timeout=timeout, compensate=compensate
        )
        logger.debug(f"Registered executor for kind: {kind}")

    def executor(self, kind: str, timeout: float | None = None) -> Callable[[Executor], Executor]:
        """Decorator form of register()."""

        def decorator(func: Executor) -> Executor:
            self.register(kind, func, timeout=timeout)
            return func

        return decorator

    def register_compensator(self, kind: str, compensator: Any) -> None:
        """Attach a compensating action to an already registered kind.

        Raises:
            UnknownExecutor: If the kind has no executor
        """
        entry = self.require(kind)
        entry.compensate = _as_compensator(compensator)

    def compensator(self, kind: str) -> Callable[[Compensator], Compensator]:
        """Decorator form of register_compensator()."""

        def decorator(func: Compensator) -> Compensator:
            self.register_compensator(kind, func)
            return func

        return decorator

    def register_condition(self, name: str, predicate: Condition) -> None:
        """Register a named predicate for conditional edges."""
        if not callable(predicate):
            raise TypeError(f"condition {name!r} is not callable")
        self._conditions[name] = predicate
        logger.debug(f"Registered condition: {name}")

    def condition(self, name: str) -> Callable[[Condition], Condition]:
        """Decorator form of register_condition()."""

        def decorator(func: Condition) -> Condition:
            self.register_condition(name, func)
            return func

        return decorator

    def get(self, kind: str) -> ExecutorEntry | None:
        return self._executors.get(kind)

    def require(self, kind: str) -> ExecutorEntry:
        """Like get() but raises UnknownExecutor."""
        entry = self._executors.get(kind)
        if entry is None:
            raise UnknownExecutor(kind)
        return entry

    def has_condition(self, name: str) -> bool:
        return name in self._conditions

    async def evaluate(self, name: str, output: Any) -> bool:
        """Evaluate a named condition against a source output.

        Raises:
            UnknownCondition: If no condition has that name
            Exception: Whatever the predicate raises
        """
        predicate = self._conditions.get(name)
        if predicate is None:
            raise UnknownCondition(name)
        result = predicate(output)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def kinds(self) -> list[str]:
        return sorted(self._executors)

    def __contains__(self, kind: str) -> bool:
        return kind in self._executors

    def __len__(self) -> int:
        """Returns the number of registered kinds."""
        return len(self._executors)


def _as_compensator(compensator: Any) -> Compensator | None:
    if compensator is None:
        return None
    compensate = getattr(compensator, "compensate", compensator)
    if not callable(compensate):
        raise TypeError("compensator is not callable")
    return compensate
