"""Unit failure recovery: bounded retry, escalation and rollback.

Handles the two ways a unit leaves the happy path:
- Failure: retry with exponential backoff while the unit has retries left
  and the error is retryable, otherwise mark it failed and escalate
- Rollback: run the kind's compensating action on a completed unit and
  mark it rolled back

Design: Information Hiding (Parnas)
Retry and rollback policy is isolated here so the scheduler loop stays
simple and these policies can evolve independently.

``max_attempts = N`` on a unit means N retries after the initial
execution: the unit may run N + 1 times, producing N ``retried`` entries
followed by one ``failed`` entry.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Protocol, runtime_checkable

from pyworkgraph.core.clock import Clock, SystemClock
from pyworkgraph.core.errors import (
    ExecutionFailed,
    InvalidTransition,
    RetriesExhausted,
    WorkGraphError,
)
from pyworkgraph.executor.progress import RunLog
from pyworkgraph.executor.registry import Registry
from pyworkgraph.executor.resolver import topological_order, transitive_dependents
from pyworkgraph.models import LogEvent, RetryPolicy, UnitStatus, WorkGraph, WorkUnit

logger = logging.getLogger(__name__)

__all__ = [
    "Escalation",
    "RecoveryController",
    "error_message",
]


@runtime_checkable
class Escalation(Protocol):
    """Hook told about units that failed for good."""

    async def escalate(self, graph: WorkGraph, unit: WorkUnit, error: WorkGraphError) -> None: ...


def error_message(error: BaseException) -> str:
    """Message stored on a failed unit: the root cause when wrapped."""
    cause = error.cause if isinstance(error, ExecutionFailed) else error
    return str(cause) or type(cause).__name__


class RecoveryController:
    """Applies retry, failure and rollback transitions to units.

    Usage:
        recovery = RecoveryController(registry, policy=RetryPolicy.fixed(500))
        retried = await recovery.handle_failure(graph, unit, error, log)
    """

    def __init__(
        self,
        registry: Registry,
        policy: RetryPolicy = RetryPolicy.STANDARD,
        clock: Clock | None = None,
        escalation: Escalation | None = None,
    ):
        self._registry = registry
        self._policy = policy
        self._clock = clock or SystemClock()
        self._escalation = escalation

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def handle_failure(
        self, graph: WorkGraph, unit: WorkUnit, error: BaseException, log: RunLog
    ) -> bool:
        """Handle a failed execution of ``unit``.

        Args:
            graph: Graph owning the unit
            unit: The unit whose execution failed
            error: What the execution raised (usually ExecutionFailed)
            log: The graph's run log

        Returns:
            True if a retry was scheduled, False if the unit is now failed
        """
        message = error_message(error)
        now = self._clock.now()
        unit.error = message
        unit.ended_at = now

        failure = error if isinstance(error, ExecutionFailed) else ExecutionFailed(unit.id, error)
        retryable = failure.is_retryable()
        if retryable and unit.attempt < unit.max_attempts:
            unit.attempt += 1
            delay_ms = self._policy.delay_for_attempt(unit.attempt)
            unit.status = UnitStatus.PENDING
            unit.progress = 0.0
            unit.next_attempt_at = now + timedelta(milliseconds=delay_ms) if delay_ms > 0 else None

            await log.append(
                unit.id,
                LogEvent.RETRIED,
                {"attempt": unit.attempt, "error": message, "delay_ms": delay_ms},
            )
            logger.info(
                f"Retrying unit {unit.id}: attempt={unit.attempt}/{unit.max_attempts}, "
                f"delay={delay_ms}ms, error={message}"
            )
            return True

        unit.status = UnitStatus.FAILED
        unit.next_attempt_at = None
        await log.append(
            unit.id,
            LogEvent.FAILED,
            {"error": message, "attempts": unit.attempt, "retryable": retryable},
        )

        if retryable:
            logger.error(f"Unit {unit.id} failed after {unit.attempt} retries: {message}")
            escalated: WorkGraphError = RetriesExhausted(unit.id, unit.attempt, message)
        else:
            logger.error(f"Unit {unit.id} failed with non-retryable error: {message}")
            escalated = (
                error if isinstance(error, ExecutionFailed) else ExecutionFailed(unit.id, error)
            )

        await self._escalate(graph, unit, escalated)
        return False

    async def _escalate(self, graph: WorkGraph, unit: WorkUnit, error: WorkGraphError) -> None:
        if self._escalation is None:
            return
        try:
            await self._escalation.escalate(graph, unit, error)
        except Exception as e:
            logger.error(f"Escalation hook failed for unit {unit.id}: {e}")

    async def rollback(
        self, graph: WorkGraph, unit_id: str, log: RunLog, cascade: bool = False
    ) -> list[str]:
        """Undo a completed unit with its kind's compensating action.

        Args:
            graph: Graph owning the unit
            unit_id: Unit to roll back
            log: The graph's run log
            cascade: Also roll back completed transitive dependents first,
                in reverse topological order

        Returns:
            Ids of the units rolled back, in the order they were undone

        Raises:
            KeyError: If the graph has no such unit
            InvalidTransition: If the unit is not completed
            ExecutionFailed: If a compensating action raised; units undone
                before it stay rolled back
        """
        unit = graph.unit(unit_id)
        if unit.status is not UnitStatus.COMPLETED:
            raise InvalidTransition(
                f"Cannot roll back unit '{unit_id}' in status {unit.status}, only completed units"
            )

        targets = [unit_id]
        if cascade:
            dependents = transitive_dependents(graph, unit_id)
            order = topological_order(graph)
            targets = [
                uid
                for uid in reversed(order)
                if uid in dependents and graph.unit(uid).status is UnitStatus.COMPLETED
            ] + targets

        undone = []
        for target_id in targets:
            await self._compensate(graph, graph.unit(target_id), log)
            undone.append(target_id)

        return undone

    async def _compensate(self, graph: WorkGraph, unit: WorkUnit, log: RunLog) -> None:
        entry = self._registry.get(unit.kind)
        compensate = entry.compensate if entry is not None else None

        if compensate is not None:
            try:
                await compensate(unit)
            except Exception as e:
                logger.error(f"Compensating action for unit {unit.id} failed: {e}")
                raise ExecutionFailed(unit.id, e) from e
        else:
            logger.debug(f"No compensating action for kind {unit.kind}, marking {unit.id} only")

        unit.status = UnitStatus.ROLLED_BACK
        unit.progress = 0.0
        unit.ended_at = self._clock.now()
        await log.append(unit.id, LogEvent.ROLLED_BACK, {"compensated": compensate is not None})
        logger.info(f"Rolled back unit {unit.id} in graph {graph.id}")
