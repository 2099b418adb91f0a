"""Execution scheduler: runs work graphs in dependency order.

The Engine validates and submits graphs, then drives each run through a
coordinator coroutine (one per running graph). The coordinator is the
only writer of graph-level state; unit tasks execute through the
registry and report progress for their own unit only.

Features:
- Bounded concurrency per graph
- Per-kind timeouts
- Retry with backoff, escalation and rollback via RecoveryController
- Conditional edges, operator skips and live unit submission
- Manual retry of failed units and approval-gated units
- Pause / resume / stop, and step-by-step mode (``auto_mode=False``)
- Auto-checkpoints every N completed units and on a clock-driven timer
- Resume after restore: completed units never run again

Design Patterns:
- Template Method: _GraphRun.run() defines the fixed loop skeleton
- Strategy: executors are interchangeable per kind
- Builder: with_clock(), with_concurrency_limit(), ... for configuration
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from pyworkgraph.core.clock import Clock, SystemClock
from pyworkgraph.core.config import EngineConfig
from pyworkgraph.core.errors import (
    CancelledError,
    ExecutionFailed,
    InvalidTransition,
    InvariantViolation,
    UnknownCondition,
)
from pyworkgraph.executor.checkpoint import CheckpointStore
from pyworkgraph.executor.outcome import Failed, Succeeded, UnitOutcome
from pyworkgraph.executor.progress import ProgressReporter, RunLog, overall_progress
from pyworkgraph.executor.recovery import Escalation, RecoveryController
from pyworkgraph.executor.registry import ExecutionContext, Registry
from pyworkgraph.executor.resolver import (
    compute_ready_set,
    compute_unreachable,
    dependencies_of,
    depths,
    topological_order,
    transitive_dependents,
    validate,
)
from pyworkgraph.models import (
    CheckpointKind,
    CheckpointRecord,
    GraphStatus,
    LogEvent,
    RetryPolicy,
    UnitStatus,
    WorkGraph,
    WorkUnit,
)
from pyworkgraph.storage.base import KeyValueStore
from pyworkgraph.storage.graphs import GraphStore

logger = logging.getLogger(__name__)

__all__ = ["Engine", "RunHandle"]


class Engine:
    """Submits and runs work graphs.

    All dependencies are passed explicitly, no globals.

    Usage:
        storage = SqliteKeyValueStore("workgraph.db")
        await storage.connect()

        registry = Registry()
        registry.register("shell", run_shell)

        engine = Engine(storage, registry) \\
            .with_concurrency_limit(8) \\
            .with_retry_policy(RetryPolicy.fixed(500))

        await engine.submit(graph)
        graph = await engine.run(graph)

        # Or keep control of the run
        handle = await engine.start(graph)
        handle.pause()
        handle.resume()
        await handle.wait()
    """

    def __init__(
        self,
        storage: KeyValueStore,
        registry: Registry,
        config: EngineConfig | None = None,
    ):
        """Initialize the engine.

        Args:
            storage: Key-value store for graphs, logs and checkpoints
            registry: Executors, compensators and conditions by name
            config: Tunables, defaults to EngineConfig()
        """
        self._storage = storage
        self._registry = registry
        self._config = config or EngineConfig()
        self._clock: Clock = SystemClock()
        self._escalation: Escalation | None = None

        self._graphs = GraphStore(storage, self._config.project_id)
        self._checkpoints = self._make_checkpoint_store()
        self._logs: dict[str, RunLog] = {}
        self._runs: dict[str, _GraphRun] = {}

    def _make_checkpoint_store(self) -> CheckpointStore:
        return CheckpointStore(
            self._storage,
            clock=self._clock,
            project_id=self._config.project_id,
            max_checkpoints=self._config.max_checkpoints,
            max_age_seconds=self._config.checkpoint_max_age_seconds,
        )

    # Builder methods

    def with_clock(self, clock: Clock) -> Engine:
        """Use an injected clock for timestamps, backoff and timers (builder pattern)."""
        self._clock = clock
        self._checkpoints = self._make_checkpoint_store()
        return self

    def with_config(self, config: EngineConfig) -> Engine:
        """Replace the whole configuration (builder pattern)."""
        self._config = config
        self._graphs = GraphStore(self._storage, config.project_id)
        self._checkpoints = self._make_checkpoint_store()
        return self

    def with_concurrency_limit(self, limit: int) -> Engine:
        """Maximum units running at once per graph (builder pattern)."""
        return self.with_config(self._config.with_overrides(concurrency_limit=limit))

    def with_retry_policy(self, policy: RetryPolicy) -> Engine:
        """Backoff applied between retries (builder pattern)."""
        return self.with_config(self._config.with_overrides(retry_policy=policy))

    def with_default_timeout(self, seconds: float | None) -> Engine:
        """Timeout for kinds registered without one (builder pattern)."""
        return self.with_config(self._config.with_overrides(default_timeout_seconds=seconds))

    def with_checkpoint_interval(self, seconds: float | None) -> Engine:
        """Clock-driven auto-checkpoint interval while running (builder pattern)."""
        return self.with_config(self._config.with_overrides(checkpoint_interval_seconds=seconds))

    def with_escalation(self, escalation: Escalation) -> Engine:
        """Hook told about units that failed for good (builder pattern)."""
        self._escalation = escalation
        return self

    # Accessors

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def storage(self) -> KeyValueStore:
        return self._storage

    @property
    def graphs(self) -> GraphStore:
        return self._graphs

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    @property
    def recovery(self) -> RecoveryController:
        return RecoveryController(
            self._registry,
            policy=self._config.retry_policy,
            clock=self._clock,
            escalation=self._escalation,
        )

    def is_running(self, graph_id: str) -> bool:
        run = self._runs.get(graph_id)
        return run is not None and not run.finished

    async def log_for(self, graph_id: str) -> RunLog:
        """The run log of a graph, loaded from storage on first use.

        The loaded log is shared with a run of the graph and dropped when that run ends.
        """
        log = self._logs.get(graph_id)
        if log is None:
            log = RunLog(
                self._storage, graph_id, clock=self._clock, project_id=self._config.project_id
            )
            self._logs[graph_id] = log
        await log.load()
        return log

    # Graph operations

    async def submit(self, graph: WorkGraph) -> WorkGraph:
        """Validate a draft graph and queue its units.

        Block dependencies are expanded into unit dependencies, every idle
        unit becomes pending, and the graph becomes ready and is persisted.

        Raises:
            ConfigurationError: (CycleDetected, DanglingDependency,
                UnknownExecutor, UnknownCondition) nothing is queued
            InvalidTransition: If the graph is not a draft
        """
        if graph.status is not GraphStatus.DRAFT:
            raise InvalidTransition(
                f"Graph {graph.id} is {graph.status}, only drafts can be submitted"
            )

        validate(graph)
        declared = {unit.id: set(unit.dependencies) for unit in graph.units}
        try:
            _expand_blocks(graph)
            validate(graph)
            self._check_registered(graph.units, graph)
        except Exception:
            for unit in graph.units:
                unit.dependencies = declared[unit.id]
            raise

        log = await self.log_for(graph.id)
        for unit in graph.units:
            if unit.status is UnitStatus.IDLE:
                unit.status = UnitStatus.PENDING
                await log.append(unit.id, LogEvent.QUEUED, {"kind": unit.kind})

        graph.status = GraphStatus.READY
        graph.overall_progress = overall_progress(graph.units)
        await self._graphs.save(graph)

        logger.info(f"Submitted graph {graph.id} with {len(graph.units)} units")
        return graph

    def _check_registered(self, units: Iterable[WorkUnit], graph: WorkGraph) -> None:
        for unit in units:
            self._registry.require(unit.kind)
        for edge in graph.edges:
            if edge.is_conditional and not self._registry.has_condition(edge.condition):
                raise UnknownCondition(edge.condition)

    async def add_unit(self, graph: WorkGraph, unit: WorkUnit) -> WorkUnit:
        """Add a unit to a submitted graph, even while it runs.

        A finished graph goes back to ready so a new run picks the unit up.

        Raises:
            ConfigurationError: On a duplicate id, a missing dependency,
                a cycle or an unregistered kind; the graph is unchanged
        """
        self._registry.require(unit.kind)
        graph.add_unit(unit)
        try:
            validate(graph)
        except Exception:
            graph.remove_unit(unit.id)
            raise

        if graph.status is GraphStatus.DRAFT:
            return unit

        log = await self.log_for(graph.id)
        if unit.status is UnitStatus.IDLE:
            unit.status = UnitStatus.PENDING
            await log.append(unit.id, LogEvent.QUEUED, {"kind": unit.kind, "live": True})

        if graph.status.is_terminal:
            graph.status = GraphStatus.READY
            graph.ended_at = None
        graph.overall_progress = overall_progress(graph.units)

        run = self._runs.get(graph.id)
        if run is not None and not run.finished:
            run.notify()
        else:
            await self._graphs.save(graph)

        logger.info(f"Added unit {unit.id} ({unit.kind}) to graph {graph.id}")
        return unit

    async def skip(self, graph: WorkGraph, unit_id: str, reason: str = "operator") -> None:
        """Skip a unit that has not run; its dependents are skipped too.

        Raises:
            KeyError: If the graph has no such unit
            InvalidTransition: If the unit is running or already finished
        """
        unit = graph.unit(unit_id)
        if unit.status not in (UnitStatus.IDLE, UnitStatus.PENDING, UnitStatus.BLOCKED):
            raise InvalidTransition(f"Cannot skip unit '{unit_id}' in status {unit.status}")

        log = await self.log_for(graph.id)
        _mark_skipped(unit, self._clock.now())
        await log.append(unit.id, LogEvent.SKIPPED, {"reason": reason})
        logger.info(f"Skipped unit {unit_id} in graph {graph.id}")

        await self._after_operator_change(graph, log)

    async def retry(self, graph: WorkGraph, unit_id: str) -> list[str]:
        """Queue a failed or blocked unit for another execution.

        Units blocked behind it are queued again too. Automatic retries
        the unit has left are not touched, so a unit that already used them
        gets exactly one more execution. A finished graph goes back to
        ready so the next start() picks the units up.

        Returns:
            Ids of the units queued again

        Raises:
            KeyError: If the graph has no such unit
            InvalidTransition: If the unit is not failed or blocked
        """
        unit = graph.unit(unit_id)
        if unit.status not in (UnitStatus.FAILED, UnitStatus.BLOCKED):
            raise InvalidTransition(
                f"Cannot retry unit '{unit_id}' in status {unit.status}, only failed or blocked"
            )

        downstream = transitive_dependents(graph, unit_id)
        targets = [unit_id] + [
            uid
            for uid in topological_order(graph)
            if uid in downstream and graph.unit(uid).status is UnitStatus.BLOCKED
        ]

        log = await self.log_for(graph.id)
        for target_id in targets:
            target = graph.unit(target_id)
            target.status = UnitStatus.PENDING
            target.error = None
            target.progress = 0.0
            target.next_attempt_at = None
            target.ended_at = None
            await log.append(target_id, LogEvent.QUEUED, {"reason": "manual retry"})

        if graph.status.is_terminal:
            graph.status = GraphStatus.READY
            graph.ended_at = None
        logger.info(f"Queued {targets} of graph {graph.id} for a manual retry")

        await self._after_operator_change(graph, log)
        return targets

    async def approve(self, graph: WorkGraph, unit_id: str, approved_by: str = "operator") -> None:
        """Approve a unit that requires it so the scheduler may dispatch it.

        Raises:
            KeyError: If the graph has no such unit
            InvalidTransition: If the unit needs no approval, is already
                approved, or has already left the waiting states
        """
        unit = graph.unit(unit_id)
        if not unit.awaiting_approval:
            raise InvalidTransition(f"Unit '{unit_id}' is not waiting for an approval")
        if unit.status not in (UnitStatus.IDLE, UnitStatus.PENDING):
            raise InvalidTransition(f"Cannot approve unit '{unit_id}' in status {unit.status}")

        unit.approved_by = approved_by
        unit.approved_at = self._clock.now()
        log = await self.log_for(graph.id)
        await log.append(unit_id, LogEvent.APPROVED, {"by": approved_by})
        logger.info(f"Unit {unit_id} of graph {graph.id} approved by {approved_by}")

        await self._after_operator_change(graph, log)

    async def rollback(self, graph: WorkGraph, unit_id: str, cascade: bool = False) -> list[str]:
        """Roll back a completed unit after taking a pre-operation checkpoint.

        Dependents still waiting become blocked. With ``cascade=True``
        completed dependents are rolled back first.

        Raises:
            InvalidTransition: If the unit is not completed
            ExecutionFailed: If a compensating action raised
        """
        unit = graph.unit(unit_id)
        if unit.status is not UnitStatus.COMPLETED:
            raise InvalidTransition(
                f"Cannot roll back unit '{unit_id}' in status {unit.status}, only completed units"
            )

        await self.checkpoint(
            graph,
            kind=CheckpointKind.PRE_OPERATION,
            name=f"before rollback of {unit_id}",
            tags=("rollback",),
        )
        log = await self.log_for(graph.id)
        try:
            undone = await self.recovery.rollback(graph, unit_id, log, cascade=cascade)
        finally:
            await self._after_operator_change(graph, log)
        return undone

    async def _after_operator_change(self, graph: WorkGraph, log: RunLog) -> None:
        run = self._runs.get(graph.id)
        if run is not None and not run.finished:
            run.notify()
            return
        await propagate_unreachable(graph, log, self._clock)
        graph.overall_progress = overall_progress(graph.units)
        await self._graphs.save(graph)

    async def checkpoint(
        self,
        graph: WorkGraph,
        kind: CheckpointKind = CheckpointKind.MANUAL,
        name: str = "",
        description: str = "",
        tags: Iterable[str] = (),
    ) -> CheckpointRecord:
        """Snapshot a graph together with its current log cursor."""
        log = await self.log_for(graph.id)
        record = await self._checkpoints.checkpoint(
            graph,
            kind=kind,
            name=name,
            description=description,
            tags=tags,
            log_cursor=log.cursor,
        )
        await self._graphs.save(graph)
        return record

    async def restore(self, checkpoint_id: str) -> WorkGraph:
        """Restore a graph from a checkpoint and persist it as current.

        Raises:
            KeyError: If no checkpoint has that id
            IntegrityError: If the checkpoint is corrupt
            InvalidTransition: If the graph is running
        """
        graph = await self._checkpoints.restore(checkpoint_id)
        if self.is_running(graph.id):
            raise InvalidTransition(f"Cannot restore graph {graph.id} while it runs")
        await self._graphs.save(graph)
        return graph

    async def load(self, graph_id: str) -> WorkGraph | None:
        """Load the last persisted state of a graph."""
        return await self._graphs.load(graph_id)

    # Running

    async def start(self, graph: WorkGraph, concurrency_limit: int | None = None) -> RunHandle:
        """Start running a graph in a background task.

        Submits draft graphs first, so configuration errors raise here
        before any unit runs.

        Returns:
            RunHandle for pause/resume/stop control

        Raises:
            ConfigurationError: If a draft graph fails validation
            InvalidTransition: If the graph is already running
        """
        if self.is_running(graph.id):
            raise InvalidTransition(f"Graph {graph.id} is already running")
        if graph.status is GraphStatus.DRAFT:
            await self.submit(graph)

        limit = concurrency_limit
        if limit is None:
            limit = self._config.concurrency_limit
        if limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {limit}")

        log = await self.log_for(graph.id)
        run = _GraphRun(self, graph, log, limit)
        self._runs[graph.id] = run
        task = asyncio.create_task(run.run(), name=f"workgraph:{graph.id}")
        return RunHandle(run, task)

    async def run(self, graph: WorkGraph, concurrency_limit: int | None = None) -> WorkGraph:
        """Run a graph until every unit is terminal and return it."""
        handle = await self.start(graph, concurrency_limit)
        return await handle.wait()

    def _forget(self, run: _GraphRun) -> None:
        if self._runs.get(run.graph.id) is run:
            del self._runs[run.graph.id]
            self._logs.pop(run.graph.id, None)


class RunHandle:
    """Handle for controlling a running graph.

    Composition - handle HAS-A run, not IS-A run.

    Usage:
        handle = await engine.start(graph)
        handle.pause()
        handle.resume()
        graph = await handle.wait()
    """

    def __init__(self, run: _GraphRun, task: asyncio.Task):
        self._run = run
        self._task = task

    @property
    def graph(self) -> WorkGraph:
        return self._run.graph

    @property
    def status(self) -> GraphStatus:
        return self._run.graph.status

    def is_running(self) -> bool:
        """Return True if the coordinator task is still running."""
        return not self._task.done()

    def pause(self) -> None:
        """Stop dispatching new units; in-flight units finish."""
        self._run.pause()

    def resume(self) -> None:
        """Continue dispatching after pause() or a step-mode pause.

        Raises:
            CancelledError: If the run was stopped
        """
        self._run.resume()

    async def stop(self) -> WorkGraph:
        """Cancel in-flight units and end the run as failed.

        Idempotent: stopping a finished run just returns its graph.
        """
        self._run.stop()
        return await self.wait()

    async def wait(self) -> WorkGraph:
        """Wait for the run to finish.

        Raises:
            InvariantViolation: If the run could not make progress
            StorageError: If persisting state failed
        """
        return await asyncio.shield(self._task)

    def abort(self) -> None:
        """Cancel the coordinator immediately without the stop bookkeeping.

        Prefer stop() for normal termination.
        """
        self._task.cancel()


class _GraphRun:
    """Coordinator for one run of one graph. Owns all graph-level writes."""

    def __init__(self, engine: Engine, graph: WorkGraph, log: RunLog, limit: int):
        self.engine = engine
        self.graph = graph
        self.log = log
        self.limit = limit
        self.finished = False

        self._clock = engine.clock
        self._recovery = engine.recovery
        self._inflight: dict[asyncio.Task, str] = {}
        self._wakeup = asyncio.Event()
        self._paused = False
        self._stop_requested = False
        self._depths: dict[str, int] = {}
        self._depths_key: tuple[int, int] | None = None

    # Control (called from RunHandle / Engine)

    def notify(self) -> None:
        self._wakeup.set()

    def pause(self) -> None:
        if self.finished or self._stop_requested:
            return
        self._paused = True
        self.notify()
        logger.info(f"Pause requested for graph {self.graph.id}")

    def resume(self) -> None:
        if self._stop_requested:
            raise CancelledError(f"Run of graph {self.graph.id} was stopped")
        if self.finished:
            return
        self._paused = False
        self.notify()
        logger.info(f"Resume requested for graph {self.graph.id}")

    def stop(self) -> None:
        if self.finished or self._stop_requested:
            return
        self._stop_requested = True
        self.notify()
        logger.info(f"Stop requested for graph {self.graph.id}")

    # Main loop

    async def run(self) -> WorkGraph:
        """Main coordinator loop using asyncio.wait with FIRST_COMPLETED.

        Each iteration:
        1. Settle: mark units that can never run as blocked/skipped
        2. Dispatch ready units up to the concurrency limit
        3. Wait for a unit to finish, a control signal, a retry backoff
           or the checkpoint timer, whichever comes first
        4. Apply the outcomes
        """
        graph = self.graph
        logger.info(f"Run of graph {graph.id} started (concurrency={self.limit})")

        try:
            await self._enter()

            while True:
                if self._stop_requested:
                    await self._cancel_inflight()
                    break

                await self._settle()

                if not self._paused:
                    await self._dispatch()

                self._sync_status()
                await self.engine.graphs.save(graph)

                if not self._inflight and self._all_terminal():
                    break

                if not self._inflight and not self._paused:
                    backoff = self._next_backoff()
                    if backoff is None and not self._has_ready() and not self._gated():
                        raise InvariantViolation(
                            f"Graph {graph.id} has waiting units that can never be dispatched"
                        )

                await self._wait_and_apply()

            await self._finish()
            return graph

        except InvariantViolation:
            await self._cancel_inflight()
            await self._finish(force_failed=True)
            raise
        except asyncio.CancelledError:
            await self._cancel_inflight()
            raise
        finally:
            for task in self._inflight:
                task.cancel()
            self.finished = True
            self.engine._forget(self)
            logger.info(f"Run of graph {graph.id} ended with status {graph.status}")

    async def _enter(self) -> None:
        graph = self.graph
        now = self._clock.now()

        for unit in graph.units:
            if unit.status is UnitStatus.RUNNING:
                # Interrupted by a crash or a restore mid-run
                unit.status = UnitStatus.PENDING
                unit.progress = 0.0
                await self.log.append(unit.id, LogEvent.QUEUED, {"reason": "interrupted"})
            elif unit.status is UnitStatus.IDLE:
                unit.status = UnitStatus.PENDING
                await self.log.append(unit.id, LogEvent.QUEUED, {"kind": unit.kind})

        graph.status = GraphStatus.RUNNING
        graph.ended_at = None
        if graph.started_at is None:
            graph.started_at = now
        if graph.last_checkpoint_at is None:
            graph.last_checkpoint_at = now

        for unit in graph.units:
            if unit.status is UnitStatus.COMPLETED:
                await self._evaluate_conditions(unit)

    def _unit_depths(self) -> dict[str, int]:
        key = (len(self.graph.units), len(self.graph.edges))
        if key != self._depths_key:
            self._depths = depths(self.graph)
            self._depths_key = key
        return self._depths

    async def _settle(self) -> None:
        await propagate_unreachable(self.graph, self.log, self._clock)
        self.graph.overall_progress = overall_progress(self.graph.units)

    async def _dispatch(self) -> None:
        free = self.limit - len(self._inflight)
        if free <= 0:
            return

        now = self._clock.now()
        ready = compute_ready_set(self.graph, now, self._unit_depths())
        for unit in ready[:free]:
            unit.status = UnitStatus.RUNNING
            unit.started_at = now
            unit.ended_at = None
            unit.next_attempt_at = None
            unit.error = None
            await self.log.append(unit.id, LogEvent.STARTED, {"attempt": unit.attempt})

            task = asyncio.create_task(self._execute(unit), name=f"unit:{unit.id}")
            self._inflight[task] = unit.id
            logger.debug(f"Dispatched unit {unit.id} (attempt {unit.attempt})")

    async def _execute(self, unit: WorkUnit) -> UnitOutcome:
        """Run one unit through its executor. Never raises except on cancellation."""
        try:
            entry = self.engine.registry.require(unit.kind)
            inputs = {}
            for dep in dependencies_of(self.graph, unit.id):
                upstream = self.graph.get_unit(dep)
                if upstream is not None:
                    inputs[dep] = upstream.output
            context = ExecutionContext(
                graph_id=self.graph.id,
                attempt=unit.attempt,
                inputs=inputs,
                reporter=ProgressReporter(unit, self._on_progress),
                clock=self._clock,
            )
            timeout = entry.timeout or self.engine.config.default_timeout_seconds

            if timeout:
                try:
                    output = await asyncio.wait_for(entry.execute(unit, context), timeout)
                except TimeoutError:
                    cause = TimeoutError(f"timed out after {timeout}s")
                    return Failed(unit.id, ExecutionFailed(unit.id, cause), timed_out=True)
            else:
                output = await entry.execute(unit, context)

        except Exception as e:
            return Failed(unit.id, ExecutionFailed(unit.id, e))

        return Succeeded(unit.id, output)

    async def _on_progress(self, unit: WorkUnit, value: float) -> None:
        await self.log.append(unit.id, LogEvent.PROGRESSED, {"progress": value})
        self.notify()

    async def _wait_and_apply(self) -> None:
        waiters: dict[str, asyncio.Task] = {}
        waiters["control"] = asyncio.create_task(self._wakeup.wait())

        if not self._paused:
            backoff = self._next_backoff()
            if backoff is not None:
                waiters["backoff"] = asyncio.create_task(self._clock.sleep(backoff))

        checkpoint_due = self._checkpoint_due_in()
        if checkpoint_due is not None:
            waiters["checkpoint"] = asyncio.create_task(self._clock.sleep(checkpoint_due))

        try:
            done, _ = await asyncio.wait(
                [*self._inflight, *waiters.values()],
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiters.values(), return_exceptions=True)

        if self._wakeup.is_set():
            self._wakeup.clear()

        for task in [t for t in self._inflight if t in done]:
            unit_id = self._inflight.pop(task)
            if task.cancelled():
                # The executor cancelled itself; count it as a failed execution
                error = ExecutionFailed(unit_id, asyncio.CancelledError("cancelled"))
                await self._apply(unit_id, Failed(unit_id, error))
            else:
                await self._apply(unit_id, task.result())

        if "checkpoint" in waiters and waiters["checkpoint"] in done:
            await self._auto_checkpoint(CheckpointKind.AUTO, "timer")

    async def _apply(self, unit_id: str, outcome: UnitOutcome) -> None:
        unit = self.graph.unit(unit_id)
        if unit.status is not UnitStatus.RUNNING:
            return

        if isinstance(outcome, Succeeded):
            unit.status = UnitStatus.COMPLETED
            unit.progress = 100.0
            unit.output = outcome.output
            unit.error = None
            unit.ended_at = self._clock.now()
            await self.log.append(unit.id, LogEvent.COMPLETED, {"attempt": unit.attempt})
            logger.info(f"Unit {unit.id} completed in graph {self.graph.id}")

            await self._evaluate_conditions(unit)

            self.graph.completed_since_checkpoint += 1
            interval = self.graph.checkpoint_interval_units
            if interval and self.graph.completed_since_checkpoint >= interval:
                await self._auto_checkpoint(CheckpointKind.AUTO, f"every {interval} units")

            if not self.graph.auto_mode and not self._all_terminal():
                self._paused = True
                logger.info(f"Step mode: graph {self.graph.id} paused after unit {unit.id}")

        elif isinstance(outcome, Failed):
            if outcome.timed_out:
                logger.warning(f"Unit {unit.id} timed out")
            await self._recovery.handle_failure(self.graph, unit, outcome.error, self.log)

        self.graph.overall_progress = overall_progress(self.graph.units)

    async def _evaluate_conditions(self, source: WorkUnit) -> None:
        """Skip or block the targets of a completed unit's conditional edges."""
        for edge in self.graph.outgoing(source.id):
            if not edge.is_conditional:
                continue
            target = self.graph.get_unit(edge.to_id)
            if target is None or target.status not in (UnitStatus.IDLE, UnitStatus.PENDING):
                continue

            try:
                allowed = await self.engine.registry.evaluate(edge.condition, source.output)
            except Exception as e:
                target.status = UnitStatus.BLOCKED
                target.error = f"condition {edge.condition!r} raised: {e}"
                target.ended_at = self._clock.now()
                await self.log.append(
                    target.id,
                    LogEvent.BLOCKED,
                    {"condition": edge.condition, "source": source.id, "error": str(e)},
                )
                logger.warning(f"Condition {edge.condition} on {source.id}->{target.id}: {e}")
                continue

            if not allowed:
                _mark_skipped(target, self._clock.now())
                await self.log.append(
                    target.id, LogEvent.SKIPPED, {"condition": edge.condition, "source": source.id}
                )
                logger.info(f"Unit {target.id} skipped: condition {edge.condition} is false")

    async def _auto_checkpoint(self, kind: CheckpointKind, reason: str) -> None:
        await self.engine.checkpoint(self.graph, kind=kind, description=reason, tags=("auto",))

    async def _cancel_inflight(self) -> None:
        if not self._inflight:
            return

        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        now = self._clock.now()
        for task in tasks:
            unit = self.graph.unit(self._inflight.pop(task))
            if unit.status is UnitStatus.RUNNING:
                unit.status = UnitStatus.FAILED
                unit.error = "cancelled"
                unit.ended_at = now
                await self.log.append(unit.id, LogEvent.FAILED, {"error": "cancelled"})
        logger.warning(f"Cancelled {len(tasks)} in-flight units of graph {self.graph.id}")

    async def _finish(self, force_failed: bool = False) -> None:
        graph = self.graph
        await propagate_unreachable(graph, self.log, self._clock)
        graph.overall_progress = overall_progress(graph.units)
        graph.ended_at = self._clock.now()

        bad = [u.id for u in graph.units if u.status in (UnitStatus.FAILED, UnitStatus.BLOCKED)]
        if force_failed or self._stop_requested:
            graph.status = GraphStatus.FAILED
        elif bad and not graph.allow_partial_success:
            graph.status = GraphStatus.FAILED
        else:
            graph.status = GraphStatus.COMPLETED

        if graph.status is GraphStatus.FAILED:
            await self.engine.checkpoint(
                graph,
                kind=CheckpointKind.RECOVERY_POINT,
                description="graph ended failed",
                tags=("recovery",),
            )
        else:
            await self.engine.graphs.save(graph)

        if bad:
            logger.warning(f"Graph {graph.id} finished with {len(bad)} failed/blocked units: {bad}")
        logger.info(f"Graph {graph.id} {graph.status}: progress={graph.overall_progress:.1f}")

    # Helpers

    def _sync_status(self) -> None:
        if self._paused:
            self.graph.status = GraphStatus.PAUSED
        else:
            self.graph.status = GraphStatus.RUNNING

    def _all_terminal(self) -> bool:
        return all(u.status.is_terminal for u in self.graph.units)

    def _has_ready(self) -> bool:
        return bool(compute_ready_set(self.graph, self._clock.now(), self._unit_depths()))

    def _gated(self) -> bool:
        """Whether some pending unit is held back only by a missing approval."""
        return any(
            u.status is UnitStatus.PENDING and u.awaiting_approval for u in self.graph.units
        )

    def _next_backoff(self) -> float | None:
        """Seconds until the earliest retry backoff expires, None if none waits."""
        now = self._clock.now()
        waiting = [
            u.next_attempt_at
            for u in self.graph.units
            if u.status is UnitStatus.PENDING and u.next_attempt_at is not None
        ]
        if not waiting:
            return None
        return max(0.0, (min(waiting) - now).total_seconds())

    def _checkpoint_due_in(self) -> float | None:
        interval = self.engine.config.checkpoint_interval_seconds
        if interval is None:
            return None
        last: datetime = self.graph.last_checkpoint_at or self._clock.now()
        elapsed = (self._clock.now() - last).total_seconds()
        return max(0.0, interval - elapsed)


def _expand_blocks(graph: WorkGraph) -> None:
    """Make every unit of a block depend on every unit of the blocks it depends on."""
    for block in graph.blocks:
        upstream: set[str] = set()
        for dep_id in block.dependencies:
            dep_block = graph.get_block(dep_id)
            if dep_block is not None:
                upstream.update(dep_block.unit_ids)
        for unit_id in block.unit_ids:
            unit = graph.unit(unit_id)
            unit.dependencies |= upstream - {unit_id}


def _mark_skipped(unit: WorkUnit, now: datetime) -> None:
    unit.status = UnitStatus.SKIPPED
    unit.progress = 100.0
    unit.next_attempt_at = None
    unit.ended_at = now


async def propagate_unreachable(graph: WorkGraph, log: RunLog, clock: Clock) -> None:
    """Mark waiting units whose dependencies can never be met as blocked or skipped."""
    blocked, skipped = compute_unreachable(graph)
    now = clock.now()

    for unit_id in blocked:
        unit = graph.unit(unit_id)
        unit.status = UnitStatus.BLOCKED
        unit.next_attempt_at = None
        unit.ended_at = now
        unit.error = "dependency cannot be satisfied"
        await log.append(unit_id, LogEvent.BLOCKED, {"reason": "dependency cannot be satisfied"})
        logger.info(f"Unit {unit_id} blocked in graph {graph.id}")

    for unit_id in skipped:
        _mark_skipped(graph.unit(unit_id), now)
        await log.append(unit_id, LogEvent.SKIPPED, {"reason": "upstream skipped"})
        logger.info(f"Unit {unit_id} skipped in graph {graph.id}: upstream skipped")
