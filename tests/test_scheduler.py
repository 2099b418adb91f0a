"""
Tests for the execution scheduler.

End-to-end runs through Engine with deterministic executors (see
conftest.build_registry), an in-memory store and a virtual clock.
"""

import asyncio

import pytest
from conftest import make_graph

from pyworkgraph.core import (
    CancelledError,
    CycleDetected,
    DanglingDependency,
    InvalidTransition,
    ManualClock,
    UnknownCondition,
    UnknownExecutor,
)
from pyworkgraph.executor import Engine, summarize
from pyworkgraph.models import (
    CheckpointKind,
    EdgeKind,
    GraphStatus,
    LogEvent,
    Priority,
    RetryPolicy,
    UnitBlock,
    UnitStatus,
    WorkUnit,
)


def ok(uid: str, *deps: str, **params) -> WorkUnit:
    return WorkUnit(id=uid, kind="ok", dependencies=set(deps), params=params)


async def until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    for _ in range(int(timeout / 0.005)):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached in time")


# ==============================================================================
# Happy path
# ==============================================================================


@pytest.mark.asyncio
async def test_sequential_chain_completes_in_order(engine):
    """A -> B -> C all succeed: graph completed, 100%, completions logged in order."""
    graph = make_graph("chain", ok("A"), ok("B", "A"), ok("C", "B"))

    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert graph.overall_progress == 100.0
    log = await engine.log_for("chain")
    completed = log.entries(event=LogEvent.COMPLETED)
    assert [e.unit_id for e in completed] == ["A", "B", "C"]
    assert [e.sequence for e in log.entries()] == list(range(1, len(log) + 1))


@pytest.mark.asyncio
async def test_empty_graph_completes_with_zero_progress(engine):
    graph = await engine.run(make_graph("empty"))

    assert graph.status is GraphStatus.COMPLETED
    assert graph.overall_progress == 0.0


@pytest.mark.asyncio
async def test_dependencies_outputs_become_inputs(engine, registry):
    seen = {}

    @registry.executor("echo")
    async def echo(unit, context):
        seen[unit.id] = dict(context.inputs)
        return unit.id.upper()

    graph = make_graph(
        "g",
        WorkUnit(id="a", kind="echo"),
        WorkUnit(id="b", kind="echo"),
        WorkUnit(id="c", kind="echo", dependencies={"a"}),
    )
    graph.connect("b", "c", EdgeKind.PARALLEL)

    graph = await engine.run(graph)

    assert seen["c"] == {"a": "A", "b": "B"}
    assert graph.unit("c").output == "C"


@pytest.mark.asyncio
async def test_progress_reports_are_logged(engine, registry):
    @registry.executor("steps")
    async def steps(unit, context):
        await context.report_progress(25)
        await context.report_progress(75)
        return "done"

    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="steps")))

    log = await engine.log_for("g")
    progressed = [e.data["progress"] for e in log.entries(event=LogEvent.PROGRESSED)]
    assert progressed == [25.0, 75.0]
    assert graph.unit("a").progress == 100.0


@pytest.mark.asyncio
async def test_graph_progress_follows_unit_reports(engine, registry):
    release = asyncio.Event()

    @registry.executor("halfway")
    async def halfway(unit, context):
        await context.report_progress(40)
        await release.wait()
        return "done"

    graph = make_graph("g", WorkUnit(id="a", kind="halfway"))
    handle = await engine.start(graph)

    await until(lambda: graph.overall_progress == 40.0)
    release.set()
    graph = await handle.wait()

    assert graph.overall_progress == 100.0


@pytest.mark.asyncio
async def test_block_dependencies_expand_to_units(engine, recorder):
    graph = make_graph("g", ok("b1"), ok("a1"), ok("a2"))
    graph.blocks = [
        UnitBlock(id="build", name="Build", unit_ids=["a1", "a2"]),
        UnitBlock(id="ship", name="Ship", unit_ids=["b1"], dependencies=["build"]),
    ]

    graph = await engine.run(graph)

    assert graph.unit("b1").dependencies == {"a1", "a2"}
    assert recorder.started.index("b1") > recorder.started.index("a1")
    assert recorder.started.index("b1") > recorder.started.index("a2")


@pytest.mark.asyncio
async def test_priority_breaks_ties(engine, recorder):
    graph = make_graph(
        "g",
        WorkUnit(id="low", kind="ok", priority=Priority.LOW),
        WorkUnit(id="crit", kind="ok", priority=Priority.CRITICAL),
    )

    await engine.run(graph, concurrency_limit=1)

    assert recorder.started == ["crit", "low"]


# ==============================================================================
# Submission
# ==============================================================================


@pytest.mark.asyncio
async def test_cycle_rejected_before_anything_runs(engine, recorder):
    graph = make_graph("g", ok("a", "b"), ok("b", "a"))

    with pytest.raises(CycleDetected):
        await engine.run(graph)

    assert recorder.started == []
    assert graph.status is GraphStatus.DRAFT
    assert await engine.load("g") is None


@pytest.mark.asyncio
async def test_unknown_kind_and_condition_rejected(engine):
    with pytest.raises(UnknownExecutor):
        await engine.submit(make_graph("g1", WorkUnit(id="a", kind="nope")))

    graph = make_graph("g2", ok("a"), ok("b"))
    graph.connect("a", "b", EdgeKind.CONDITIONAL, condition="unregistered")
    with pytest.raises(UnknownCondition):
        await engine.submit(graph)


@pytest.mark.asyncio
async def test_submit_queues_units_once(engine):
    graph = await engine.submit(make_graph("g", ok("a")))

    assert graph.status is GraphStatus.READY
    assert graph.unit("a").status is UnitStatus.PENDING
    with pytest.raises(InvalidTransition):
        await engine.submit(graph)

    stored = await engine.load("g")
    assert stored is not None and stored.status is GraphStatus.READY


@pytest.mark.asyncio
async def test_failed_submit_leaves_declared_dependencies(engine):
    """Block b1 {x} after b2 {y} while y needs x: rejected, then fixed and accepted."""
    graph = make_graph("g", ok("x"), ok("y", "x"))
    graph.blocks = [
        UnitBlock(id="b1", name="B1", unit_ids=["x"], dependencies=["b2"]),
        UnitBlock(id="b2", name="B2", unit_ids=["y"]),
    ]

    with pytest.raises(CycleDetected):
        await engine.submit(graph)

    assert graph.unit("x").dependencies == set()
    assert graph.status is GraphStatus.DRAFT

    graph.get_block("b1").dependencies = []
    graph = await engine.submit(graph)

    assert graph.status is GraphStatus.READY
    assert graph.unit("x").dependencies == set()
    assert graph.unit("y").dependencies == {"x"}


# ==============================================================================
# Failure, retry and timeouts
# ==============================================================================


@pytest.mark.asyncio
async def test_retries_exhausted_fails_graph(engine, recorder):
    """B always fails with max_attempts=2: two retried entries, then one failure."""
    flaky = WorkUnit(id="B", kind="fail", dependencies={"A"}, max_attempts=2)
    graph = make_graph("g", ok("A"), flaky)

    graph = await engine.run(graph)

    assert graph.unit("B").status is UnitStatus.FAILED
    assert graph.status is GraphStatus.FAILED
    assert recorder.calls["B"] == 3

    log = await engine.log_for("g")
    outcomes = (LogEvent.RETRIED, LogEvent.FAILED)
    events = [e.event for e in log.entries(unit_id="B") if e.event in outcomes]
    assert events == [LogEvent.RETRIED, LogEvent.RETRIED, LogEvent.FAILED]

    recovery_point = await engine.checkpoints.latest("g")
    assert recovery_point is not None
    assert recovery_point.kind is CheckpointKind.RECOVERY_POINT


@pytest.mark.asyncio
async def test_retry_then_success(engine, recorder):
    graph = make_graph("g", WorkUnit(id="a", kind="fail", max_attempts=2, params={"failures": 1}))

    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert graph.unit("a").attempt == 1
    assert graph.unit("a").output == "recovered"
    assert recorder.calls["a"] == 2


@pytest.mark.asyncio
async def test_backoff_waits_on_the_clock(in_memory_storage, registry):
    clock = ManualClock()
    engine = (
        Engine(in_memory_storage, registry)
        .with_clock(clock)
        .with_retry_policy(RetryPolicy.STANDARD)
    )
    start = clock.now()

    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="fail", max_attempts=2)))

    log = await engine.log_for("g")
    delays = [e.data["delay_ms"] for e in log.entries(event=LogEvent.RETRIED)]
    assert delays == [1000, 2000]
    assert (clock.now() - start).total_seconds() >= 3.0
    assert graph.unit("a").status is UnitStatus.FAILED


@pytest.mark.asyncio
async def test_non_retryable_error_skips_retries(engine, recorder):
    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="permanent", max_attempts=5)))

    assert graph.unit("a").status is UnitStatus.FAILED
    assert graph.unit("a").error == "manifest is invalid"
    assert recorder.calls["a"] == 1


@pytest.mark.asyncio
async def test_failure_blocks_dependents(engine, recorder):
    graph = make_graph(
        "g", WorkUnit(id="a", kind="permanent"), ok("b", "a"), ok("c", "b"), ok("x")
    )

    graph = await engine.run(graph)

    assert graph.unit("b").status is UnitStatus.BLOCKED
    assert graph.unit("c").status is UnitStatus.BLOCKED
    assert graph.unit("x").status is UnitStatus.COMPLETED
    assert "b" not in recorder.started


@pytest.mark.asyncio
async def test_partial_success_allowed(engine):
    graph = make_graph(
        "g", WorkUnit(id="a", kind="permanent"), ok("b"), allow_partial_success=True
    )

    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert summarize(graph).failed == 1


@pytest.mark.asyncio
async def test_per_kind_timeout(engine, registry):
    async def slow(unit, context):
        await asyncio.sleep(5)

    registry.register("slow", slow, timeout=0.05)

    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="slow")))

    assert graph.unit("a").status is UnitStatus.FAILED
    assert "timed out" in graph.unit("a").error


@pytest.mark.asyncio
async def test_default_timeout_applies_to_kinds_without_one(engine):
    engine.with_default_timeout(0.05)

    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="hang")))

    assert graph.unit("a").status is UnitStatus.FAILED


@pytest.mark.asyncio
async def test_escalation_hook_called(engine):
    escalated = []

    class Pager:
        async def escalate(self, graph, unit, error):
            escalated.append(unit.id)

    engine.with_escalation(Pager())
    await engine.run(make_graph("g", WorkUnit(id="a", kind="permanent")))

    assert escalated == ["a"]


# ==============================================================================
# Conditional edges
# ==============================================================================


@pytest.mark.asyncio
async def test_false_condition_skips_target(engine, registry, recorder):
    registry.register_condition("never", lambda output: False)
    graph = make_graph("g", ok("A"), ok("B"), ok("C", "B"))
    graph.connect("A", "B", EdgeKind.CONDITIONAL, condition="never")

    graph = await engine.run(graph)

    assert graph.unit("B").status is UnitStatus.SKIPPED
    assert graph.unit("C").status is UnitStatus.SKIPPED
    assert "B" not in recorder.started
    assert graph.status is GraphStatus.COMPLETED
    assert graph.overall_progress == 100.0


@pytest.mark.asyncio
async def test_true_condition_runs_target(engine, registry):
    @registry.condition("has_output")
    async def has_output(output):
        return output == "go"

    graph = make_graph("g", ok("A", result="go"), ok("B"))
    graph.connect("A", "B", EdgeKind.CONDITIONAL, condition="has_output")

    graph = await engine.run(graph)

    assert graph.unit("B").status is UnitStatus.COMPLETED


@pytest.mark.asyncio
async def test_raising_condition_blocks_target(engine, registry):
    def broken(output):
        raise RuntimeError("bad predicate")

    registry.register_condition("broken", broken)
    graph = make_graph("g", ok("A"), ok("B"))
    graph.connect("A", "B", EdgeKind.CONDITIONAL, condition="broken")

    graph = await engine.run(graph)

    assert graph.unit("B").status is UnitStatus.BLOCKED
    assert graph.status is GraphStatus.FAILED


# ==============================================================================
# Concurrency and run control
# ==============================================================================


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_concurrency_limit_respected(engine, recorder):
    graph = make_graph("g", *(ok(f"u{i}", sleep=0.02) for i in range(6)))

    graph = await engine.run(graph, concurrency_limit=2)

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.max_running == 2


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_independent_units_run_in_parallel(engine, recorder):
    graph = make_graph("g", *(ok(f"u{i}", sleep=0.02) for i in range(4)))

    await engine.with_concurrency_limit(8).run(graph)

    assert recorder.max_running == 4


@pytest.mark.asyncio
async def test_pause_and_resume(engine, recorder):
    graph = make_graph("g", ok("a"), ok("b", "a"))

    handle = await engine.start(graph)
    handle.pause()
    await until(lambda: handle.status is GraphStatus.PAUSED)
    await asyncio.sleep(0.02)
    assert recorder.started == []

    handle.resume()
    graph = await handle.wait()

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.started == ["a", "b"]


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_units(engine):
    graph = make_graph("g", WorkUnit(id="a", kind="hang"), ok("b", "a"))

    handle = await engine.start(graph)
    await until(lambda: graph.unit("a").status is UnitStatus.RUNNING)

    graph = await handle.stop()

    assert graph.status is GraphStatus.FAILED
    assert graph.unit("a").status is UnitStatus.FAILED
    assert graph.unit("a").error == "cancelled"
    assert graph.unit("b").status is UnitStatus.BLOCKED
    assert not handle.is_running()
    assert not engine.is_running("g")

    assert await handle.stop() is graph
    with pytest.raises(CancelledError):
        handle.resume()


@pytest.mark.asyncio
async def test_step_mode_pauses_after_each_completion(engine, recorder):
    graph = make_graph("g", ok("a"), ok("b", "a"), auto_mode=False)

    handle = await engine.start(graph)
    await until(lambda: handle.status is GraphStatus.PAUSED)
    assert graph.unit("a").status is UnitStatus.COMPLETED
    assert graph.unit("b").status is UnitStatus.PENDING

    handle.resume()
    graph = await handle.wait()

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.started == ["a", "b"]


@pytest.mark.asyncio
async def test_cannot_start_twice(engine):
    graph = make_graph("g", WorkUnit(id="a", kind="hang"))
    handle = await engine.start(graph)

    with pytest.raises(InvalidTransition):
        await engine.start(graph)

    await handle.stop()


@pytest.mark.asyncio
async def test_abort_cancels_the_run(engine):
    graph = make_graph("g", WorkUnit(id="a", kind="hang"), ok("b", "a"))

    handle = await engine.start(graph)
    await until(lambda: graph.unit("a").status is UnitStatus.RUNNING)

    handle.abort()
    with pytest.raises(asyncio.CancelledError):
        await handle.wait()

    assert not handle.is_running()
    assert not engine.is_running("g")
    assert graph.unit("a").status is UnitStatus.FAILED
    assert graph.unit("a").error == "cancelled"


@pytest.mark.asyncio
async def test_zero_concurrency_limit_rejected(engine):
    graph = make_graph("g", ok("a"))

    with pytest.raises(ValueError):
        await engine.start(graph, concurrency_limit=0)

    assert not engine.is_running("g")


@pytest.mark.asyncio
async def test_finished_run_releases_its_log(engine):
    await engine.run(make_graph("g", ok("a")))

    assert engine._logs == {}
    log = await engine.log_for("g")
    assert [e.event for e in log.entries(unit_id="a")][-1] is LogEvent.COMPLETED


# ==============================================================================
# Operator operations
# ==============================================================================


@pytest.mark.asyncio
async def test_skip_before_run_propagates(engine, recorder):
    graph = await engine.submit(make_graph("g", ok("a"), ok("b", "a"), ok("c")))

    await engine.skip(graph, "a")

    assert graph.unit("b").status is UnitStatus.SKIPPED
    graph = await engine.run(graph)
    assert graph.status is GraphStatus.COMPLETED
    assert recorder.started == ["c"]


@pytest.mark.asyncio
async def test_skip_finished_unit_rejected(engine):
    graph = await engine.run(make_graph("g", ok("a")))

    with pytest.raises(InvalidTransition):
        await engine.skip(graph, "a")


@pytest.mark.asyncio
async def test_rollback_takes_pre_operation_checkpoint(engine, recorder):
    graph = await engine.run(make_graph("g", ok("a"), ok("b", "a")))

    undone = await engine.rollback(graph, "a")

    assert undone == ["a"]
    assert graph.unit("a").status is UnitStatus.ROLLED_BACK
    assert graph.unit("b").status is UnitStatus.COMPLETED
    latest = await engine.checkpoints.latest("g")
    assert latest.kind is CheckpointKind.PRE_OPERATION
    assert latest.snapshot["units"][0]["status"] == "completed"

    stored = await engine.load("g")
    assert stored.unit("a").status is UnitStatus.ROLLED_BACK


@pytest.mark.asyncio
async def test_cascading_rollback(engine, recorder):
    graph = await engine.run(make_graph("g", ok("a"), ok("b", "a")))

    undone = await engine.rollback(graph, "a", cascade=True)

    assert undone == ["b", "a"]
    assert recorder.compensated == ["b", "a"]


@pytest.mark.asyncio
async def test_add_unit_while_running(engine, recorder):
    graph = make_graph("g", ok("a", sleep=0.05))
    handle = await engine.start(graph)
    await until(lambda: "a" in recorder.started)

    await engine.add_unit(graph, ok("late", "a"))
    graph = await handle.wait()

    assert graph.unit("late").status is UnitStatus.COMPLETED
    assert recorder.started == ["a", "late"]


@pytest.mark.asyncio
async def test_add_unit_reopens_finished_graph(engine, recorder):
    graph = await engine.run(make_graph("g", ok("a")))

    await engine.add_unit(graph, ok("b", "a"))
    assert graph.status is GraphStatus.READY
    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.calls == {"a": 1, "b": 1}


@pytest.mark.asyncio
async def test_add_unit_with_missing_dependency_leaves_graph_unchanged(engine):
    graph = await engine.submit(make_graph("g", ok("a")))

    with pytest.raises(DanglingDependency):
        await engine.add_unit(graph, ok("b", "ghost"))

    assert [u.id for u in graph.units] == ["a"]


@pytest.mark.asyncio
async def test_unit_waits_for_approval(engine, recorder):
    gated = WorkUnit(id="b", kind="ok", dependencies={"a"}, requires_approval=True)
    graph = make_graph("g", ok("a"), gated)

    handle = await engine.start(graph)
    await until(lambda: graph.unit("a").status is UnitStatus.COMPLETED)
    await asyncio.sleep(0.02)

    assert "b" not in recorder.started
    assert graph.unit("b").status is UnitStatus.PENDING
    assert handle.is_running()

    await engine.approve(graph, "b", approved_by="alice")
    graph = await handle.wait()

    assert graph.status is GraphStatus.COMPLETED
    assert graph.unit("b").approved_by == "alice"
    log = await engine.log_for("g")
    [approved] = log.entries(event=LogEvent.APPROVED)
    assert approved.unit_id == "b" and approved.data == {"by": "alice"}


@pytest.mark.asyncio
async def test_approval_before_start(engine, recorder):
    graph = await engine.submit(
        make_graph("g", WorkUnit(id="a", kind="ok", requires_approval=True))
    )

    await engine.approve(graph, "a")
    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.started == ["a"]
    with pytest.raises(InvalidTransition):
        await engine.approve(graph, "a")


@pytest.mark.asyncio
async def test_approve_unit_without_gate_rejected(engine):
    graph = await engine.submit(make_graph("g", ok("a")))

    with pytest.raises(InvalidTransition):
        await engine.approve(graph, "a")


@pytest.mark.asyncio
async def test_manual_retry_requeues_failed_unit_and_blocked_dependents(engine, recorder):
    graph = make_graph(
        "g", WorkUnit(id="a", kind="fail", params={"failures": 1}), ok("b", "a"), ok("c", "b")
    )
    graph = await engine.run(graph)
    assert graph.status is GraphStatus.FAILED
    assert graph.unit("c").status is UnitStatus.BLOCKED

    queued = await engine.retry(graph, "a")

    assert queued == ["a", "b", "c"]
    assert graph.status is GraphStatus.READY
    assert graph.unit("a").status is UnitStatus.PENDING
    assert graph.unit("a").error is None

    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert graph.unit("a").output == "recovered"
    assert recorder.calls == {"a": 2, "b": 1, "c": 1}
    log = await engine.log_for("g")
    retried = [
        e.unit_id
        for e in log.entries(event=LogEvent.QUEUED)
        if e.data.get("reason") == "manual retry"
    ]
    assert retried == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_retry_blocked_unit_behind_failed_one_stays_blocked(engine):
    graph = await engine.run(make_graph("g", WorkUnit(id="a", kind="permanent"), ok("b", "a")))

    await engine.retry(graph, "b")

    assert graph.unit("b").status is UnitStatus.BLOCKED


@pytest.mark.asyncio
async def test_retry_completed_unit_rejected(engine):
    graph = await engine.run(make_graph("g", ok("a")))

    with pytest.raises(InvalidTransition):
        await engine.retry(graph, "a")


# ==============================================================================
# Resume, restore and checkpoints
# ==============================================================================


@pytest.mark.asyncio
async def test_rerunning_a_finished_graph_executes_nothing(engine, recorder):
    graph = await engine.run(make_graph("g", ok("a"), ok("b", "a")))
    log = await engine.log_for("g")
    cursor = log.cursor

    graph = await engine.run(graph)

    assert graph.status is GraphStatus.COMPLETED
    assert recorder.calls == {"a": 1, "b": 1}
    log = await engine.log_for("g")
    assert log.entries(event=LogEvent.STARTED)[-1].sequence <= cursor


@pytest.mark.asyncio
async def test_restore_then_resume_skips_completed_units(engine, recorder):
    graph = make_graph("g", ok("a"), ok("b", "a"), checkpoint_interval_units=1)
    await engine.run(graph)

    autos = [r for r in await engine.checkpoints.list("g") if r.kind is CheckpointKind.AUTO]
    first = autos[-1]
    restored = await engine.restore(first.id)
    assert restored.unit("a").status is UnitStatus.COMPLETED
    assert restored.unit("b").status is UnitStatus.PENDING

    restored = await engine.run(restored)

    assert restored.status is GraphStatus.COMPLETED
    assert recorder.calls == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_units_interrupted_mid_run_are_requeued(engine, recorder):
    interrupted = WorkUnit(id="a", kind="ok", status=UnitStatus.RUNNING, progress=40)
    graph = make_graph("g", interrupted)
    graph.status = GraphStatus.RUNNING

    graph = await engine.run(graph)

    assert graph.unit("a").status is UnitStatus.COMPLETED
    log = await engine.log_for("g")
    requeued = log.entries(unit_id="a", event=LogEvent.QUEUED)
    assert requeued[0].data == {"reason": "interrupted"}


@pytest.mark.asyncio
async def test_timer_checkpoint(in_memory_storage, registry):
    clock = ManualClock(auto_advance=False)
    engine = Engine(in_memory_storage, registry).with_clock(clock)
    engine.with_checkpoint_interval(10)
    graph = make_graph("g", WorkUnit(id="a", kind="hang"))

    handle = await engine.start(graph)
    await until(lambda: graph.unit("a").status is UnitStatus.RUNNING)
    await asyncio.sleep(0.01)
    assert await engine.checkpoints.list("g") == []

    clock.advance(10)
    await until(lambda: graph.last_checkpoint_at == clock.now())

    records = await engine.checkpoints.list("g")
    assert [r.kind for r in records] == [CheckpointKind.AUTO]
    assert records[0].description == "timer"

    await handle.stop()


@pytest.mark.asyncio
async def test_checkpoint_records_log_cursor(engine):
    graph = await engine.run(make_graph("g", ok("a")))
    log = await engine.log_for("g")

    record = await engine.checkpoint(graph, name="manual")

    assert record.log_cursor == log.cursor
    assert record.kind is CheckpointKind.MANUAL
