"""
Pytest configuration and fixtures for pyworkgraph tests.

Provides reusable fixtures for storage backends, the engine and a
recording registry of test executors.
"""

import asyncio
import shutil
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from hypothesis import strategies as st

from pyworkgraph.core import ManualClock
from pyworkgraph.executor import Engine, Registry
from pyworkgraph.models import RetryableError, RetryPolicy, WorkGraph, WorkUnit
from pyworkgraph.storage import InMemoryKeyValueStore, SqliteKeyValueStore


@pytest.fixture
async def in_memory_storage() -> AsyncGenerator[InMemoryKeyValueStore, None]:
    """Async in-memory storage fixture with automatic cleanup."""
    storage = InMemoryKeyValueStore()
    yield storage
    await storage.reset()


@pytest.fixture
async def sqlite_memory_storage() -> AsyncGenerator[SqliteKeyValueStore, None]:
    """Async SQLite in-memory storage fixture with automatic cleanup."""
    storage = SqliteKeyValueStore(":memory:")
    await storage.connect()
    yield storage
    await storage.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "test.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def clock() -> ManualClock:
    """Virtual clock; sleeps advance it instantly."""
    return ManualClock()


# Test executors


class Recorder:
    """Shared bookkeeping for the test executors."""

    def __init__(self):
        self.started: list[str] = []
        self.finished: list[str] = []
        self.compensated: list[str] = []
        self.running = 0
        self.max_running = 0
        self.calls: dict[str, int] = {}


class Flaky(RetryableError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self._retryable = retryable

    def is_retryable(self) -> bool:
        return self._retryable


def build_registry(recorder: Recorder) -> Registry:
    """Registry with the kinds the tests use.

    - ``ok``: sleeps ``params["sleep"]`` real seconds, returns ``params["result"]``
    - ``fail``: fails the first ``params["failures"]`` calls (all if absent)
    - ``permanent``: raises a non-retryable error
    - ``hang``: never finishes on its own
    - ``repair-action``: succeeds
    """
    registry = Registry()

    async def track(unit, work):
        recorder.started.append(unit.id)
        recorder.calls[unit.id] = recorder.calls.get(unit.id, 0) + 1
        recorder.running += 1
        recorder.max_running = max(recorder.max_running, recorder.running)
        try:
            result = await work()
        finally:
            recorder.running -= 1
        recorder.finished.append(unit.id)
        return result

    @registry.executor("ok")
    async def ok(unit, context):
        async def work():
            await asyncio.sleep(unit.params.get("sleep", 0))
            return unit.params.get("result", unit.id)

        return await track(unit, work)

    @registry.executor("fail")
    async def fail(unit, context):
        async def work():
            failures = unit.params.get("failures")
            if failures is None or recorder.calls[unit.id] <= failures:
                raise Flaky(f"{unit.id} broke on call {recorder.calls[unit.id]}")
            return "recovered"

        return await track(unit, work)

    @registry.executor("permanent")
    async def permanent(unit, context):
        async def work():
            raise Flaky("manifest is invalid", retryable=False)

        return await track(unit, work)

    @registry.executor("hang")
    async def hang(unit, context):
        async def work():
            await asyncio.Event().wait()

        return await track(unit, work)

    @registry.executor("repair-action")
    async def repair(unit, context):
        async def work():
            return {"action": unit.params["action"]}

        return await track(unit, work)

    async def undo(unit):
        recorder.compensated.append(unit.id)

    registry.register_compensator("ok", undo)
    return registry


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def registry(recorder) -> Registry:
    return build_registry(recorder)


@pytest.fixture
def engine(in_memory_storage, registry, clock) -> Engine:
    """Engine over in-memory storage, virtual clock and no retry backoff."""
    return (
        Engine(in_memory_storage, registry)
        .with_clock(clock)
        .with_retry_policy(RetryPolicy.NONE)
    )


def make_graph(graph_id: str = "g", *units: WorkUnit, **kwargs) -> WorkGraph:
    graph = WorkGraph(id=graph_id, name=graph_id.upper(), **kwargs)
    for unit in units:
        graph.add_unit(unit)
    return graph


# Hypothesis strategies for property-based testing


@st.composite
def dag_strategy(draw, max_units: int = 12):
    """Random acyclic graph: unit i may only depend on units declared before it."""
    count = draw(st.integers(min_value=0, max_value=max_units))
    graph = WorkGraph(id="prop", name="Property")
    for i in range(count):
        deps = draw(st.sets(st.integers(min_value=0, max_value=i - 1), max_size=3)) if i else set()
        graph.add_unit(WorkUnit(id=f"u{i}", kind="ok", dependencies={f"u{d}" for d in deps}))
    return graph
