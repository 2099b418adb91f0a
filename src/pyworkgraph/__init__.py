"""
pyworkgraph: dependency-ordered execution of work graphs.

Runs graphs of units of work in dependency order with bounded
concurrency, retries with backoff, compensating rollback, restorable
checkpoints, an append-only run log and health-triggered auto-repair.

Example:
    ```python
    import asyncio
    from pyworkgraph import Engine, Registry, WorkGraph, WorkUnit
    from pyworkgraph.storage import SqliteKeyValueStore

    registry = Registry()

    @registry.executor("shell")
    async def run_shell(unit, ctx):
        ...

    async def main():
        storage = SqliteKeyValueStore("workgraph.db")
        await storage.connect()

        graph = WorkGraph(id="release", name="Release")
        graph.add_unit(WorkUnit(id="build", kind="shell"))
        graph.add_unit(WorkUnit(id="test", kind="shell", dependencies={"build"}))

        engine = Engine(storage, registry)
        await engine.run(graph)

        await storage.close()

    asyncio.run(main())
    ```
"""

from pyworkgraph.core import (
    CancelledError,
    Clock,
    ConfigurationError,
    CycleDetected,
    DanglingDependency,
    EngineConfig,
    ExecutionFailed,
    IntegrityError,
    InvalidTransition,
    InvariantViolation,
    ManualClock,
    RetriesExhausted,
    SystemClock,
    UnknownCondition,
    UnknownExecutor,
    WorkGraphError,
)
from pyworkgraph.executor import (
    CheckpointStore,
    ComponentHealth,
    Engine,
    ExecutionContext,
    Failed,
    GraphSummary,
    HealthSource,
    Registry,
    RepairMonitor,
    RunHandle,
    RunLog,
    Succeeded,
    summarize,
)
from pyworkgraph.models import (
    BlockStatus,
    CheckpointKind,
    CheckpointRecord,
    ComponentStatus,
    Edge,
    EdgeKind,
    GraphStatus,
    LogEntry,
    LogEvent,
    Priority,
    RetryableError,
    RetryPolicy,
    UnitBlock,
    UnitStatus,
    WorkGraph,
    WorkUnit,
)
from pyworkgraph.storage import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    SqliteKeyValueStore,
    StorageError,
)

__version__ = "0.1.0"

__all__ = [
    # Model
    "WorkUnit",
    "WorkGraph",
    "Edge",
    "UnitBlock",
    "CheckpointRecord",
    "LogEntry",
    "RetryPolicy",
    "RetryableError",
    "UnitStatus",
    "GraphStatus",
    "Priority",
    "EdgeKind",
    "LogEvent",
    "CheckpointKind",
    "ComponentStatus",
    "BlockStatus",
    # Core
    "Clock",
    "SystemClock",
    "ManualClock",
    "EngineConfig",
    # Errors
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
    "StorageError",
    # Execution
    "Engine",
    "RunHandle",
    "Registry",
    "ExecutionContext",
    "Succeeded",
    "Failed",
    "CheckpointStore",
    "RunLog",
    "GraphSummary",
    "summarize",
    "RepairMonitor",
    "ComponentHealth",
    "HealthSource",
    # Storage
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "RedisKeyValueStore",
    # Metadata
    "__version__",
]
