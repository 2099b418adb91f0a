"""
Executor module - runtime engine for work graphs.

This module contains the execution components:
- resolver: validation, cycle detection, ready-set and unreachable computation
- registry: executors, compensators and edge conditions by name
- scheduler: Engine, the concurrency-limited run loop and operator operations
- recovery: retry scheduling, escalation and compensating rollback
- checkpoint: restorable graph snapshots
- progress: run log, progress aggregation and summaries
- repair: health-triggered auto-repair
"""

from pyworkgraph.executor import resolver
from pyworkgraph.executor.checkpoint import CheckpointStore
from pyworkgraph.executor.outcome import Failed, Succeeded, UnitOutcome
from pyworkgraph.executor.progress import (
    GraphSummary,
    ProgressReporter,
    RunLog,
    block_progress,
    block_status,
    overall_progress,
    summarize,
)
from pyworkgraph.executor.recovery import Escalation, RecoveryController
from pyworkgraph.executor.registry import ExecutionContext, ExecutorEntry, Registry
from pyworkgraph.executor.repair import ComponentHealth, HealthSource, RepairMonitor, classify
from pyworkgraph.executor.scheduler import Engine, RunHandle

__all__ = [
    "resolver",
    # Engine
    "Engine",
    "RunHandle",
    # Registry
    "Registry",
    "ExecutorEntry",
    "ExecutionContext",
    # Outcomes
    "Succeeded",
    "Failed",
    "UnitOutcome",
    # Recovery
    "RecoveryController",
    "Escalation",
    # Checkpoints
    "CheckpointStore",
    # Progress
    "RunLog",
    "GraphSummary",
    "ProgressReporter",
    "summarize",
    "overall_progress",
    "block_progress",
    "block_status",
    # Auto-repair
    "RepairMonitor",
    "ComponentHealth",
    "HealthSource",
    "classify",
]
