"""
Core types for pyworkgraph.

This module contains the fundamental types used throughout the engine:
- WorkUnit / WorkGraph / Edge / UnitBlock: the work model
- Status enums: UnitStatus, GraphStatus, Priority, EdgeKind, LogEvent
- RetryPolicy / RetryableError: retry backoff and error retry control
- Clock: injected time source (SystemClock, ManualClock)
- EngineConfig: engine tunables, optionally read from the environment
- The error taxonomy (CycleDetected, IntegrityError, ...)
"""

from pyworkgraph.core.clock import Clock, ManualClock, SystemClock
from pyworkgraph.core.config import EngineConfig
from pyworkgraph.core.errors import (
    CancelledError,
    ConfigurationError,
    CycleDetected,
    DanglingDependency,
    ExecutionFailed,
    IntegrityError,
    InvalidTransition,
    InvariantViolation,
    RetriesExhausted,
    UnknownCondition,
    UnknownExecutor,
    WorkGraphError,
)
from pyworkgraph.models import (
    CheckpointKind,
    CheckpointRecord,
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

__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "EngineConfig",
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
]
