"""Core data models for work graph execution.

Defines types for unit and graph state tracking, checkpoints,
execution log entries and retry backoff.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pyworkgraph.models.checkpoint import CheckpointRecord
from pyworkgraph.models.graph import Edge, UnitBlock, WorkGraph
from pyworkgraph.models.log_entry import LogEntry
from pyworkgraph.models.retry import RetryableError, RetryPolicy
from pyworkgraph.models.status import (
    BlockStatus,
    CheckpointKind,
    ComponentStatus,
    EdgeKind,
    GraphStatus,
    LogEvent,
    Priority,
    UnitStatus,
)
from pyworkgraph.models.unit import WorkUnit, clamp_progress

__all__ = [
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
    "clamp_progress",
]
