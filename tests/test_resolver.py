"""
Tests for dependency resolution.

Covers validation (cycles, dangling references, duplicates), ordering,
the ready set and unreachable-unit propagation, plus property-based
checks over random acyclic graphs.
"""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import dag_strategy, make_graph
from hypothesis import given, settings

from pyworkgraph.core import ConfigurationError, CycleDetected, DanglingDependency
from pyworkgraph.executor.resolver import (
    compute_ready_set,
    compute_unreachable,
    dependencies_of,
    dependents_of,
    depths,
    find_cycle,
    level_graph,
    shape,
    topological_order,
    transitive_dependents,
    validate,
)
from pyworkgraph.models import EdgeKind, Priority, UnitBlock, UnitStatus, WorkGraph, WorkUnit


def unit(uid: str, *deps: str, **kwargs) -> WorkUnit:
    return WorkUnit(id=uid, kind="ok", dependencies=set(deps), **kwargs)


def diamond() -> WorkGraph:
    return make_graph("diamond", unit("a"), unit("b", "a"), unit("c", "a"), unit("d", "b", "c"))


# ==============================================================================
# Validation
# ==============================================================================


def test_valid_graph_passes():
    validate(diamond())


def test_cycle_detected_with_path():
    graph = make_graph("g", unit("a", "c"), unit("b", "a"), unit("c", "b"))

    with pytest.raises(CycleDetected) as exc_info:
        validate(graph)

    cycle = exc_info.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    assert len(cycle) == 4


def test_self_dependency_is_a_cycle():
    graph = make_graph("g", unit("a", "a"))
    assert find_cycle(graph) == ["a", "a"]


def test_cycle_through_edges_of_any_kind():
    graph = make_graph("g", unit("a"), unit("b"))
    graph.connect("a", "b", EdgeKind.PARALLEL)
    graph.connect("b", "a", EdgeKind.CONDITIONAL, condition="always")

    with pytest.raises(CycleDetected):
        validate(graph)


def test_dangling_dependency():
    graph = make_graph("g", unit("a", "ghost"))

    with pytest.raises(DanglingDependency) as exc_info:
        validate(graph)

    assert exc_info.value.unit_id == "a"
    assert exc_info.value.missing_id == "ghost"


def test_dangling_edge():
    graph = make_graph("g", unit("a"))
    graph.connect("a", "nowhere")

    with pytest.raises(DanglingDependency):
        validate(graph)


def test_duplicate_ids_rejected():
    graph = WorkGraph(id="g", name="G", units=[unit("a"), unit("a")])

    with pytest.raises(ConfigurationError):
        validate(graph)


def test_bad_block_references():
    graph = make_graph("g", unit("a"))
    graph.blocks.append(UnitBlock(id="b1", name="B1", unit_ids=["a", "zzz"]))
    with pytest.raises(ConfigurationError):
        validate(graph)

    graph.blocks[0] = UnitBlock(id="b1", name="B1", unit_ids=["a"], dependencies=["nope"])
    with pytest.raises(ConfigurationError):
        validate(graph)


# ==============================================================================
# Structure queries
# ==============================================================================


def test_edges_count_as_dependencies():
    graph = make_graph("g", unit("a"), unit("b"), unit("c", "a"))
    graph.connect("b", "c", EdgeKind.SEQUENTIAL)

    assert dependencies_of(graph, "c") == {"a", "b"}
    assert dependents_of(graph, "a") == ["c"]
    assert transitive_dependents(diamond(), "a") == {"b", "c", "d"}


def test_topological_order_is_deterministic():
    graph = make_graph("g", unit("z"), unit("y"), unit("x", "z"), unit("w"))
    assert topological_order(graph) == ["z", "y", "x", "w"]


def test_depths_use_longest_path():
    graph = make_graph("g", unit("a"), unit("b", "a"), unit("c", "a", "b"))
    assert depths(graph) == {"a": 0, "b": 1, "c": 2}


def test_shape_and_level_graph():
    graph = diamond()

    summary = shape(graph)
    assert summary.total_units == 4
    assert summary.roots == ["a"]
    assert summary.leaves == ["d"]
    assert summary.max_depth == 2

    text = level_graph(graph)
    assert "Level 1: [b] [c] (2 parallel units)" in text
    assert "Level 2: [d]" in text


# ==============================================================================
# Ready set
# ==============================================================================


def test_ready_set_requires_completed_dependencies():
    graph = diamond()
    for u in graph.units:
        u.status = UnitStatus.PENDING

    assert [u.id for u in compute_ready_set(graph)] == ["a"]

    graph.unit("a").status = UnitStatus.COMPLETED
    assert [u.id for u in compute_ready_set(graph)] == ["b", "c"]

    graph.unit("b").status = UnitStatus.COMPLETED
    assert [u.id for u in compute_ready_set(graph)] == ["c"]


def test_ready_set_orders_by_depth_then_priority_then_declaration():
    graph = make_graph(
        "g",
        unit("root"),
        unit("deep", "root", priority=Priority.CRITICAL),
        unit("low", priority=Priority.LOW),
        unit("high", priority=Priority.HIGH),
        unit("medium"),
    )
    graph.unit("root").status = UnitStatus.COMPLETED
    for uid in ("deep", "low", "high", "medium"):
        graph.unit(uid).status = UnitStatus.PENDING

    assert [u.id for u in compute_ready_set(graph)] == ["high", "medium", "low", "deep"]


def test_ready_set_respects_backoff():
    now = datetime(2024, 1, 1, tzinfo=UTC)
    graph = make_graph("g", unit("a", status=UnitStatus.PENDING))
    graph.unit("a").next_attempt_at = now + timedelta(seconds=5)

    assert compute_ready_set(graph, now) == []
    assert [u.id for u in compute_ready_set(graph, now + timedelta(seconds=5))] == ["a"]


def test_ready_set_holds_back_units_awaiting_approval():
    now = datetime(2024, 1, 1, tzinfo=UTC)
    graph = make_graph(
        "g",
        unit("a", status=UnitStatus.PENDING, requires_approval=True),
        unit("b", status=UnitStatus.PENDING),
    )

    assert [u.id for u in compute_ready_set(graph, now)] == ["b"]

    graph.unit("a").approved_at = now
    assert [u.id for u in compute_ready_set(graph, now)] == ["a", "b"]


# ==============================================================================
# Unreachable units
# ==============================================================================


def test_failed_dependency_blocks_transitively():
    graph = diamond()
    graph.unit("a").status = UnitStatus.COMPLETED
    graph.unit("b").status = UnitStatus.FAILED
    graph.unit("c").status = UnitStatus.PENDING
    graph.unit("d").status = UnitStatus.PENDING

    blocked, skipped = compute_unreachable(graph)

    assert blocked == ["d"]
    assert skipped == []


def test_skipped_dependency_skips_and_blocked_wins():
    graph = diamond()
    graph.unit("a").status = UnitStatus.COMPLETED
    graph.unit("b").status = UnitStatus.SKIPPED
    graph.unit("c").status = UnitStatus.ROLLED_BACK
    graph.unit("d").status = UnitStatus.PENDING
    assert compute_unreachable(graph) == (["d"], [])

    graph.unit("c").status = UnitStatus.PENDING
    assert compute_unreachable(graph) == ([], ["d"])


def test_chain_skips_propagate():
    graph = make_graph("g", unit("a", status=UnitStatus.SKIPPED), unit("b", "a"), unit("c", "b"))
    assert compute_unreachable(graph) == ([], ["b", "c"])


# ==============================================================================
# Properties
# ==============================================================================


@pytest.mark.property
@settings(max_examples=100)
@given(graph=dag_strategy())
def test_topological_order_respects_dependencies(graph):
    """Property: every unit appears after all of its dependencies."""
    validate(graph)
    order = topological_order(graph)
    position = {uid: i for i, uid in enumerate(order)}

    assert sorted(order) == sorted(u.id for u in graph.units)
    for u in graph.units:
        for dep in u.dependencies:
            assert position[dep] < position[u.id]


@pytest.mark.property
@settings(max_examples=100)
@given(graph=dag_strategy())
def test_ready_set_only_contains_satisfied_units(graph):
    """Property: ready units are pending with every dependency completed."""
    for i, u in enumerate(graph.units):
        u.status = UnitStatus.COMPLETED if i % 3 == 0 else UnitStatus.PENDING

    for ready in compute_ready_set(graph):
        assert ready.status is UnitStatus.PENDING
        assert all(graph.unit(d).status is UnitStatus.COMPLETED for d in ready.dependencies)


@pytest.mark.property
@settings(max_examples=100)
@given(graph=dag_strategy())
def test_depth_exceeds_every_dependency(graph):
    """Property: a unit is strictly deeper than each of its dependencies."""
    unit_depths = depths(graph)
    for u in graph.units:
        for dep in u.dependencies:
            assert unit_depths[u.id] > unit_depths[dep]
