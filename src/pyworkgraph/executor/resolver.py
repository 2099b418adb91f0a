"""
Dependency resolution for work graphs.

**Design Decision Hidden** (Parnas's Information Hiding):
- **"Which units may run next"**

The scheduler only asks for the ready set and for units that can never
run; how dependencies are collected, ordered and checked for cycles is
kept here.

A unit's dependencies are the union of its own ``dependencies`` set and
the sources of every edge pointing at it (sequential, parallel and
conditional edges alike).

**Ready set ordering** (deterministic):
1. Dependency depth, shallowest first
2. Priority, critical first
3. Declaration order in ``graph.units``

**Example**:
```python
validate(graph)
for unit in compute_ready_set(graph):
    print(unit.id)

print(level_graph(graph))
```
"""

from dataclasses import dataclass
from datetime import datetime

from pyworkgraph.core.errors import ConfigurationError, CycleDetected, DanglingDependency
from pyworkgraph.models import UnitStatus, WorkGraph, WorkUnit

__all__ = [
    "GraphShape",
    "validate",
    "find_cycle",
    "dependencies_of",
    "dependents_of",
    "transitive_dependents",
    "topological_order",
    "depths",
    "compute_ready_set",
    "compute_unreachable",
    "shape",
    "level_graph",
]


def dependencies_of(graph: WorkGraph, unit_id: str) -> set[str]:
    """Ids a unit waits for: declared dependencies plus incoming edge sources."""
    unit = graph.get_unit(unit_id)
    deps = set(unit.dependencies) if unit is not None else set()
    deps.update(e.from_id for e in graph.edges if e.to_id == unit_id)
    return deps


def _dependency_map(graph: WorkGraph) -> dict[str, set[str]]:
    deps = {u.id: set(u.dependencies) for u in graph.units}
    for edge in graph.edges:
        deps.setdefault(edge.to_id, set()).add(edge.from_id)
    return deps


def _dependent_map(graph: WorkGraph) -> dict[str, list[str]]:
    dependents: dict[str, list[str]] = {u.id: [] for u in graph.units}
    for unit_id, deps in _dependency_map(graph).items():
        for dep in sorted(deps):
            dependents.setdefault(dep, [])
            if unit_id not in dependents[dep]:
                dependents[dep].append(unit_id)
    return dependents


def dependents_of(graph: WorkGraph, unit_id: str) -> list[str]:
    """Ids of units that directly wait for ``unit_id``, in declaration order."""
    direct = set(_dependent_map(graph).get(unit_id, []))
    return [u.id for u in graph.units if u.id in direct]


def transitive_dependents(graph: WorkGraph, unit_id: str) -> set[str]:
    """Every unit that directly or indirectly waits for ``unit_id``."""
    dependents = _dependent_map(graph)
    found: set[str] = set()
    stack = list(dependents.get(unit_id, []))
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        stack.extend(dependents.get(current, []))
    return found


def find_cycle(graph: WorkGraph) -> list[str] | None:
    """Return one directed cycle as a path (first id repeated last), or None.

    Iterative DFS so long chains do not hit the recursion limit.
    """
    deps = _dependency_map(graph)
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in (u.id for u in graph.units):
        if root in visited:
            continue

        path: list[str] = [root]
        iterators = [iter(sorted(deps.get(root, ())))]
        visited.add(root)
        on_stack.add(root)

        while iterators:
            advanced = False
            for dep in iterators[-1]:
                if dep not in deps:
                    continue  # dangling, reported by validate()
                if dep in on_stack:
                    start = path.index(dep)
                    # Path runs dependent -> dependency; report it in execution order
                    cycle = list(reversed(path[start:]))
                    return [*cycle, cycle[0]]
                if dep not in visited:
                    visited.add(dep)
                    on_stack.add(dep)
                    path.append(dep)
                    iterators.append(iter(sorted(deps.get(dep, ()))))
                    advanced = True
                    break
            if not advanced:
                iterators.pop()
                on_stack.discard(path.pop())

    return None


def validate(graph: WorkGraph) -> None:
    """
    Check that a graph is runnable as declared.

    Checks for:
    - Duplicate unit ids
    - Dependencies or edges referencing non-existent units
    - Blocks referencing non-existent units or blocks
    - Cycles in the dependency relation (all edge kinds)

    Raises:
        ConfigurationError: On duplicate ids or bad block references
        DanglingDependency: On a reference to a missing unit
        CycleDetected: On any directed cycle
    """
    seen: set[str] = set()
    for unit in graph.units:
        if unit.id in seen:
            raise ConfigurationError(f"Duplicate unit id: {unit.id}")
        seen.add(unit.id)

    for unit in graph.units:
        for dep in sorted(unit.dependencies):
            if dep not in seen:
                raise DanglingDependency(unit.id, dep)

    for edge in graph.edges:
        if edge.from_id not in seen:
            raise DanglingDependency(edge.to_id, edge.from_id)
        if edge.to_id not in seen:
            raise DanglingDependency(edge.from_id, edge.to_id)

    block_ids = {b.id for b in graph.blocks}
    for block in graph.blocks:
        for unit_id in block.unit_ids:
            if unit_id not in seen:
                raise ConfigurationError(f"Block '{block.id}' lists unknown unit '{unit_id}'")
        for dep in block.dependencies:
            if dep not in block_ids:
                raise ConfigurationError(f"Block '{block.id}' depends on unknown block '{dep}'")

    cycle = find_cycle(graph)
    if cycle is not None:
        raise CycleDetected(cycle)


def topological_order(graph: WorkGraph) -> list[str]:
    """
    Unit ids in an order where every unit follows its dependencies.

    Kahn's algorithm; ties are broken by declaration order so the result is
    deterministic. Missing dependency ids are ignored.

    Raises:
        CycleDetected: If the graph has a cycle
    """
    deps = _dependency_map(graph)
    known = {u.id for u in graph.units}
    position = {u.id: i for i, u in enumerate(graph.units)}
    remaining = {uid: len([d for d in deps.get(uid, ()) if d in known]) for uid in known}
    dependents = _dependent_map(graph)

    ready = sorted((uid for uid, n in remaining.items() if n == 0), key=position.__getitem__)
    order: list[str] = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        released = []
        for dependent in dependents.get(current, []):
            if dependent not in remaining:
                continue
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                released.append(dependent)
        if released:
            ready = sorted([*ready, *released], key=position.__getitem__)

    if len(order) != len(known):
        raise CycleDetected(find_cycle(graph) or sorted(known - set(order)))
    return order


def depths(graph: WorkGraph) -> dict[str, int]:
    """
    Depth of each unit: 0 for roots, otherwise one more than its deepest
    dependency (longest path from a root).
    """
    deps = _dependency_map(graph)
    result: dict[str, int] = {}
    for unit_id in topological_order(graph):
        dep_depths = [result[d] for d in deps.get(unit_id, ()) if d in result]
        result[unit_id] = max(dep_depths) + 1 if dep_depths else 0
    return result


def compute_ready_set(
    graph: WorkGraph,
    now: datetime | None = None,
    unit_depths: dict[str, int] | None = None,
) -> list[WorkUnit]:
    """
    Pending units whose dependencies are all completed.

    Units waiting for a retry backoff (``next_attempt_at`` after ``now``)
    or for an operator approval are left out. Pass ``unit_depths`` to reuse
    a depth map across calls.
    """
    if unit_depths is None:
        unit_depths = depths(graph)
    deps = _dependency_map(graph)
    position = {u.id: i for i, u in enumerate(graph.units)}

    ready = []
    for unit in graph.units:
        if unit.status is not UnitStatus.PENDING:
            continue
        if unit.awaiting_approval:
            continue
        if now is not None and unit.next_attempt_at is not None and unit.next_attempt_at > now:
            continue
        satisfied = True
        for dep in deps.get(unit.id, ()):
            upstream = graph.get_unit(dep)
            if upstream is None or upstream.status is not UnitStatus.COMPLETED:
                satisfied = False
                break
        if satisfied:
            ready.append(unit)

    ready.sort(key=lambda u: (unit_depths.get(u.id, 0), -u.priority.rank, position[u.id]))
    return ready


def compute_unreachable(graph: WorkGraph) -> tuple[list[str], list[str]]:
    """
    Waiting units that can never run, as ``(blocked, skipped)`` id lists.

    A waiting (idle or pending) unit is blocked if a dependency is missing,
    failed, blocked or rolled back, and skipped if a dependency was skipped.
    Both propagate transitively; blocked wins over skipped.
    """
    deps = _dependency_map(graph)
    effective = {u.id: u.status for u in graph.units}
    blocked: list[str] = []
    skipped: list[str] = []

    for unit_id in topological_order(graph):
        if effective[unit_id] not in (UnitStatus.IDLE, UnitStatus.PENDING):
            continue

        upstream = [effective.get(dep) for dep in deps.get(unit_id, ())]
        if any(status is None or status.is_unsatisfiable for status in upstream):
            effective[unit_id] = UnitStatus.BLOCKED
            blocked.append(unit_id)
        elif any(status is UnitStatus.SKIPPED for status in upstream):
            effective[unit_id] = UnitStatus.SKIPPED
            skipped.append(unit_id)

    return blocked, skipped


@dataclass(frozen=True)
class GraphShape:
    """
    Summary information about a graph's structure.

    **Attributes**:
        total_units: Total number of units
        root_count: Number of units with no dependencies
        leaf_count: Number of units nothing depends on
        max_depth: Maximum depth
        roots: Root unit ids
        leaves: Leaf unit ids
    """

    total_units: int
    root_count: int
    leaf_count: int
    max_depth: int
    roots: list[str]
    leaves: list[str]


def shape(graph: WorkGraph) -> GraphShape:
    deps = _dependency_map(graph)
    all_deps: set[str] = set()
    for unit_deps in deps.values():
        all_deps.update(unit_deps)

    roots = [u.id for u in graph.units if not deps.get(u.id)]
    leaves = [u.id for u in graph.units if u.id not in all_deps]
    unit_depths = depths(graph)

    return GraphShape(
        total_units=len(graph.units),
        root_count=len(roots),
        leaf_count=len(leaves),
        max_depth=max(unit_depths.values()) if unit_depths else 0,
        roots=roots,
        leaves=leaves,
    )


def level_graph(graph: WorkGraph) -> str:
    """
    Level-based text view of a graph.

    **Example output**:
    ```
    Graph release (4 units):

    Level 0: [fetch]
             ↓
    Level 1: [build] [lint] (2 parallel units)
             ↓
    Level 2: [deploy]
    ```
    """
    output = f"Graph {graph.id} ({len(graph.units)} units):\n\n"

    unit_depths = depths(graph)
    max_level = max(unit_depths.values()) if unit_depths else 0
    levels: list[list[str]] = [[] for _ in range(max_level + 1)]
    for unit in graph.units:
        levels[unit_depths.get(unit.id, 0)].append(unit.id)

    for level, unit_ids in enumerate(levels):
        if not unit_ids:
            continue
        parallel_note = f" ({len(unit_ids)} parallel units)" if len(unit_ids) > 1 else ""
        output += f"Level {level}: [{'] ['.join(unit_ids)}]{parallel_note}\n"
        if level < max_level:
            output += "         ↓\n"

    return output
