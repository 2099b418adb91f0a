"""Health-triggered auto-repair.

RepairMonitor watches named components through a HealthSource. On every
tick it pulls health scores, classifies each component and, when a
component drops below the repair threshold with auto-repair enabled (both
for the component and for the monitor), adds a ``repair-action`` unit to
the target graph through the Engine.

A component never has two repair units waiting at once: while one is
idle, pending or running, further ticks below threshold create nothing.

Classification (with the default thresholds):
    health == 0        offline
    health < 30        critical
    health < 60        warning
    otherwise          healthy

The periodic loop is driven by the injected clock, so tests advance time
instead of waiting on wall-clock timers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

from uuid_extensions import uuid7

from pyworkgraph.core.clock import Clock
from pyworkgraph.executor.scheduler import Engine
from pyworkgraph.models import (
    ComponentStatus,
    GraphStatus,
    Priority,
    UnitStatus,
    WorkGraph,
    WorkUnit,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ComponentHealth",
    "HealthSource",
    "RepairMonitor",
    "classify",
    "REPAIR_KIND",
]

REPAIR_KIND = "repair-action"
DEFAULT_REPAIR_ACTION = "restart"


@dataclass
class ComponentHealth:
    """A monitored component."""

    id: str
    name: str = ""
    health: float = 100.0
    """Health score, 0-100."""

    status: ComponentStatus = ComponentStatus.HEALTHY
    auto_repair: bool = True
    critical: bool = False
    """Critical components get critical-priority repairs."""

    issues: list[str] = field(default_factory=list)
    repairs: list[str] = field(default_factory=list)
    """Known repair actions; the first one is used for automatic repairs."""

    last_check: datetime | None = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        if isinstance(self.status, str):
            self.status = ComponentStatus(self.status)


@runtime_checkable
class HealthSource(Protocol):
    """Supplies current health scores by component id."""

    async def health_scores(self) -> dict[str, float]: ...


def classify(
    health: float, critical_threshold: float = 30.0, warning_threshold: float = 60.0
) -> ComponentStatus:
    if health <= 0:
        return ComponentStatus.OFFLINE
    if health < critical_threshold:
        return ComponentStatus.CRITICAL
    if health < warning_threshold:
        return ComponentStatus.WARNING
    return ComponentStatus.HEALTHY


class RepairMonitor:
    """Turns low health scores into repair units.

    Usage:
        monitor = RepairMonitor(engine, source, graph) \\
            .with_threshold(30) \\
            .with_auto_repair(True)

        monitor.register(ComponentHealth(id="net", repairs=["reset-link"]))
        created = await monitor.tick()
    """

    def __init__(self, engine: Engine, source: HealthSource, graph: WorkGraph | None = None):
        """Initialize the monitor.

        Args:
            engine: Engine used to add repair units
            source: Health score provider
            graph: Graph receiving repair units; a dedicated maintenance
                graph is created on first use when omitted
        """
        self._engine = engine
        self._source = source
        self._graph = graph
        self._clock: Clock = engine.clock
        self._components: dict[str, ComponentHealth] = {}
        self._threshold = 30.0
        self._warning_threshold = 60.0
        self._repair_kind = REPAIR_KIND
        self._auto_repair = True
        self._watching = False

    # Builder methods

    def with_threshold(self, threshold: float, warning: float | None = None) -> RepairMonitor:
        """Health below ``threshold`` triggers repairs and counts as critical."""
        self._threshold = threshold
        if warning is not None:
            self._warning_threshold = warning
        return self

    def with_repair_kind(self, kind: str) -> RepairMonitor:
        self._repair_kind = kind
        return self

    def with_auto_repair(self, enabled: bool) -> RepairMonitor:
        self._auto_repair = enabled
        return self

    def with_clock(self, clock: Clock) -> RepairMonitor:
        self._clock = clock
        return self

    # Components

    @property
    def graph(self) -> WorkGraph | None:
        return self._graph

    @property
    def auto_repair_enabled(self) -> bool:
        return self._auto_repair

    def set_auto_repair(self, enabled: bool) -> None:
        self._auto_repair = enabled
        logger.info(f"Auto-repair {'enabled' if enabled else 'disabled'}")

    def register(self, component: ComponentHealth) -> ComponentHealth:
        component.status = classify(component.health, self._threshold, self._warning_threshold)
        self._components[component.id] = component
        return component

    def component(self, component_id: str) -> ComponentHealth:
        return self._components[component_id]

    @property
    def components(self) -> list[ComponentHealth]:
        return list(self._components.values())

    def toggle_component_auto_repair(self, component_id: str) -> bool:
        """Flip a component's auto_repair flag and return the new value."""
        component = self._components[component_id]
        component.auto_repair = not component.auto_repair
        return component.auto_repair

    def system_health(self) -> float:
        """Mean health over all components, 100.0 when none are registered."""
        if not self._components:
            return 100.0
        return sum(c.health for c in self._components.values()) / len(self._components)

    # Monitoring

    async def tick(self) -> list[WorkUnit]:
        """Pull health scores once and schedule the repairs they call for.

        Returns:
            Repair units created by this tick
        """
        scores = await self._source.health_scores()
        now = self._clock.now()
        created: list[WorkUnit] = []

        for component_id, score in scores.items():
            component = self._components.get(component_id)
            if component is None:
                component = self.register(ComponentHealth(id=component_id))

            component.health = max(0.0, min(100.0, float(score)))
            component.status = classify(
                component.health, self._threshold, self._warning_threshold
            )
            component.last_check = now

            if component.health < self._threshold and component.auto_repair and self._auto_repair:
                unit = await self.schedule_repair(component_id)
                if unit is not None:
                    created.append(unit)

        logger.debug(
            f"Health tick: {len(scores)} components, system health {self.system_health():.1f}"
        )
        return created

    def active_repair(self, component_id: str) -> WorkUnit | None:
        """The component's repair unit that has not finished yet, if any."""
        if self._graph is None:
            return None
        for unit in self._graph.units:
            if unit.metadata.get("component_id") != component_id:
                continue
            if unit.status in (UnitStatus.IDLE, UnitStatus.PENDING, UnitStatus.RUNNING):
                return unit
        return None

    async def schedule_repair(self, component_id: str) -> WorkUnit | None:
        """Add a repair unit for a component unless one is already waiting.

        Returns:
            The new unit, or None if a repair is already pending or running

        Raises:
            KeyError: If the component is unknown
            UnknownExecutor: If no executor handles the repair kind
        """
        component = self._components[component_id]

        existing = self.active_repair(component_id)
        if existing is not None:
            logger.debug(f"Repair for {component_id} already queued as {existing.id}")
            return None

        graph = await self._target_graph()
        action = component.repairs[0] if component.repairs else DEFAULT_REPAIR_ACTION

        if component.critical or component.health < self._threshold / 2:
            priority = Priority.CRITICAL
        else:
            priority = Priority.HIGH

        unit = WorkUnit(
            id=f"repair-{component_id}-{uuid7()}",
            kind=self._repair_kind,
            title=f"Repair {component.name}",
            description=f"Auto repair: {component.name}",
            priority=priority,
            params={"component_id": component_id, "action": action},
            metadata={"component_id": component_id, "health": component.health},
        )
        await self._engine.add_unit(graph, unit)

        logger.info(
            f"Scheduled repair {unit.id} for {component_id} "
            f"(health={component.health:.1f}, action={action}, priority={priority})"
        )
        return unit

    async def repair_all(self) -> list[WorkUnit]:
        """Schedule a repair for every component that is not healthy."""
        created = []
        for component in self._components.values():
            if component.status is ComponentStatus.HEALTHY:
                continue
            unit = await self.schedule_repair(component.id)
            if unit is not None:
                created.append(unit)
        return created

    async def watch(self, interval: float, iterations: int | None = None) -> None:
        """Tick every ``interval`` seconds of the injected clock.

        Runs until stop() is called, the task is cancelled, or
        ``iterations`` ticks have happened. A failing tick is logged and
        the loop keeps going.
        """
        self._watching = True
        count = 0
        try:
            while self._watching and (iterations is None or count < iterations):
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Health tick failed: {e}")
                count += 1
                if iterations is not None and count >= iterations:
                    break
                await self._clock.sleep(interval)
        finally:
            self._watching = False

    def stop(self) -> None:
        """Stop a running watch() loop after its current tick."""
        self._watching = False

    async def _target_graph(self) -> WorkGraph:
        if self._graph is None:
            self._graph = WorkGraph(id="maintenance", name="Maintenance")
        if self._graph.status is GraphStatus.DRAFT:
            await self._engine.submit(self._graph)
        return self._graph
