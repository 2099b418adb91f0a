"""
Clock abstraction for timestamps, backoff delays and periodic ticks.

The engine never calls ``datetime.now()`` or ``asyncio.sleep()`` directly
for anything observable; it asks an injected Clock. Production code uses
SystemClock, tests use ManualClock so time can be advanced
deterministically instead of waiting on wall-clock timers.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

__all__ = ["Clock", "SystemClock", "ManualClock"]


@runtime_checkable
class Clock(Protocol):
    """Source of time for the engine."""

    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        ...


class SystemClock:
    """Wall-clock time and real asyncio sleeps."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    def __repr__(self) -> str:
        return "SystemClock"


class ManualClock:
    """Virtual clock for deterministic tests.

    With ``auto_advance=True`` (the default) every ``sleep()`` moves the
    clock forward by the requested amount and returns after yielding to the
    event loop once, so backoff delays cost no real time.

    With ``auto_advance=False`` sleepers stay suspended until the test
    calls ``advance()`` past their wake-up time.

    Usage:
        clock = ManualClock()
        engine = Engine(store, registry).with_clock(clock)
        clock.advance(60)
    """

    def __init__(self, start: datetime | None = None, auto_advance: bool = True):
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._auto_advance = auto_advance
        self._changed = asyncio.Event()

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward and wake sleepers whose time has come."""
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now = self._now + timedelta(seconds=seconds)
        self._changed.set()
        return self._now

    async def sleep(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=max(0.0, seconds))

        if self._auto_advance:
            if target > self._now:
                self._now = target
            await asyncio.sleep(0)
            return

        while self._now < target:
            self._changed.clear()
            await self._changed.wait()

    def __repr__(self) -> str:
        return f"ManualClock({self._now.isoformat()})"
