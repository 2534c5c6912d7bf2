"""Clock and timer sources for retry loops.

The engine reads elapsed time and sleeps only through a Clock, so tests
can substitute a recording or virtual clock.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Protocol for time sources.

    now() must be monotonic; sleep() must last at least `seconds`.
    """

    def now(self) -> float:
        """Current reading in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Monotonic wall clock backed by time.monotonic and asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


@dataclass(slots=True)
class RecordingClock:
    """Clock that delegates to another clock and records every sleep.

    Attributes:
        inner: Clock doing the actual timekeeping (default: SystemClock)
        requested: Durations passed to sleep(), in call order
        completed: Durations of sleeps that ran to completion
        cancelled: Durations of sleeps interrupted by cancellation
    """

    inner: Clock = field(default_factory=SystemClock)
    requested: list[float] = field(default_factory=list)
    completed: list[float] = field(default_factory=list)
    cancelled: list[float] = field(default_factory=list)

    def now(self) -> float:
        return self.inner.now()

    async def sleep(self, seconds: float) -> None:
        self.requested.append(seconds)
        try:
            await self.inner.sleep(seconds)
        except asyncio.CancelledError:
            self.cancelled.append(seconds)
            raise
        self.completed.append(seconds)


SYSTEM_CLOCK = SystemClock()
