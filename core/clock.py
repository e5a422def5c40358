"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for the reconciliation engine.

- Snapshot, issue and report timestamps come from the clock
- The polling loop waits through the clock
- Tests swap in MockClock for deterministic time and instant waits

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only, timezone-aware datetimes
- Passed in explicitly, never looked up globally

============================================================
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """What the engine needs from time: a reading and a wait."""

    @abstractmethod
    def now(self) -> datetime:
        """Current aware UTC datetime."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task."""
        pass

    def timestamp(self) -> float:
        return self.now().timestamp()

    def elapsed_since(self, then: Optional[datetime]) -> Optional[timedelta]:
        """Age of a timestamp such as a cached snapshot's taken_at."""
        if then is None:
            return None
        return self.now() - as_utc(then)


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Wall-clock time; sleep() really waits."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Manually driven clock.

    sleep() moves mocked time forward by the requested amount, records it
    in `sleeps`, and yields once to the event loop instead of waiting.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = as_utc(initial_time or datetime.now(timezone.utc))
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)

    def set_time(self, new_time: datetime) -> None:
        self._time = as_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """Move time forward; kwargs go to timedelta (minutes=, hours=, ...)."""
        self._time += timedelta(seconds=seconds, **kwargs)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "as_utc",
]
