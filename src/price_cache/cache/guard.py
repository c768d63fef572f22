"""Single-flight guard: at most one refresh cycle in flight.

Usage:
    guard = SingleFlight("refresh")

    if not guard.try_acquire():
        return  # previous cycle still running
    try:
        await engine.refresh_prices()
    finally:
        guard.release()
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SingleFlight:
    """Non-blocking mutual exclusion for one event loop.

    Acquisition never waits: a caller that finds the guard held is
    expected to skip its work, not queue behind it. Check-and-set happens
    without an await in between, so it is atomic on a single loop.
    """

    def __init__(self, name: str = "refresh") -> None:
        self.name = name
        self._held = False
        self.acquired_count = 0
        self.suppressed_count = 0

    @property
    def busy(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            self.suppressed_count += 1
            return False
        self._held = True
        self.acquired_count += 1
        return True

    def release(self) -> None:
        if not self._held:
            raise RuntimeError(f"SingleFlight {self.name!r} released while not held")
        self._held = False

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True if acquired (and release on exit), else False."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
