"""Clock abstraction for time reads and waits.

Every component that sleeps or measures elapsed time goes through a
``Clock`` so tests can drive time with ``FakeClock`` instead of waiting.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic time and blocking waits."""

    def now(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real clock backed by ``time.monotonic`` and ``time.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class FakeClock:
    """Advanceable clock for tests.

    ``sleep`` advances the clock instantly and records the requested
    duration so tests can assert on waits.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleeps.append(seconds)
            self._now += seconds

    def advance(self, seconds: float) -> None:
        self._now += seconds

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)
