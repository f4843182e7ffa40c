"""Injectable wall clock for time-dependent token logic."""

import time
from collections.abc import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    """Return the current Unix timestamp."""
    return time.time()


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: float | None = None) -> None:
        self._now = time.time() if start is None else start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = timestamp
