# src/datamanager/engine/clock.py
"""Clock abstraction for the run-duration budget.

Production code uses SystemClock (the default). Tests inject MockClock to
push a drain run past its wall-clock budget without sleeping.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract monotonic clock."""

    def monotonic(self) -> float:
        """Return monotonic time in seconds (never goes backwards)."""
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock()
        runner = IterativeDrainRunner(..., clock=clock)
        clock.advance(8 * 3600)  # budget spent
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def monotonic(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds


DEFAULT_CLOCK: Clock = SystemClock()
