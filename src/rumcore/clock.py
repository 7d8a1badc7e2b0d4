# src/rumcore/clock.py
"""Clock abstraction for testable time-dependent logic.

Two readings are needed by the pipeline:
- now_ms(): wall-clock epoch milliseconds, stamped on events and batches
- monotonic(): elapsed-time source for dedup windows and durations

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock used by the transport, deduplicator and producers."""

    def now_ms(self) -> int:
        """Return wall-clock time as integer epoch milliseconds."""
        ...

    def monotonic(self) -> float:
        """Return monotonic time in seconds.

        Must never go backwards. Corresponds to time.monotonic().
        """
        ...


class SystemClock:
    """Production clock backed by the time module."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Both readings advance together, so a test that moves time forward by
    1.5 seconds sees now_ms() grow by 1500.

    Example:
        clock = MockClock(start=0.0)
        dedup = FingerprintDeduplicator(clock=clock)

        dedup.should_suppress("k")  # False, recorded at t=0
        clock.advance(9.9)
        dedup.should_suppress("k")  # True, still inside the 10s window
    """

    def __init__(self, start: float = 0.0, *, epoch_ms: int = 1_700_000_000_000) -> None:
        """Initialize mock clock.

        Args:
            start: Initial monotonic time value in seconds.
            epoch_ms: Wall-clock reading that corresponds to ``start``.
        """
        self._start = start
        self._current = start
        self._epoch_ms = epoch_ms

    def now_ms(self) -> int:
        return self._epoch_ms + int(round((self._current - self._start) * 1000))

    def monotonic(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
