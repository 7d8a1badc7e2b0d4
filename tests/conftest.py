# tests/conftest.py
"""Shared test fixtures.

Deterministic time and scheduling:
- ManualScheduler: timers and spawned deliveries run only when a test says so
- MockClock: controllable wall-clock and monotonic readings

Delivery doubles:
- RecordingStrategy: a DeliveryStrategy that records bodies and answers
  with a scripted result (True, False, or an exception)

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import asyncio
import json
import os
from collections.abc import Callable, Coroutine, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from rumcore.clock import MockClock
from rumcore.config import RumSettings

COLLECTOR = "https://rum.example.com/collect"


# =============================================================================
# Scheduling
# =============================================================================


class ManualTimer:
    """Timer handle recorded by ManualScheduler."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers and background deliveries run on demand.

    Example:
        scheduler = ManualScheduler()
        transport = Transport(app_id="a", release="1", scheduler=scheduler)
        transport.track({"type": "x"})
        scheduler.fire_timers()      # debounce elapsed
        results = scheduler.run_spawned()
    """

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []
        self.spawned: list[Coroutine[Any, Any, Any]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.spawned.append(coro)

    @property
    def active_timers(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_timers(self) -> int:
        """Run every active timer callback; return how many fired."""
        due = self.active_timers
        for timer in due:
            timer.fired = True
            timer.callback()
        return len(due)

    def run_spawned(self) -> list[Any]:
        """Run spawned coroutines (and any they spawn) to completion, in order."""
        results: list[Any] = []
        while self.spawned:
            coro = self.spawned.pop(0)
            results.append(asyncio.run(coro))
        return results

    def discard(self) -> None:
        for coro in self.spawned:
            coro.close()
        self.spawned.clear()


@pytest.fixture
def scheduler() -> Iterator[ManualScheduler]:
    manual = ManualScheduler()
    yield manual
    manual.discard()


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start=100.0)


# =============================================================================
# Delivery doubles
# =============================================================================


class RecordingStrategy:
    """DeliveryStrategy double answering with a fixed outcome."""

    def __init__(self, name: str, outcome: bool | Exception = True, *, available: bool = True) -> None:
        self._name = name
        self.outcome = outcome
        self._available = available
        self.calls: list[tuple[str, str, bool]] = []
        self.closed = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return self._available

    async def send(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        return self.send_blocking(endpoint, body, urgent=urgent)

    def send_blocking(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        self.calls.append((endpoint, body, urgent))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def close(self) -> None:
        self.closed += 1

    def batches(self) -> list[dict[str, Any]]:
        """Decoded wire documents this strategy was asked to send."""
        return [json.loads(body) for _, body, _ in self.calls]


@pytest.fixture
def make_strategy() -> Callable[..., RecordingStrategy]:
    """Factory for RecordingStrategy doubles: make_strategy(name, outcome, available=...)."""
    return RecordingStrategy


@pytest.fixture
def accepting_strategy() -> RecordingStrategy:
    return RecordingStrategy("accepting")


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def rum_settings() -> RumSettings:
    """Minimal local-mode settings with no built-in producers."""
    return RumSettings(
        app_id="shop",
        release="1.4.2",
        features={"error": False, "http": False, "route": False, "console": False},
    )


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
