# src/rumcore/transport/scheduler.py
"""Cooperative scheduling for the transport.

The pipeline prefers a single asyncio loop: track() is synchronous, and the
only suspension point is a batch delivery. The Scheduler protocol isolates
the two things the transport needs from the loop (a cancellable delayed
callback and fire-and-forget coroutine execution) so tests can drive time
by hand.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class TimerHandle(Protocol):
    """Handle returned by Scheduler.call_later."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Delayed callbacks and background coroutine execution.

    Implementations:
    - LoopScheduler: asyncio running loop, or threads without one (production)
    - ManualScheduler (tests): timers and spawned coroutines run on demand
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle | None:
        """Schedule callback after delay seconds.

        Returns None if no timer could be scheduled.
        """
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run coro without the caller awaiting it."""
        ...


def running_loop() -> asyncio.AbstractEventLoop | None:
    """Return the loop running in this thread, or None."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class LoopScheduler:
    """Scheduler bound to whichever asyncio loop is running at call time.

    Without a running loop (plain scripts, WSGI workers, worker threads):
    - call_later() arms a daemon threading.Timer, so the debounced flush
      still happens
    - spawn() runs the coroutine on its own non-daemon "rum-delivery"
      thread; the interpreter waits for it at exit, so a batch in flight is
      still shipped or persisted

    Thread Safety:
        Safe to call from any thread. Callbacks run on the loop or on a
        timer thread; callers synchronize their own state.
    """

    def __init__(self) -> None:
        # Strong references so pending deliveries are not garbage collected
        self._tasks: set[asyncio.Task[Any]] = set()
        self._threads: set[threading.Thread] = set()
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle | None:
        loop = running_loop()
        if loop is not None:
            return loop.call_later(delay, callback)
        timer = threading.Timer(delay, callback)
        timer.name = "rum-flush-timer"
        timer.daemon = True
        try:
            timer.start()
        except RuntimeError as e:
            # Interpreter shutdown: no new threads, the exit flush takes over
            logger.debug("Flush timer not started", error=str(e))
            return None
        return timer

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        loop = running_loop()
        if loop is not None:
            task = loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        thread = threading.Thread(target=self._run, args=(coro,), name="rum-delivery")
        with self._lock:
            self._threads.add(thread)
        try:
            thread.start()
        except RuntimeError:
            with self._lock:
                self._threads.discard(thread)
            asyncio.run(coro)

    def _run(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            asyncio.run(coro)
        except Exception as e:
            logger.error("Background delivery failed", error=str(e), exc_info=True)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    @property
    def pending(self) -> int:
        """Number of spawned coroutines not yet finished."""
        with self._lock:
            return len(self._tasks) + len(self._threads)

    async def join(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) is done."""
        while self._tasks:
            results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error("Background delivery task failed", error=str(result))

    def join_threads(self, timeout: float | None = None) -> None:
        """Wait for delivery threads started without a running loop."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
