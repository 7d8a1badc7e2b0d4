# src/rumcore/transport/delivery.py
"""Delivery strategy chain for shipping batches to the collector.

Strategies are attempted in a fixed order and the first success wins:

1. BeaconStrategy: hand the payload to a background sender thread. The
   outcome reported is the collector's answer, not mere acceptance, so a
   beacon that fails after queueing still falls through the chain.
2. RequestStrategy: a regular POST. Keep-alive is requested only for urgent
   flushes; normal flushes ask the server to close the connection.
3. PixelStrategy: GET with the payload in the ``d`` query parameter and a
   bounded wait. Any HTTP answer, or the wait elapsing, counts as done.

Every strategy has two entry points. send() is a coroutine used by normal
flushes. send_blocking() uses only the calling thread (sync httpx client, no
new threads), which is what the process-exit flush needs: atexit handlers
cannot start threads.

A strategy that raises is treated the same as one that returns False.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import queue
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
import structlog

from rumcore.transport.wire import INTERNAL_HEADER

if TYPE_CHECKING:
    from rumcore.config import TransportSettings

logger = structlog.get_logger(__name__)

JSON_HEADERS = {"content-type": "application/json", INTERNAL_HEADER: "1"}


@runtime_checkable
class DeliveryStrategy(Protocol):
    """One mechanism for getting a batch to the collector.

    Error handling:
        - send()/send_blocking() return True on success and False on rejection
        - either may raise; the chain logs and moves on
        - close() MUST be idempotent
    """

    @property
    def name(self) -> str: ...

    @property
    def available(self) -> bool:
        """False when the mechanism cannot be used at all right now."""
        ...

    async def send(self, endpoint: str, body: str, *, urgent: bool) -> bool: ...

    def send_blocking(self, endpoint: str, body: str, *, urgent: bool) -> bool: ...

    def close(self) -> None: ...


_Outcome = concurrent.futures.Future[bool]


class BeaconSender:
    """POST sender backed by one background thread.

    submit() never blocks: it queues the payload and returns a future that
    resolves to the collector's verdict (True for 2xx). The worker thread is
    started lazily and is a daemon, so it can never hold interpreter
    shutdown hostage; close() drains it with a bounded wait instead.

    Thread Safety:
        submit(), send() and close() may be called from any thread. The
        httpx client is owned by the worker thread.
    """

    MAX_PAYLOAD_BYTES = 64 * 1024

    def __init__(self, *, timeout: float = 5.0, max_pending: int = 64) -> None:
        self._timeout = timeout
        self._queue: queue.Queue[tuple[str, bytes, _Outcome] | None] = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()
        self._start_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._sent = 0
        self._failed = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def running(self) -> bool:
        """True while the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def timeout(self) -> float:
        return self._timeout

    def submit(self, url: str, body: str, *, start: bool = True) -> _Outcome | None:
        """Queue body for POSTing to url.

        Args:
            start: Start the worker if it is not running yet. With False a
                payload is only accepted by an already running worker.

        Returns:
            A future resolving to the delivery verdict, or None if the
            sender is closed, the payload exceeds MAX_PAYLOAD_BYTES, the
            worker is not running (start=False), or the queue is full.
        """
        if self._closed.is_set():
            return None
        data = body.encode("utf-8")
        if len(data) > self.MAX_PAYLOAD_BYTES:
            return None
        if start:
            self._ensure_started()
        elif not self.running:
            return None
        outcome: _Outcome = concurrent.futures.Future()
        try:
            self._queue.put_nowait((url, data, outcome))
        except queue.Full:
            return None
        return outcome

    def send(self, url: str, body: str) -> bool:
        """Queue body without waiting; True if it was accepted."""
        return self.submit(url, body) is not None

    def _ensure_started(self) -> None:
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="rum-beacon", daemon=True)
                self._thread.start()

    def _run(self) -> None:
        with httpx.Client(timeout=self._timeout) as client:
            while True:
                item = self._queue.get()
                try:
                    if item is None:  # Shutdown sentinel
                        break
                    url, data, outcome = item
                    if not outcome.set_running_or_notify_cancel():
                        continue
                    try:
                        response = client.post(url, content=data, headers=JSON_HEADERS)
                    except httpx.HTTPError as e:
                        self._failed += 1
                        logger.debug("Beacon send failed", error=str(e))
                        outcome.set_result(False)
                        continue
                    except Exception as e:
                        self._failed += 1
                        outcome.set_exception(e)
                        continue
                    if response.is_success:
                        self._sent += 1
                    else:
                        self._failed += 1
                        logger.debug("Beacon rejected by collector", status=response.status_code)
                    outcome.set_result(response.is_success)
                finally:
                    self._queue.task_done()

    def close(self, timeout: float = 2.0) -> None:
        """Stop accepting payloads, then wait (bounded) for queued ones to go out."""
        if self._closed.is_set():
            return
        self._closed.set()
        if self._thread is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Beacon queue still full at close, pending payloads abandoned")
            return
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Beacon sender did not exit within timeout", pending=self._queue.qsize())

    @property
    def stats(self) -> dict[str, int]:
        return {"sent": self._sent, "failed": self._failed, "pending": self._queue.qsize()}


class BeaconStrategy:
    """Strategy 1: POST through a BeaconSender and wait for its verdict.

    The wait is bounded by the sender's request timeout plus a margin. A
    verdict that does not arrive in time counts as a failure, so the batch
    moves on to the next strategy (at worst the collector sees it twice;
    it is never lost).
    """

    _name = "beacon"
    WAIT_MARGIN = 1.0

    def __init__(self, sender: BeaconSender) -> None:
        self._sender = sender

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return not self._sender.closed

    @property
    def _wait(self) -> float:
        return self._sender.timeout + self.WAIT_MARGIN

    async def send(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        outcome = self._sender.submit(endpoint, body)
        if outcome is None:
            return False
        try:
            return await asyncio.wait_for(asyncio.wrap_future(outcome), timeout=self._wait)
        except TimeoutError:
            logger.debug("Beacon verdict timed out", wait=self._wait)
            return False

    def send_blocking(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        # Never starts the worker: this path runs during interpreter shutdown
        outcome = self._sender.submit(endpoint, body, start=False)
        if outcome is None:
            return False
        try:
            return outcome.result(timeout=self._wait)
        except concurrent.futures.TimeoutError:
            outcome.cancel()
            logger.debug("Beacon verdict timed out", wait=self._wait)
            return False

    def close(self) -> None:
        self._sender.close()


class RequestStrategy:
    """Strategy 2: POST the batch and require a 2xx answer."""

    _name = "request"

    def __init__(self, *, timeout: float = 5.0) -> None:
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return True

    def _headers(self, urgent: bool) -> dict[str, str]:
        return {**JSON_HEADERS, "connection": "keep-alive" if urgent else "close"}

    async def send(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        # A client per delivery: deliveries can run on different event loops
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(endpoint, content=body.encode("utf-8"), headers=self._headers(urgent))
        return response.is_success

    def send_blocking(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        with httpx.Client(timeout=self._timeout) as client:
            response = client.post(endpoint, content=body.encode("utf-8"), headers=self._headers(urgent))
        return response.is_success

    def close(self) -> None:
        pass


class PixelStrategy:
    """Strategy 3: GET ``endpoint?d=<payload>`` with a bounded wait.

    Completion is either an HTTP answer (success or error status) or the
    wait running out. A connection that cannot be made at all raises, and
    the chain falls through to the backlog.
    """

    _name = "pixel"

    def __init__(self, *, timeout: float = 1.2) -> None:
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return True

    def _answered(self, response: httpx.Response) -> bool:
        if not response.is_success:
            logger.debug("Pixel fallback answered with error status", status=response.status_code)
        return True

    async def send(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await asyncio.wait_for(
                    client.get(endpoint, params={"d": body}, headers={INTERNAL_HEADER: "1"}),
                    timeout=self._timeout,
                )
            except (TimeoutError, httpx.TimeoutException):
                logger.debug("Pixel fallback wait elapsed", timeout=self._timeout)
                return True
        return self._answered(response)

    def send_blocking(self, endpoint: str, body: str, *, urgent: bool) -> bool:
        with httpx.Client(timeout=self._timeout) as client:
            try:
                response = client.get(endpoint, params={"d": body}, headers={INTERNAL_HEADER: "1"})
            except httpx.TimeoutException:
                logger.debug("Pixel fallback wait elapsed", timeout=self._timeout)
                return True
        return self._answered(response)

    def close(self) -> None:
        pass


async def ship_batch(
    strategies: Sequence[DeliveryStrategy],
    endpoint: str,
    body: str,
    *,
    urgent: bool = False,
) -> bool:
    """Try each available strategy in order; True on the first success."""
    for strategy in strategies:
        if not strategy.available:
            continue
        try:
            if await strategy.send(endpoint, body, urgent=urgent):
                return True
            logger.debug("Delivery strategy rejected batch", strategy=strategy.name, urgent=urgent)
        except Exception as e:
            logger.debug("Delivery strategy failed", strategy=strategy.name, error=str(e))
    return False


def ship_batch_blocking(
    strategies: Sequence[DeliveryStrategy],
    endpoint: str,
    body: str,
    *,
    urgent: bool = True,
) -> bool:
    """ship_batch on the calling thread, without an event loop."""
    for strategy in strategies:
        if not strategy.available:
            continue
        try:
            if strategy.send_blocking(endpoint, body, urgent=urgent):
                return True
            logger.debug("Delivery strategy rejected batch", strategy=strategy.name, urgent=urgent)
        except Exception as e:
            logger.debug("Delivery strategy failed", strategy=strategy.name, error=str(e))
    return False


def default_strategies(settings: TransportSettings) -> list[DeliveryStrategy]:
    """Build the standard beacon -> request -> pixel chain from settings."""
    request_timeout = settings.request_timeout_ms / 1000
    strategies: list[DeliveryStrategy] = []
    if settings.beacon:
        strategies.append(BeaconStrategy(BeaconSender(timeout=request_timeout)))
    strategies.append(RequestStrategy(timeout=request_timeout))
    strategies.append(PixelStrategy(timeout=settings.pixel_timeout_ms / 1000))
    return strategies
