# src/rumcore/transport/transport.py
"""Transport: the single path from producers to the collector.

The Transport is the central hub of the pipeline:
1. Stamps each tracked event with its ingestion time
2. Fans it out to external subscribers (independent of delivery)
3. Batches: size pressure flushes urgently, otherwise one debounced flush
4. Ships each batch through the delivery strategy chain
5. Persists batches that no strategy could deliver to the offline backlog
6. Replays that backlog once, at construction

Concurrency:
    track() never suspends. A flush takes its batch (queue swap + timer
    cancel) before the first await, so events tracked while a delivery is
    in flight start a new batch, and a batch is never shipped by both the
    size and timer paths. Producers report from any thread (thread
    excepthook, sync HTTP clients in worker pools), so queue, timer,
    counter and backlog mutation happen under one lock. Subscribers and
    deliveries run outside it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import structlog

from rumcore.clock import DEFAULT_CLOCK, Clock
from rumcore.config import RumSettings, TransportSettings
from rumcore.transport.backlog import OfflineBacklog
from rumcore.transport.delivery import DeliveryStrategy, default_strategies, ship_batch, ship_batch_blocking
from rumcore.transport.scheduler import LoopScheduler, Scheduler, TimerHandle
from rumcore.transport.storage import FileStorage, KeyValueStorage, MemoryStorage
from rumcore.transport.wire import Event, encode_batch, freeze_event, stamp_event

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_FLUSH_DELAY_SECONDS = 2.0

Subscriber = Callable[[Event], None]


class Transport:
    """Event queue, batching policy, delivery chain and subscriber fan-out.

    Only the Transport mutates its queue and its backlog.

    Example:
        >>> transport = Transport(app_id="shop", release="1.4.2", endpoint="https://rum.example.com/c")
        >>> unsubscribe = transport.subscribe(print)
        >>> transport.track({"type": "pv", "url": "https://shop.example.com/"})
        >>> await transport.flush()
    """

    def __init__(
        self,
        *,
        app_id: str,
        release: str,
        endpoint: str | None = None,
        strategies: Sequence[DeliveryStrategy] | None = None,
        backlog: OfflineBacklog | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_delay: float = DEFAULT_FLUSH_DELAY_SECONDS,
    ) -> None:
        """Initialize the transport and replay any offline backlog.

        Args:
            app_id: Application identity written into every batch
            release: Release identity written into every batch
            endpoint: Collector URL. None means local mode: batches count as
                delivered without any I/O.
            strategies: Delivery chain, tried in order. Defaults to
                beacon -> request -> pixel.
            backlog: Offline backlog. Defaults to an in-memory one.
            scheduler: Timer/task scheduler. Defaults to LoopScheduler.
            clock: Time source for event stamps and sentAt.
            batch_size: Queue length that triggers an immediate urgent flush.
            flush_delay: Quiescence delay in seconds for the debounced flush.

        Raises:
            ValueError: If batch_size < 1 or flush_delay <= 0.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if flush_delay <= 0:
            raise ValueError(f"flush_delay must be > 0, got {flush_delay}")
        self._app_id = app_id
        self._release = release
        self._endpoint = endpoint or None
        if strategies is None:
            strategies = default_strategies(TransportSettings())
        self._strategies = list(strategies)
        self._backlog = backlog if backlog is not None else OfflineBacklog(MemoryStorage())
        self._scheduler: Scheduler = scheduler if scheduler is not None else LoopScheduler()
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._batch_size = batch_size
        self._flush_delay = flush_delay

        self._lock = threading.RLock()
        self._queue: list[Event] = []
        self._timer: TimerHandle | None = None
        # Identifies the armed timer; a callback whose token is stale does nothing
        self._timer_token: object | None = None
        self._subscribers: list[Subscriber] = []
        self._closed = False

        # Health metrics
        self._events_tracked = 0
        self._batches_delivered = 0
        self._batches_persisted = 0
        self._subscriber_failures = 0

        replayed = self._backlog.take()
        self._events_replayed = len(replayed)
        if replayed:
            self._queue.extend(freeze_event(e) for e in replayed)
            logger.info("Replayed offline backlog", events=len(replayed))

    @classmethod
    def from_settings(
        cls,
        settings: RumSettings,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        storage: KeyValueStorage | None = None,
        strategies: Sequence[DeliveryStrategy] | None = None,
    ) -> Transport:
        """Build a transport from validated client settings.

        Storage defaults to FileStorage(backlog_dir) when a backlog directory
        is configured, otherwise to MemoryStorage.
        """
        tuning = settings.transport
        if storage is None:
            storage = FileStorage(tuning.backlog_dir) if tuning.backlog_dir is not None else MemoryStorage()
        return cls(
            app_id=settings.app_id,
            release=settings.release,
            endpoint=settings.endpoint,
            strategies=strategies if strategies is not None else default_strategies(tuning),
            backlog=OfflineBacklog(storage, capacity=tuning.backlog_capacity),
            scheduler=scheduler,
            clock=clock,
            batch_size=tuning.batch_size,
            flush_delay=tuning.flush_delay_ms / 1000,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def track(self, event: Mapping[str, Any]) -> Event:
        """Stamp, enqueue and fan out one event, then apply the batching policy.

        Never suspends. May trigger an immediate urgent flush when the queue
        reaches the batch size.

        Returns:
            The stamped, read-only event as it was enqueued.

        Raises:
            TypeError: If event is not a mapping.
        """
        stamped = stamp_event(event, self._clock.now_ms())
        with self._lock:
            self._queue.append(stamped)
            self._events_tracked += 1
        self._emit(stamped)

        with self._lock:
            full = len(self._queue) >= self._batch_size
            if not full:
                self._schedule()
        if full:
            self.flush_nowait(urgent=True)
        return stamped

    def _emit(self, event: Event) -> None:
        # Copy: a subscriber may unsubscribe itself while being notified
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                with self._lock:
                    self._subscriber_failures += 1
                logger.warning("Event subscriber failed", subscriber=repr(subscriber), error=str(e))

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Observe every tracked event, independent of delivery outcome.

        Returns:
            A function removing exactly this subscription. Calling it more
            than once is harmless.
        """
        self._subscribers.append(callback)
        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            # Remove this registration only, even if the same callback was added twice
            for i in range(len(self._subscribers) - 1, -1, -1):
                if self._subscribers[i] is callback:
                    del self._subscribers[i]
                    break

        return unsubscribe

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        # Caller holds the lock
        if self._timer is not None:
            return
        token = object()
        self._timer_token = token
        self._timer = self._scheduler.call_later(self._flush_delay, lambda: self._on_timer(token))

    def _on_timer(self, token: object) -> None:
        with self._lock:
            if token is not self._timer_token:
                return
            self._timer = None
            self._timer_token = None
        self.flush_nowait(urgent=False)

    def _cancel_timer(self) -> None:
        # Caller holds the lock
        self._timer_token = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _take_batch(self) -> list[Event]:
        """Atomically remove the whole queue as one batch and cancel the timer."""
        with self._lock:
            self._cancel_timer()
            if not self._queue:
                return []
            batch, self._queue = self._queue, []
            return batch

    async def flush(self, urgent: bool = False) -> bool:
        """Deliver everything queued right now as one batch.

        Returns:
            True if the queue was empty or the batch was delivered, False if
            it had to be persisted to the offline backlog.
        """
        batch = self._take_batch()
        if not batch:
            return True
        return await self._deliver(batch, urgent)

    def flush_nowait(self, urgent: bool = False) -> None:
        """Take the current batch now and deliver it in the background."""
        batch = self._take_batch()
        if batch:
            self._scheduler.spawn(self._deliver(batch, urgent))

    def flush_blocking(self, urgent: bool = True) -> bool:
        """Deliver the current batch on the calling thread, without a loop.

        Used for process exit: returns only once the batch was shipped or
        persisted, and starts no threads.

        Returns:
            Same as flush().
        """
        batch = self._take_batch()
        if not batch:
            return True
        if self._endpoint is None:
            delivered = True
        else:
            body = encode_batch(self._app_id, self._release, batch, self._clock.now_ms())
            delivered = ship_batch_blocking(self._strategies, self._endpoint, body, urgent=urgent)
        return self._settle(batch, delivered, urgent)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, batch: list[Event], urgent: bool) -> bool:
        return self._settle(batch, await self._ship_batch(batch, urgent), urgent)

    def _settle(self, batch: list[Event], delivered: bool, urgent: bool) -> bool:
        """Count a delivered batch, or persist an undelivered one."""
        with self._lock:
            if delivered:
                self._batches_delivered += 1
                return True
            retained = self._backlog.persist(batch)
            self._batches_persisted += 1
        logger.warning(
            "Batch delivery failed - persisted to offline backlog",
            events=len(batch),
            backlog_size=retained,
            urgent=urgent,
        )
        return False

    async def _ship_batch(self, batch: list[Event], urgent: bool) -> bool:
        if self._endpoint is None:
            return True
        body = encode_batch(self._app_id, self._release, batch, self._clock.now_ms())
        return await ship_batch(self._strategies, self._endpoint, body, urgent=urgent)

    # ------------------------------------------------------------------
    # Lifecycle and introspection
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Cancel the debounce timer and release strategy resources.

        Idempotent. Events already queued stay queued; call flush first.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timer()
        for strategy in self._strategies:
            try:
                strategy.close()
            except Exception as e:
                logger.warning("Delivery strategy close failed", strategy=strategy.name, error=str(e))

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def pending(self) -> int:
        """Number of events waiting for the next flush."""
        return len(self._queue)

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    @property
    def stats(self) -> dict[str, Any]:
        """Snapshot of transport health metrics."""
        with self._lock:
            return {
                "events_tracked": self._events_tracked,
                "events_replayed": self._events_replayed,
                "batches_delivered": self._batches_delivered,
                "batches_persisted": self._batches_persisted,
                "subscriber_failures": self._subscriber_failures,
                "subscribers": len(self._subscribers),
                "queue_depth": len(self._queue),
            }
