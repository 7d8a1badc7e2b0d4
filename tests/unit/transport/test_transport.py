"""Tests for Transport batching, delivery and backlog behavior.

Tests cover:
- track(): stamping, fan-out, subscriber isolation
- Batching threshold: 20 events -> one urgent flush of 20, empty queue
- Debounce idempotence: one timer for many events, one batch
- Timer cancellation by urgent flushes (no double delivery)
- Delivery fallback and persistence to the offline backlog
- Backlog replay at construction
- Local mode (no endpoint)
- Blocking flush for process exit
- Debounce and background delivery without a running loop
- Conservation under concurrent producers
"""

import asyncio
import json
import threading
import time

import pytest

from rumcore.clock import MockClock
from rumcore.config import RumSettings
from rumcore.transport import OFFLINE_KEY, FileStorage, LoopScheduler, MemoryStorage, OfflineBacklog, Transport

ENDPOINT = "https://rum.example.com/collect"


@pytest.fixture
def make_transport(scheduler, clock, make_strategy):
    """Build a Transport wired to the manual scheduler and mock clock."""

    def _make(**kwargs):
        kwargs.setdefault("app_id", "shop")
        kwargs.setdefault("release", "1.4.2")
        kwargs.setdefault("endpoint", ENDPOINT)
        kwargs.setdefault("strategies", [make_strategy("accepting", True)])
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("clock", clock)
        return Transport(**kwargs)

    return _make


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    @pytest.mark.parametrize(("kwargs", "match"), [({"batch_size": 0}, "batch_size"), ({"flush_delay": 0}, "flush_delay")])
    def test_rejects_bad_tuning(self, make_transport, kwargs, match) -> None:
        with pytest.raises(ValueError, match=match):
            make_transport(**kwargs)

    def test_empty_endpoint_is_local_mode(self, make_transport) -> None:
        assert make_transport(endpoint="").endpoint is None

    def test_from_settings_uses_tuning(self, scheduler, clock, make_strategy) -> None:
        settings = RumSettings(
            app_id="shop",
            release="1",
            endpoint=ENDPOINT,
            transport={"batch_size": 3, "flush_delay_ms": 500, "backlog_capacity": 10},
        )
        transport = Transport.from_settings(
            settings, scheduler=scheduler, clock=clock, strategies=[make_strategy("ok", True)]
        )

        for i in range(2):
            transport.track({"type": "e", "n": i})

        assert scheduler.timers[0].delay == 0.5
        transport.track({"type": "e", "n": 2})
        assert transport.pending == 0


# =============================================================================
# Ingestion and Fan-out
# =============================================================================


class TestTrack:
    def test_stamps_with_clock(self, make_transport, clock: MockClock) -> None:
        transport = make_transport()
        stamped = transport.track({"type": "pv"})
        assert stamped["t"] == clock.now_ms()

    def test_rejects_non_mapping(self, make_transport) -> None:
        with pytest.raises(TypeError):
            make_transport().track("not an event")

    def test_subscribers_see_every_event(self, make_transport) -> None:
        transport = make_transport()
        seen_a: list = []
        seen_b: list = []
        transport.subscribe(seen_a.append)
        transport.subscribe(seen_b.append)

        first = transport.track({"type": "a"})
        second = transport.track({"type": "b"})

        assert seen_a == [first, second]
        assert seen_b == [first, second]

    def test_unsubscribe_removes_only_that_subscription(self, make_transport) -> None:
        transport = make_transport()
        seen: list = []
        unsubscribe_first = transport.subscribe(seen.append)
        transport.subscribe(seen.append)

        unsubscribe_first()
        unsubscribe_first()
        transport.track({"type": "a"})

        assert len(seen) == 1
        assert transport.stats["subscribers"] == 1

    def test_failing_subscriber_is_isolated(self, make_transport) -> None:
        transport = make_transport()
        seen: list = []

        def broken(event) -> None:
            raise RuntimeError("subscriber bug")

        transport.subscribe(broken)
        transport.subscribe(seen.append)
        transport.track({"type": "a"})

        assert len(seen) == 1
        assert transport.stats["subscriber_failures"] == 1

    def test_fan_out_without_endpoint(self, make_transport, make_strategy) -> None:
        """Subscribers receive events in local mode, where delivery is a no-op."""
        strategy = make_strategy("ok", True)
        transport = make_transport(endpoint=None, strategies=[strategy])
        seen: list = []
        transport.subscribe(seen.append)

        for i in range(3):
            transport.track({"type": "e", "n": i})
        delivered = asyncio.run(transport.flush())

        assert [e["n"] for e in seen] == [0, 1, 2]
        assert delivered is True
        assert strategy.calls == []
        assert transport.stats["batches_delivered"] == 1


# =============================================================================
# Batching Policy
# =============================================================================


class TestBatching:
    def test_threshold_triggers_one_urgent_flush_of_twenty(self, make_transport, scheduler, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])

        for i in range(20):
            transport.track({"type": "e", "n": i})

        assert transport.pending == 0
        assert len(scheduler.spawned) == 1
        assert scheduler.run_spawned() == [True]

        assert len(strategy.calls) == 1
        _, body, urgent = strategy.calls[0]
        assert urgent is True
        assert [e["n"] for e in json.loads(body)["events"]] == list(range(20))

    def test_threshold_flush_cancels_debounce_timer(self, make_transport, scheduler) -> None:
        transport = make_transport()

        for i in range(20):
            transport.track({"type": "e", "n": i})

        assert len(scheduler.timers) == 1
        assert scheduler.timers[0].cancelled is True
        assert transport.timer_pending is False

    def test_debounce_schedules_exactly_one_timer(self, make_transport, scheduler, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])

        for i in range(5):
            transport.track({"type": "e", "n": i})

        assert len(scheduler.timers) == 1
        assert scheduler.timers[0].delay == 2.0
        assert transport.timer_pending is True

        assert scheduler.fire_timers() == 1
        scheduler.run_spawned()

        assert len(strategy.calls) == 1
        _, body, urgent = strategy.calls[0]
        assert urgent is False
        assert len(json.loads(body)["events"]) == 5
        assert transport.timer_pending is False

    def test_new_timer_after_debounced_flush(self, make_transport, scheduler) -> None:
        transport = make_transport()
        transport.track({"type": "a"})
        scheduler.fire_timers()
        scheduler.run_spawned()

        transport.track({"type": "b"})

        assert len(scheduler.active_timers) == 1

    def test_no_double_delivery_when_timer_and_threshold_race(self, make_transport, scheduler, make_strategy) -> None:
        """A timer callback that fires after an urgent flush finds an empty queue."""
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])
        transport.track({"type": "e"})
        stale_timer = scheduler.timers[0]

        asyncio.run(transport.flush(urgent=True))
        stale_timer.callback()  # fires anyway in the same tick
        scheduler.run_spawned()

        assert len(strategy.calls) == 1

    def test_flush_on_empty_queue_is_noop(self, make_transport, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])

        assert asyncio.run(transport.flush()) is True
        assert strategy.calls == []

    def test_events_tracked_during_delivery_start_a_new_batch(self, make_transport) -> None:
        class GatedStrategy:
            name = "gated"
            available = True

            def __init__(self) -> None:
                self.bodies: list[str] = []
                self.gate: asyncio.Event | None = None

            async def send(self, endpoint, body, *, urgent):
                self.bodies.append(body)
                assert self.gate is not None
                await self.gate.wait()
                return True

            def close(self) -> None:
                pass

        strategy = GatedStrategy()
        transport = make_transport(strategies=[strategy])
        transport.track({"type": "first"})

        async def main() -> None:
            strategy.gate = asyncio.Event()
            flush = asyncio.ensure_future(transport.flush())
            await asyncio.sleep(0)  # flush takes its batch and suspends in send()
            transport.track({"type": "second"})
            strategy.gate.set()
            await flush

        asyncio.run(main())

        assert len(strategy.bodies) == 1
        assert [e["type"] for e in json.loads(strategy.bodies[0])["events"]] == ["first"]
        assert transport.pending == 1


# =============================================================================
# Delivery and Backlog
# =============================================================================


class TestDeliveryFallback:
    def test_third_strategy_success_persists_nothing(self, make_transport, make_strategy) -> None:
        storage = MemoryStorage()
        chain = [make_strategy("beacon", False), make_strategy("request", RuntimeError("503")), make_strategy("pixel", True)]
        transport = make_transport(strategies=chain, backlog=OfflineBacklog(storage))
        transport.track({"type": "e"})

        assert asyncio.run(transport.flush()) is True
        assert storage.get_item(OFFLINE_KEY) is None
        assert [len(s.calls) for s in chain] == [1, 1, 1]

    def test_all_strategies_failing_persists_batch(self, make_transport, make_strategy) -> None:
        storage = MemoryStorage()
        backlog = OfflineBacklog(storage)
        transport = make_transport(strategies=[make_strategy("a", False), make_strategy("b", False)], backlog=backlog)
        transport.track({"type": "e", "n": 1})
        transport.track({"type": "e", "n": 2})

        assert asyncio.run(transport.flush()) is False
        assert [e["n"] for e in backlog.peek()] == [1, 2]
        assert transport.stats["batches_persisted"] == 1

    def test_wire_document(self, make_transport, make_strategy, clock: MockClock) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])
        transport.track({"type": "pv"})
        clock.advance(1.0)

        asyncio.run(transport.flush())

        endpoint, body, _ = strategy.calls[0]
        document = json.loads(body)
        assert endpoint == ENDPOINT
        assert document["appId"] == "shop"
        assert document["release"] == "1.4.2"
        assert document["sentAt"] == clock.now_ms()
        assert document["events"][0]["type"] == "pv"


class TestBacklogReplay:
    def test_backlog_is_replayed_before_new_events(self, make_transport, make_strategy) -> None:
        storage = MemoryStorage()
        OfflineBacklog(storage).persist([{"type": "old", "t": 1}])
        strategy = make_strategy("ok", True)

        transport = make_transport(strategies=[strategy], backlog=OfflineBacklog(storage))
        transport.track({"type": "new"})
        asyncio.run(transport.flush())

        assert storage.get_item(OFFLINE_KEY) is None
        assert [e["type"] for e in json.loads(strategy.calls[0][1])["events"]] == ["old", "new"]
        assert transport.stats["events_replayed"] == 1

    def test_replayed_events_are_queued(self, make_transport) -> None:
        storage = MemoryStorage()
        OfflineBacklog(storage).persist([{"type": "old", "t": 1}])

        transport = make_transport(backlog=OfflineBacklog(storage))

        assert transport.pending == 1

    def test_failed_session_is_delivered_by_the_next_one(self, make_transport, make_strategy) -> None:
        storage = MemoryStorage()
        offline = make_transport(strategies=[make_strategy("down", False)], backlog=OfflineBacklog(storage))
        offline.track({"type": "lost?"})
        asyncio.run(offline.flush())

        online_strategy = make_strategy("up", True)
        online = make_transport(strategies=[online_strategy], backlog=OfflineBacklog(storage))

        assert asyncio.run(online.flush()) is True
        assert [e["type"] for e in json.loads(online_strategy.calls[0][1])["events"]] == ["lost?"]

    def test_undecodable_backlog_file_does_not_block_construction(self, make_transport, tmp_path) -> None:
        (tmp_path / f"{OFFLINE_KEY}.json").write_bytes(b'[{"type":"x","m":"\xff\xfe"}]')

        transport = make_transport(backlog=OfflineBacklog(FileStorage(tmp_path)))

        assert transport.pending == 0
        assert transport.stats["events_replayed"] == 0
        assert not (tmp_path / f"{OFFLINE_KEY}.json").exists()


# =============================================================================
# Lifecycle
# =============================================================================


class TestClose:
    def test_close_releases_strategies_once(self, make_transport, make_strategy, scheduler) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])
        transport.track({"type": "e"})

        transport.close()
        transport.close()

        assert strategy.closed == 1
        assert transport.timer_pending is False
        assert transport.pending == 1

    def test_close_survives_strategy_errors(self, make_transport, make_strategy) -> None:
        class Exploding:
            name = "exploding"
            available = True

            async def send(self, endpoint, body, *, urgent):
                return True

            def close(self):
                raise RuntimeError("boom")

        other = make_strategy("other", True)
        transport = make_transport(strategies=[Exploding(), other])

        transport.close()

        assert other.closed == 1

    def test_stats_snapshot(self, make_transport) -> None:
        transport = make_transport()
        transport.track({"type": "e"})

        assert transport.stats == {
            "events_tracked": 1,
            "events_replayed": 0,
            "batches_delivered": 0,
            "batches_persisted": 0,
            "subscriber_failures": 0,
            "subscribers": 0,
            "queue_depth": 1,
        }


# =============================================================================
# Blocking Flush (process exit)
# =============================================================================


class TestFlushBlocking:
    def test_delivers_on_calling_thread(self, make_transport, scheduler, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(strategies=[strategy])
        transport.track({"type": "custom"})

        assert transport.flush_blocking() is True

        assert scheduler.spawned == []
        assert len(strategy.calls) == 1
        _, body, urgent = strategy.calls[0]
        assert urgent is True
        assert [e["type"] for e in json.loads(body)["events"]] == ["custom"]
        assert transport.pending == 0
        assert transport.timer_pending is False
        assert transport.stats["batches_delivered"] == 1

    def test_undelivered_batch_is_persisted(self, make_transport, make_strategy) -> None:
        storage = MemoryStorage()
        transport = make_transport(
            strategies=[make_strategy("down", False), make_strategy("broken", OSError("refused"))],
            backlog=OfflineBacklog(storage),
        )
        transport.track({"type": "custom"})

        assert transport.flush_blocking() is False

        assert [e["type"] for e in OfflineBacklog(storage).peek()] == ["custom"]
        assert transport.stats["batches_persisted"] == 1

    def test_empty_queue_and_local_mode(self, make_transport, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        transport = make_transport(endpoint=None, strategies=[strategy])

        assert transport.flush_blocking() is True
        transport.track({"type": "custom"})
        assert transport.flush_blocking() is True

        assert strategy.calls == []


# =============================================================================
# Without a Running Loop
# =============================================================================


def wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


class TestWithoutRunningLoop:
    def test_debounced_flush_fires_once_without_loop(self, make_strategy) -> None:
        strategy = make_strategy("ok", True)
        scheduler = LoopScheduler()
        transport = Transport(
            app_id="shop",
            release="1.4.2",
            endpoint=ENDPOINT,
            strategies=[strategy],
            scheduler=scheduler,
            flush_delay=0.05,
        )

        for i in range(5):
            transport.track({"type": "e", "n": i})
        assert transport.timer_pending is True

        assert wait_for(lambda: len(strategy.calls) == 1)
        scheduler.join_threads(5.0)

        assert len(strategy.calls) == 1
        _, body, urgent = strategy.calls[0]
        assert urgent is False
        assert [e["n"] for e in json.loads(body)["events"]] == list(range(5))
        assert transport.pending == 0
        assert transport.timer_pending is False

    def test_threshold_flush_does_not_block_the_tracking_thread(self, make_strategy) -> None:
        gate = threading.Event()

        class SlowStrategy:
            name = "slow"
            available = True

            def __init__(self) -> None:
                self.bodies: list[str] = []

            async def send(self, endpoint, body, *, urgent):
                self.bodies.append(body)
                await asyncio.to_thread(gate.wait, 5.0)
                return True

            def send_blocking(self, endpoint, body, *, urgent):
                return True

            def close(self) -> None:
                pass

        strategy = SlowStrategy()
        scheduler = LoopScheduler()
        transport = Transport(app_id="shop", release="1", endpoint=ENDPOINT, strategies=[strategy], scheduler=scheduler, batch_size=3)

        for i in range(3):
            transport.track({"type": "e", "n": i})

        # track() returned while the delivery is still held at the gate
        assert transport.pending == 0
        assert scheduler.pending == 1
        gate.set()
        scheduler.join_threads(5.0)
        assert len(strategy.bodies) == 1
        assert transport.stats["batches_delivered"] == 1


# =============================================================================
# Concurrent Producers
# =============================================================================


class TestConcurrentProducers:
    def test_every_event_is_delivered_exactly_once(self, scheduler, make_strategy) -> None:
        """Tracking from many threads while batches are taken loses and duplicates nothing."""
        strategy = make_strategy("ok", True)
        transport = Transport(app_id="shop", release="1", endpoint=ENDPOINT, strategies=[strategy], scheduler=scheduler, batch_size=7)
        producers, per_producer = 8, 250
        start = threading.Barrier(producers + 1)
        done = threading.Event()

        def produce(worker: int) -> None:
            start.wait()
            for i in range(per_producer):
                transport.track({"type": "e", "worker": worker, "n": i})

        def drain() -> None:
            start.wait()
            while not done.is_set():
                transport.flush_nowait()

        threads = [threading.Thread(target=produce, args=(w,)) for w in range(producers)]
        drainer = threading.Thread(target=drain)
        for thread in [*threads, drainer]:
            thread.start()
        for thread in threads:
            thread.join()
        done.set()
        drainer.join()
        transport.flush_nowait()
        scheduler.run_spawned()

        delivered = [(e["worker"], e["n"]) for batch in strategy.batches() for e in batch["events"]]
        assert len(delivered) == producers * per_producer
        assert set(delivered) == {(w, i) for w in range(producers) for i in range(per_producer)}
        assert transport.pending == 0
        assert transport.stats["events_tracked"] == producers * per_producer
