# src/rumcore/transport/__init__.py
"""Event pipeline: queueing, batching, delivery and offline backlog.

Components:
- transport: Transport, the single ingestion entry point
- delivery: beacon -> request -> pixel strategy chain
- backlog: bounded durable store for undeliverable batches
- storage: key/value backends for the backlog
- scheduler: asyncio-backed (or thread-backed) timers and background delivery
- wire: event stamping and the collector JSON format
"""

from rumcore.transport.backlog import OFFLINE_KEY, OfflineBacklog
from rumcore.transport.delivery import (
    BeaconSender,
    BeaconStrategy,
    DeliveryStrategy,
    PixelStrategy,
    RequestStrategy,
    default_strategies,
    ship_batch,
    ship_batch_blocking,
)
from rumcore.transport.scheduler import LoopScheduler, Scheduler, running_loop
from rumcore.transport.storage import FileStorage, KeyValueStorage, MemoryStorage
from rumcore.transport.transport import Transport
from rumcore.transport.wire import INTERNAL_HEADER, Event, encode_batch

__all__ = [
    "INTERNAL_HEADER",
    "OFFLINE_KEY",
    "BeaconSender",
    "BeaconStrategy",
    "DeliveryStrategy",
    "Event",
    "FileStorage",
    "KeyValueStorage",
    "LoopScheduler",
    "MemoryStorage",
    "OfflineBacklog",
    "PixelStrategy",
    "RequestStrategy",
    "Scheduler",
    "Transport",
    "default_strategies",
    "encode_batch",
    "running_loop",
    "ship_batch",
    "ship_batch_blocking",
]
