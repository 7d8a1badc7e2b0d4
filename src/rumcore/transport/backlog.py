# src/rumcore/transport/backlog.py
"""Durable, bounded backlog for batches that could not be delivered.

The backlog is a JSON array of event records stored under a fixed key. It
is replayed once, at the next Transport construction, and cleared from
storage as soon as it is read, before redelivery is confirmed. A crash
between read and redelivery therefore loses it; this keeps replay
at-most-once.

Storage failures and corrupt documents are logged and treated as data loss.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import structlog

from rumcore.transport.storage import KeyValueStorage
from rumcore.transport.wire import Event, dumps_events

logger = structlog.get_logger(__name__)

OFFLINE_KEY = "__RUM_OFFLINE_Q__"
DEFAULT_CAPACITY = 2000


class OfflineBacklog:
    """Newest-retained bounded event store on top of KeyValueStorage.

    Only the Transport writes to it.

    Example:
        backlog = OfflineBacklog(FileStorage("/var/tmp/rum"))
        backlog.persist(batch)      # delivery failed
        replay = backlog.take()     # next session: read and clear
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        key: str = OFFLINE_KEY,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._storage = storage
        self._key = key
        self._capacity = capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    def _read(self) -> list[dict[str, Any]]:
        """Read the stored array; missing, unreadable or corrupt yields []."""
        try:
            raw = self._storage.get_item(self._key)
        except OSError as e:
            logger.warning("Offline backlog unreadable", key=self._key, error=str(e))
            return []
        except ValueError as e:
            # UnicodeDecodeError: bytes on disk are not UTF-8
            logger.warning("Offline backlog undecodable, discarding", key=self._key, error=str(e))
            return []
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("Offline backlog corrupt, discarding", key=self._key, error=str(e))
            return []
        if not isinstance(data, list):
            logger.warning("Offline backlog is not an array, discarding", key=self._key, kind=type(data).__name__)
            return []
        return [item for item in data if isinstance(item, dict)]

    def peek(self) -> list[dict[str, Any]]:
        """Return the stored events without clearing them."""
        return self._read()

    def take(self) -> list[dict[str, Any]]:
        """Read the stored events and clear them from storage.

        Corrupt content is cleared too, so it cannot block later sessions.
        """
        events = self._read()
        self.clear()
        return events

    def persist(self, batch: Sequence[Event]) -> int:
        """Append batch and keep only the newest ``capacity`` events.

        Returns:
            Number of events retained after truncation (0 if the write failed).
        """
        merged = [*self._read(), *batch]
        dropped = max(0, len(merged) - self._capacity)
        if dropped:
            merged = merged[dropped:]
            logger.warning(
                "Offline backlog full - oldest events dropped",
                dropped=dropped,
                capacity=self._capacity,
            )
        try:
            self._storage.set_item(self._key, dumps_events(merged))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Offline backlog write failed, batch lost", events=len(batch), error=str(e))
            return 0
        return len(merged)

    def clear(self) -> bool:
        """Remove the stored backlog.

        Returns:
            False if storage refused the removal (logged), True otherwise.
        """
        try:
            self._storage.remove_item(self._key)
        except OSError as e:
            logger.warning("Offline backlog could not be cleared", key=self._key, error=str(e))
            return False
        return True
