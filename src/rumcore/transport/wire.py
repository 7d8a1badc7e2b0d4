# src/rumcore/transport/wire.py
"""Event records and the collector wire format.

Events are open-ended mappings with a ``type`` discriminator. Once the
transport stamps an event it becomes a read-only mapping; the wire encoder
turns those back into plain JSON objects.

Wire format (one document per delivered batch):
    {"appId": ..., "release": ..., "sentAt": <epoch ms>, "events": [...]}
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

Event = Mapping[str, Any]

# Header marking requests issued by the pipeline itself; the HTTP producer
# never records these.
INTERNAL_HEADER = "x-rum-internal"


def stamp_event(event: Mapping[str, Any], t: int) -> Event:
    """Return a read-only copy of event with the ingestion timestamp ``t``.

    A ``t`` already present on the event wins over the stamp.

    Raises:
        TypeError: If event is not a mapping.
    """
    if not isinstance(event, Mapping):
        raise TypeError(f"event must be a mapping, got {type(event).__name__}")
    return MappingProxyType({"t": t, **event})


def freeze_event(event: Mapping[str, Any]) -> Event:
    """Wrap an already-stamped event (e.g. replayed from the backlog) read-only."""
    return MappingProxyType(dict(event))


def _to_plain(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def dumps_events(events: Iterable[Event]) -> str:
    """Serialize events as a JSON array."""
    return json.dumps(list(events), separators=(",", ":"), ensure_ascii=False, default=_to_plain)


def encode_batch(app_id: str, release: str, events: Iterable[Event], sent_at: int) -> str:
    """Build the JSON document POSTed to the collector for one batch."""
    payload = {
        "appId": app_id,
        "release": release,
        "sentAt": sent_at,
        "events": list(events),
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_to_plain)
