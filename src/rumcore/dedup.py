# src/rumcore/dedup.py
"""Windowed fingerprint deduplication for producers.

A producer normalizes a recurring condition (an error's message, source
basename, line, column and the top of its stack) into a short fingerprint
and asks the deduplicator whether the same fingerprint was already reported
within the sliding window.

Key design decisions:
- djb2 32-bit hash: fast, non-cryptographic; a collision only means a rare
  distinct condition is under-reported
- Suppressed calls do not refresh last-seen, so a condition that recurs
  continuously is still reported once per window
- Eviction runs only past a soft size cap and drops entries older than
  twice the window
"""

from __future__ import annotations

import threading
from typing import Any

from rumcore.clock import DEFAULT_CLOCK, Clock
from rumcore.ids import to_base36

DEFAULT_WINDOW_SECONDS = 10.0
DEFAULT_SOFT_CAP = 200


def djb2(text: str) -> int:
    """Return the unsigned 32-bit djb2 (xor variant) hash of text.

    Characters are folded in from the end of the string.
    """
    h = 5381
    for ch in reversed(text):
        h = ((h * 33) ^ ord(ch)) & 0xFFFFFFFF
    return h


def fingerprint(*parts: Any) -> str:
    """Hash normalized parts into a compact base36 fingerprint.

    Parts are joined with ``|`` after ``str()`` conversion, so callers must
    pass already-bounded values (never a raw, unbounded stack).
    """
    return to_base36(djb2("|".join(str(p) for p in parts)))


def first_lines(text: str, n: int = 5) -> str:
    """Return the first n lines of text."""
    return "\n".join((text or "").split("\n")[:n])


def basename(path: str) -> str:
    """Last path segment with any query string or fragment removed."""
    if not path:
        return path
    stripped = path.split("?")[0].split("#")[0]
    return stripped.replace("\\", "/").rsplit("/", 1)[-1] or path


class FingerprintDeduplicator:
    """Suppress repeated reports of the same fingerprint within a window.

    Thread-safe: the error producer reports from excepthook threads. Each
    producer owns its own instance; caches are never shared across
    producers.

    Example:
        dedup = FingerprintDeduplicator(window=10.0)
        if not dedup.should_suppress(fingerprint(message, basename(file), line)):
            transport.track({...})
    """

    def __init__(
        self,
        window: float = DEFAULT_WINDOW_SECONDS,
        *,
        soft_cap: int = DEFAULT_SOFT_CAP,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the deduplicator.

        Args:
            window: Suppression window in seconds.
            soft_cap: Cache size above which stale entries are evicted.
            clock: Time source (defaults to the system clock).

        Raises:
            ValueError: If window is not positive or soft_cap < 1.
        """
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        if soft_cap < 1:
            raise ValueError(f"soft_cap must be >= 1, got {soft_cap}")
        self._window = window
        self._soft_cap = soft_cap
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def window(self) -> float:
        return self._window

    def should_suppress(self, key: str) -> bool:
        """Return True if key was allowed less than one window ago.

        Allowed calls record the current time; suppressed calls leave the
        recorded time untouched.
        """
        with self._lock:
            now = self._clock.monotonic()
            last = self._seen.get(key)
            if last is not None and now - last < self._window:
                return True
            self._seen[key] = now
            if len(self._seen) > self._soft_cap:
                self._evict(now)
            return False

    def _evict(self, now: float) -> None:
        cutoff = now - self._window * 2
        for key in [k for k, ts in self._seen.items() if ts < cutoff]:
            del self._seen[key]

    def __len__(self) -> int:
        return len(self._seen)
