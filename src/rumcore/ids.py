# src/rumcore/ids.py
"""Compact, URL-safe identifiers for session and page correlation."""

import random
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError(f"base36 value must be non-negative, got {value}")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def gen_id() -> str:
    """Generate an opaque correlation id.

    Random component followed by the current epoch milliseconds, both in
    base 36. Collision resistant enough for session correlation; not
    suitable for anything security sensitive.
    """
    return to_base36(random.getrandbits(52)) + to_base36(time.time_ns() // 1_000_000)
