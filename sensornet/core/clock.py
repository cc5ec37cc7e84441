"""Clock utilities for host and monotonic timekeeping."""

from __future__ import annotations

import time
from typing import Callable

NS_PER_SECOND = 1_000_000_000

ClockFn = Callable[[], int]
"""A zero-argument callable returning integer nanoseconds."""

_EPOCH_ANCHOR_NS = time.time_ns() - time.monotonic_ns()


def now_mono() -> float:
    """Return the current monotonic time in seconds."""
    return time.monotonic()


def now_host_ns() -> int:
    """Monotonic nanoseconds shifted onto the UNIX epoch.

    The epoch anchor is taken once at import, so wall clock steps (NTP,
    manual changes) never make two readings go backwards.
    """
    return time.monotonic_ns() + _EPOCH_ANCHOR_NS


def ns_to_seconds(value_ns: int) -> float:
    return value_ns / NS_PER_SECOND


def seconds_to_ns(value_s: float) -> int:
    return int(round(value_s * NS_PER_SECOND))
