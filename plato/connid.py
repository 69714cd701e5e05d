"""Process-wide unique, time-ordered connection identifiers."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

VERSION = 0
SEQUENCE_BITS = 16
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
TIME_LEFT = SEQUENCE_BITS
VERSION_LEFT = 63
# 2020-05-20 08:00:00 +0800, in milliseconds
TWEPOCH = 1589923200000
_MASK64 = (1 << 64) - 1


class ClockMovedBackwardsError(RuntimeError):
    """The clock went back past the last issued timestamp."""


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ConnIDGenerator:
    """Snowflake-style generator: timestamp, then a 16-bit per-millisecond sequence."""

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or _now_ms
        self._lock = threading.Lock()
        self.last_stamp = 0
        self.sequence = 0

    def next_id(self) -> int:
        with self._lock:
            stamp = self._clock()
            if stamp < self.last_stamp:
                raise ClockMovedBackwardsError("time is moving backwards,waiting until")
            if stamp == self.last_stamp:
                self.sequence = (self.sequence + 1) & MAX_SEQUENCE
                if self.sequence == 0:
                    # Sequence exhausted: wait for the next millisecond.
                    while stamp <= self.last_stamp:
                        stamp = self._clock()
            else:
                self.sequence = 0
            self.last_stamp = stamp
            raw = ((stamp - TWEPOCH) << TIME_LEFT) | self.sequence
            return (raw & _MASK64) | (VERSION << VERSION_LEFT)


_generator = ConnIDGenerator()


def next_conn_id() -> int:
    """Next identifier from the process-wide generator."""
    return _generator.next_id()