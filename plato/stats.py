"""Remaining-resource statistics of gateway nodes and their sliding window."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

WINDOW_SIZE = 5


def decimal(value: float) -> float:
    """Round to two decimal places, half up."""
    return math.trunc(value * 1e2 + 0.5) * 1e-2


def get_gb(m: float) -> float:
    """Bytes as gibibytes, rounded to two decimal places."""
    return decimal(m / (1 << 30))


@dataclass
class Stat:
    """Spare capacity of a node: connections and message bytes per second."""

    connect_num: float = 0.0
    message_bytes: float = 0.0

    def active_score(self) -> float:
        """Spare bandwidth in GiB, the primary ranking measure."""
        return get_gb(self.message_bytes)

    def static_score(self) -> float:
        """Spare connection count, the secondary ranking measure."""
        return self.connect_num

    def avg(self, num: float) -> None:
        self.connect_num /= num
        self.message_bytes /= num

    def clone(self) -> "Stat":
        return Stat(self.connect_num, self.message_bytes)

    def add(self, other: Optional["Stat"]) -> None:
        if other is None:
            return
        self.connect_num += other.connect_num
        self.message_bytes += other.message_bytes

    def sub(self, other: Optional["Stat"]) -> None:
        if other is None:
            return
        self.connect_num -= other.connect_num
        self.message_bytes -= other.message_bytes


class StatWindow:
    """Running average of the last ``WINDOW_SIZE`` stats."""

    def __init__(self) -> None:
        self._queue: list[Optional[Stat]] = [None] * WINDOW_SIZE
        self._sum = Stat()
        self._idx = 0

    def get_stat(self) -> Stat:
        result = self._sum.clone()
        result.avg(WINDOW_SIZE)
        return result

    def append_stat(self, stat: Stat) -> None:
        slot = self._idx % WINDOW_SIZE
        self._sum.sub(self._queue[slot])
        self._queue[slot] = stat
        self._sum.add(stat)
        self._idx += 1