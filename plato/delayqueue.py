"""Unbounded blocking queue whose elements become available once their delay expires."""

from __future__ import annotations

import heapq
import itertools
import queue
import threading
from typing import Any, Callable

# Upper bound on a single wait, so that a poller notices its exit event promptly.
_MAX_WAIT_SECONDS = 0.05


class DelayQueue:
    """Priority queue of delayed elements ordered by expiration in milliseconds.

    A poller thread runs :meth:`poll`, which moves every element whose
    expiration has passed to the ready queue. Consumers read ready elements
    with :meth:`take`.
    """

    def __init__(self, size: int = 0) -> None:
        if size < 0:
            raise ValueError("size must not be negative")
        self.size = size
        self._heap: list[tuple[int, int, Any]] = []
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._ready: queue.SimpleQueue[Any] = queue.SimpleQueue()

    def offer(self, elem: Any, expiration: int) -> None:
        """Insert ``elem`` to become available at ``expiration`` (milliseconds)."""
        entry = (expiration, next(self._counter), elem)
        with self._cond:
            heapq.heappush(self._heap, entry)
            if self._heap[0] is entry:
                # A new earliest element: the poller must recompute its wait.
                self._cond.notify_all()

    def poll(self, exit_event: threading.Event, now_fn: Callable[[], int]) -> None:
        """Move expired elements to the ready queue until ``exit_event`` is set."""
        while not exit_event.is_set():
            now = now_fn()
            with self._cond:
                if not self._heap or self._heap[0][0] > now:
                    if self._heap:
                        wait = min((self._heap[0][0] - now) / 1000, _MAX_WAIT_SECONDS)
                    else:
                        wait = _MAX_WAIT_SECONDS
                    self._cond.wait(wait)
                    continue
                _, _, elem = heapq.heappop(self._heap)
            self._ready.put(elem)

    def take(self, timeout: float | None = None) -> Any:
        """Return the next expired element, or ``None`` if none arrives in ``timeout`` seconds."""
        try:
            return self._ready.get(timeout=timeout)
        except queue.Empty:
            return None