"""Hierarchical timing wheel for scheduling many cheap timers."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from plato.delayqueue import DelayQueue

Duration = Union[float, int, timedelta]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_TAKE_TIMEOUT = 0.05


def truncate(x: int, m: int) -> int:
    """Round ``x`` toward zero to a multiple of ``m``; ``x`` unchanged if ``m <= 0``."""
    if m <= 0:
        return x
    return x - x % m


def time_to_ms(t: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return (t - _EPOCH) // timedelta(milliseconds=1)


def ms_to_time(ms: int) -> datetime:
    """The UTC datetime ``ms`` milliseconds after the Unix epoch."""
    return _EPOCH + timedelta(milliseconds=ms)


def _duration_ns(d: Duration) -> int:
    if isinstance(d, timedelta):
        return (d // timedelta(microseconds=1)) * 1000
    return int(round(d * 1_000_000)) * 1000


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(eq=False)
class Timer:
    """A single event; when it expires its task runs in its own thread."""

    expiration: int
    task: Callable[[], None]
    _bucket: Optional["Bucket"] = field(default=None, init=False, repr=False)

    def stop(self) -> bool:
        """Prevent the timer from firing; True if this call stopped it."""
        stopped = False
        bucket = self._bucket
        while bucket is not None:
            # The wheel may move the timer to another bucket concurrently,
            # so retry until it is in no bucket at all.
            stopped = bucket.remove(self)
            bucket = self._bucket
        return stopped


class Bucket:
    """Timers that share one slot of a wheel."""

    def __init__(self) -> None:
        self._expiration = -1
        self._exp_lock = threading.Lock()
        self._lock = threading.Lock()
        self._timers: dict[Timer, None] = {}

    @property
    def expiration(self) -> int:
        return self._expiration

    def set_expiration(self, expiration: int) -> bool:
        """Set the expiration; True if it changed."""
        with self._exp_lock:
            old = self._expiration
            self._expiration = expiration
        return old != expiration

    def add(self, timer: Timer) -> None:
        with self._lock:
            self._timers[timer] = None
            timer._bucket = self

    def _remove(self, timer: Timer) -> bool:
        if timer._bucket is not self:
            return False
        self._timers.pop(timer, None)
        timer._bucket = None
        return True

    def remove(self, timer: Timer) -> bool:
        """Remove ``timer`` if it still belongs here."""
        with self._lock:
            return self._remove(timer)

    def flush(self, reinsert: Callable[[Timer], None]) -> None:
        """Empty the bucket, handing every timer to ``reinsert``."""
        with self._lock:
            for timer in list(self._timers):
                self._remove(timer)
                reinsert(timer)
            self.set_expiration(-1)


class Scheduler(ABC):
    """Execution plan of a repeating task."""

    @abstractmethod
    def next(self, prev: datetime) -> Optional[datetime]:
        """The next UTC execution time after ``prev``, or None to stop."""


class TimingWheel:
    """Hierarchical timing wheel with a tick and a number of slots."""

    def __init__(self, tick: Duration, wheel_size: int) -> None:
        tick_ms = _duration_ns(tick) // 1_000_000
        if tick_ms <= 0:
            raise ValueError("tick must be greater than or equal to 1ms")
        if wheel_size <= 0:
            raise ValueError("wheel_size must be positive")
        self._setup(tick_ms, wheel_size, _now_ms(), DelayQueue(wheel_size))

    @classmethod
    def _overflow(cls, tick_ms: int, wheel_size: int, start_ms: int, dq: DelayQueue) -> "TimingWheel":
        wheel = cls.__new__(cls)
        wheel._setup(tick_ms, wheel_size, start_ms, dq)
        return wheel

    def _setup(self, tick_ms: int, wheel_size: int, start_ms: int, dq: DelayQueue) -> None:
        self._tick = tick_ms
        self._wheel_size = wheel_size
        self._current_time = truncate(start_ms, tick_ms)
        self._interval = tick_ms * wheel_size
        self._buckets = [Bucket() for _ in range(wheel_size)]
        self._queue = dq
        self._overflow_wheel: Optional[TimingWheel] = None
        self._overflow_lock = threading.Lock()
        self._exit = threading.Event()
        self._threads: list[threading.Thread] = []

    def _add(self, timer: Timer) -> bool:
        current = self._current_time
        if timer.expiration < current + self._tick:
            return False
        if timer.expiration < current + self._interval:
            virtual_id = timer.expiration // self._tick
            bucket = self._buckets[virtual_id % self._wheel_size]
            bucket.add(timer)
            # Enqueue only when the bucket is reused with a new expiration.
            if bucket.set_expiration(virtual_id * self._tick):
                self._queue.offer(bucket, bucket.expiration)
            return True
        overflow = self._overflow_wheel
        if overflow is None:
            with self._overflow_lock:
                if self._overflow_wheel is None:
                    self._overflow_wheel = TimingWheel._overflow(
                        self._interval, self._wheel_size, current, self._queue
                    )
                overflow = self._overflow_wheel
        return overflow._add(timer)

    def _add_or_run(self, timer: Timer) -> None:
        if not self._add(timer):
            threading.Thread(target=timer.task, daemon=True).start()

    def _advance_clock(self, expiration: int) -> None:
        if expiration >= self._current_time + self._tick:
            self._current_time = truncate(expiration, self._tick)
            overflow = self._overflow_wheel
            if overflow is not None:
                overflow._advance_clock(self._current_time)

    def _drive(self) -> None:
        while not self._exit.is_set():
            bucket = self._queue.take(timeout=_TAKE_TIMEOUT)
            if bucket is None:
                continue
            self._advance_clock(bucket.expiration)
            bucket.flush(self._add_or_run)

    def start(self) -> None:
        """Start the poller and driver threads."""
        self._threads = [
            threading.Thread(target=self._queue.poll, args=(self._exit, _now_ms), daemon=True),
            threading.Thread(target=self._drive, daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """Stop the wheel; running tasks are not waited for."""
        self._exit.set()
        for thread in self._threads:
            thread.join()
        self._threads = []

    def after_func(self, delay: Duration, func: Callable[[], None]) -> Timer:
        """Call ``func`` in its own thread once ``delay`` has elapsed."""
        expiration = (time.time_ns() + _duration_ns(delay)) // 1_000_000
        timer = Timer(expiration, func)
        self._add_or_run(timer)
        return timer

    def schedule_func(self, scheduler: Scheduler, func: Callable[[], None]) -> Optional[Timer]:
        """Call ``func`` repeatedly at the times ``scheduler`` yields."""
        first = scheduler.next(datetime.now(timezone.utc))
        if first is None:
            return None
        timer = Timer(time_to_ms(first), func)

        def task() -> None:
            following = scheduler.next(ms_to_time(timer.expiration))
            if following is not None:
                timer.expiration = time_to_ms(following)
                self._add_or_run(timer)
            func()

        timer.task = task
        self._add_or_run(timer)
        return timer


_wheel: Optional[TimingWheel] = None


def init_timer() -> None:
    """Create and start the process-wide wheel (1ms tick, 20 slots)."""
    global _wheel
    _wheel = TimingWheel(timedelta(milliseconds=1), 20)
    _wheel.start()


def close_timer() -> None:
    """Stop the process-wide wheel."""
    global _wheel
    if _wheel is not None:
        _wheel.stop()
        _wheel = None


def after_func(delay: Duration, func: Callable[[], None]) -> Timer:
    """Schedule ``func`` on the process-wide wheel."""
    if _wheel is None:
        raise RuntimeError("timer wheel is not initialised")
    return _wheel.after_func(delay, func)