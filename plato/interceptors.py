"""RPC call interceptors: rate limiting, recovery, slow-call logging and circuit breaking.

Server interceptors are called as ``interceptor(request, full_method, handler)``
and call ``handler(request)``.  Client interceptors are called as
``interceptor(method, request, invoker, deadline=None)`` and call
``invoker(method, request, deadline)``; ``deadline`` is a ``time.monotonic()``
instant or None.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import traceback
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Handler = Callable[[Any], Any]
Invoker = Callable[[str, Any, Optional[float]], Any]

DEFAULT_BREAKER_TIMEOUT = 60.0
_DEFAULT_TRIP_FAILURES = 5


class StatusCode(IntEnum):
    """gRPC status codes plus the codes this system adds."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16
    TOO_MANY_REQUEST = 100
    CIRCUIT_BREAK = 101


class RpcError(Exception):
    """An RPC failure carrying a status code and a message."""

    def __init__(self, code: Union[StatusCode, int], message: str = "") -> None:
        super().__init__(code, message)
        try:
            self.code: Union[StatusCode, int] = StatusCode(code)
        except ValueError:
            self.code = int(code)
        self.message = message

    def __str__(self) -> str:
        name = self.code.name if isinstance(self.code, StatusCode) else str(self.code)
        return f"rpc error: code = {name} desc = {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RpcError):
            return NotImplemented
        return int(self.code) == int(other.code) and self.message == other.message

    def __hash__(self) -> int:
        return hash((int(self.code), self.message))


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket settings of one method; durations are in seconds."""

    cap: int
    rate: float
    wait_max_duration: float = 0.0


class TokenBucket:
    """A token bucket that starts full and refills at ``rate`` tokens per second."""

    def __init__(self, rate: float, capacity: int, clock: Optional[Clock] = None) -> None:
        if rate <= 0:
            raise ValueError("token bucket rate must be positive")
        if capacity <= 0:
            raise ValueError("token bucket capacity must be positive")
        self.rate = float(rate)
        self.capacity = int(capacity)
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last = self._clock()

    def _refill(self, now: float) -> None:
        if now > self._last:
            self._tokens = min(float(self.capacity), self._tokens + (now - self._last) * self.rate)
            self._last = now

    def take_max_duration(self, count: int, max_wait: float) -> tuple[float, bool]:
        """Take ``count`` tokens if they are available within ``max_wait`` seconds.

        Returns ``(wait, True)`` when taken, the caller then waiting ``wait``
        seconds, or ``(0.0, False)`` when the wait would be too long.
        """
        if count <= 0:
            return 0.0, True
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= count:
                self._tokens -= count
                return 0.0, True
            wait = (count - self._tokens) / self.rate
            if wait > max_wait:
                return 0.0, False
            self._tokens -= count
            return wait, True


class BreakerState(str, Enum):
    CLOSED = "closed"
    HALF_OPEN = "half-open"
    OPEN = "open"


class CircuitBreakerOpenError(RuntimeError):
    """The breaker refused the call: it is open or its half-open quota is used."""


@dataclass
class Counts:
    """Request counts of the current breaker generation."""

    requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    def on_request(self) -> None:
        self.requests += 1

    def on_success(self) -> None:
        self.total_successes += 1
        self.consecutive_successes += 1
        self.consecutive_failures = 0

    def on_failure(self) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        self.consecutive_successes = 0


def _default_ready_to_trip(counts: Counts) -> bool:
    return counts.consecutive_failures > _DEFAULT_TRIP_FAILURES


class CircuitBreaker:
    """Closed / open / half-open circuit breaker; a call fails if it raises."""

    def __init__(
        self,
        name: str,
        max_requests: int = 0,
        interval: float = 0.0,
        timeout: float = 0.0,
        ready_to_trip: Optional[Callable[[Counts], bool]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.name = name
        self.max_requests = max_requests if max_requests > 0 else 1
        self.interval = interval if interval > 0 else 0.0
        self.timeout = timeout if timeout > 0 else DEFAULT_BREAKER_TIMEOUT
        self._ready_to_trip = ready_to_trip or _default_ready_to_trip
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._generation = 0
        self._counts = Counts()
        self._expiry: Optional[float] = None
        self._new_generation(self._clock())

    @property
    def counts(self) -> Counts:
        """A copy of the current counts."""
        with self._lock:
            return dataclasses.replace(self._counts)

    def state(self) -> BreakerState:
        with self._lock:
            state, _ = self._current_state(self._clock())
            return state

    def execute(self, func: Callable[[], Any]) -> Any:
        """Call ``func`` if the breaker allows it and record the outcome."""
        generation = self._before_request()
        try:
            result = func()
        except BaseException:
            self._after_request(generation, False)
            raise
        self._after_request(generation, True)
        return result

    def _before_request(self) -> int:
        with self._lock:
            state, generation = self._current_state(self._clock())
            if state == BreakerState.OPEN:
                raise CircuitBreakerOpenError("circuit breaker is open")
            if state == BreakerState.HALF_OPEN and self._counts.requests >= self.max_requests:
                raise CircuitBreakerOpenError("too many requests")
            self._counts.on_request()
            return generation

    def _after_request(self, before: int, success: bool) -> None:
        with self._lock:
            now = self._clock()
            state, generation = self._current_state(now)
            if generation != before:
                return
            if success:
                self._on_success(state, now)
            else:
                self._on_failure(state, now)

    def _on_success(self, state: BreakerState, now: float) -> None:
        self._counts.on_success()
        if state == BreakerState.HALF_OPEN and self._counts.consecutive_successes >= self.max_requests:
            self._set_state(BreakerState.CLOSED, now)

    def _on_failure(self, state: BreakerState, now: float) -> None:
        if state == BreakerState.CLOSED:
            self._counts.on_failure()
            if self._ready_to_trip(dataclasses.replace(self._counts)):
                self._set_state(BreakerState.OPEN, now)
        elif state == BreakerState.HALF_OPEN:
            self._set_state(BreakerState.OPEN, now)

    def _current_state(self, now: float) -> tuple[BreakerState, int]:
        if self._state == BreakerState.CLOSED:
            if self._expiry is not None and self._expiry < now:
                self._new_generation(now)
        elif self._state == BreakerState.OPEN:
            if self._expiry is not None and self._expiry < now:
                self._set_state(BreakerState.HALF_OPEN, now)
        return self._state, self._generation

    def _set_state(self, state: BreakerState, now: float) -> None:
        if self._state == state:
            return
        previous = self._state
        self._state = state
        self._new_generation(now)
        logger.error("name:%s,old state:%s,new state:%s", self.name, previous.value, state.value)

    def _new_generation(self, now: float) -> None:
        self._generation += 1
        self._counts = Counts()
        if self._state == BreakerState.CLOSED:
            self._expiry = now + self.interval if self.interval else None
        elif self._state == BreakerState.OPEN:
            self._expiry = now + self.timeout
        else:
            self._expiry = None


def rate_limit_interceptor(configs: Mapping[str, RateLimitConfig]) -> Callable[[Any, str, Handler], Any]:
    """Server interceptor that limits each configured method with a token bucket."""
    buckets = {name: TokenBucket(cfg.rate, cfg.cap) for name, cfg in configs.items()}

    def interceptor(request: Any, full_method: str, handler: Handler) -> Any:
        bucket = buckets.get(full_method)
        if bucket is not None:
            wait, ok = bucket.take_max_duration(1, configs[full_method].wait_max_duration)
            if not ok:
                logger.error("too many request")
                raise RpcError(StatusCode.TOO_MANY_REQUEST, "too many request")
            if wait > 0:
                time.sleep(wait)
        return handler(request)

    return interceptor


def recovery_interceptor() -> Callable[[Any, str, Handler], Any]:
    """Server interceptor that logs an exception from the handler and returns None."""

    def interceptor(request: Any, full_method: str, handler: Handler) -> Any:
        try:
            return handler(request)
        except Exception as exc:
            logger.error("err:%s\nstack:%s", exc, traceback.format_exc())
            return None

    return interceptor


def timeout_interceptor(timeout: float, slow_threshold: float) -> Callable[..., Any]:
    """Client interceptor that sets a default deadline and logs slow calls."""

    def interceptor(method: str, request: Any, invoker: Invoker, deadline: Optional[float] = None) -> Any:
        start = time.monotonic()
        if deadline is None:
            deadline = start + timeout
        try:
            return invoker(method, request, deadline)
        finally:
            cost = time.monotonic() - start
            if slow_threshold > 0 and cost > slow_threshold:
                logger.error("grpc slowlog:method%s,cost:%.3fs", method, cost)

    return interceptor


_BREAKER_FAILURES = frozenset(
    {
        StatusCode.DEADLINE_EXCEEDED,
        StatusCode.INTERNAL,
        StatusCode.UNAVAILABLE,
        StatusCode.DATA_LOSS,
        StatusCode.UNIMPLEMENTED,
    }
)


def _counts_as_failure(exc: BaseException) -> bool:
    return isinstance(exc, RpcError) and exc.code in _BREAKER_FAILURES


def breaker_interceptor(
    name: str,
    max_requests: int,
    interval: float,
    timeout: float,
    ready_to_trip: Optional[Callable[[Counts], bool]],
) -> Callable[..., Any]:
    """Client interceptor guarding calls with a circuit breaker.

    Only deadline, internal, unavailable, data-loss and unimplemented errors count as failures.
    """
    breaker = CircuitBreaker(name, max_requests, interval, timeout, ready_to_trip)

    def interceptor(method: str, request: Any, invoker: Invoker, deadline: Optional[float] = None) -> Any:
        def call() -> tuple[Any, Optional[Exception]]:
            try:
                return invoker(method, request, deadline), None
            except Exception as exc:
                if _counts_as_failure(exc):
                    raise
                return None, exc

        result, error = breaker.execute(call)
        if error is not None:
            raise error
        return result

    interceptor.breaker = breaker  # type: ignore[attr-defined]
    return interceptor