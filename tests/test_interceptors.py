import logging
import time

import pytest

from plato.interceptors import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerOpenError,
    RateLimitConfig,
    RpcError,
    StatusCode,
    TokenBucket,
    breaker_interceptor,
    rate_limit_interceptor,
    recovery_interceptor,
    timeout_interceptor,
)

METHOD = "/helloworld.Greeter/SayHello"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    "count, expected",
    [
        (1, None),
        (4, RpcError(StatusCode.TOO_MANY_REQUEST, "too many request")),
    ],
)
def test_rate_limit_interceptor(count, expected):
    interceptor = rate_limit_interceptor({METHOD: RateLimitConfig(cap=3, rate=1)})
    err = None
    for _ in range(count):
        try:
            interceptor(None, METHOD, lambda req: None)
            err = None
        except RpcError as exc:
            err = exc
    assert err == expected


def test_rate_limit_passes_unconfigured_method():
    interceptor = rate_limit_interceptor({METHOD: RateLimitConfig(cap=1, rate=1)})
    results = [interceptor("req", "/other/Method", lambda req: req + "!") for _ in range(5)]
    assert results == ["req!"] * 5


def test_rate_limit_error_code():
    interceptor = rate_limit_interceptor({METHOD: RateLimitConfig(cap=1, rate=1)})
    interceptor(None, METHOD, lambda req: None)
    with pytest.raises(RpcError) as info:
        interceptor(None, METHOD, lambda req: None)
    assert info.value.code == StatusCode.TOO_MANY_REQUEST
    assert info.value.message == "too many request"


def test_token_bucket_refills_up_to_capacity():
    clock = FakeClock()
    bucket = TokenBucket(1, 3, clock)
    assert [bucket.take_max_duration(1, 0)[1] for _ in range(4)] == [True, True, True, False]
    clock.now = 100.0
    assert [bucket.take_max_duration(1, 0)[1] for _ in range(4)] == [True, True, True, False]


def test_token_bucket_waits_within_max():
    clock = FakeClock()
    bucket = TokenBucket(2, 1, clock)
    assert bucket.take_max_duration(1, 0) == (0.0, True)
    wait, ok = bucket.take_max_duration(1, 1.0)
    assert ok
    assert wait == pytest.approx(0.5)
    assert bucket.take_max_duration(1, 0.5) == (0.0, False)


def test_token_bucket_rejects_bad_settings():
    with pytest.raises(ValueError):
        TokenBucket(0, 1)
    with pytest.raises(ValueError):
        TokenBucket(1, 0)


def test_recovery_interceptor_swallows_exception(caplog):
    def handler(req):
        raise RuntimeError("xxxxx")

    with caplog.at_level(logging.ERROR, logger="plato.interceptors"):
        result = recovery_interceptor()(None, METHOD, handler)
    assert result is None
    assert "xxxxx" in caplog.text


def test_recovery_interceptor_returns_handler_result():
    assert recovery_interceptor()(2, METHOD, lambda req: req * 21) == 42


def test_timeout_interceptor_sets_deadline():
    seen = []

    def invoker(method, request, deadline):
        seen.append((method, deadline - time.monotonic()))
        return None

    assert timeout_interceptor(3.0, 3.0)("/create", None, invoker) is None
    method, remaining = seen[0]
    assert method == "/create"
    assert 0 < remaining <= 3.0


def test_timeout_interceptor_keeps_given_deadline():
    seen = []
    timeout_interceptor(3.0, 3.0)("/create", None, lambda m, r, d: seen.append(d), deadline=12.5)
    assert seen == [12.5]


def test_timeout_interceptor_logs_slow_call(caplog):
    def invoker(method, request, deadline):
        time.sleep(0.05)
        return "done"

    with caplog.at_level(logging.ERROR, logger="plato.interceptors"):
        result = timeout_interceptor(0.2, 0.01)("/create", None, invoker)
    assert result == "done"
    assert "slowlog" in caplog.text


def test_timeout_interceptor_propagates_error():
    def invoker(method, request, deadline):
        raise RpcError(StatusCode.UNAVAILABLE, "down")

    with pytest.raises(RpcError) as info:
        timeout_interceptor(1.0, 0)("/create", None, invoker)
    assert info.value.code == StatusCode.UNAVAILABLE


def _fail():
    raise RuntimeError("boom")


def test_breaker_trips_and_recovers():
    clock = FakeClock()
    cb = CircuitBreaker("test", 1, 0, 10.0, None, clock)
    for _ in range(5):
        with pytest.raises(RuntimeError):
            cb.execute(_fail)
    assert cb.state() == BreakerState.CLOSED
    with pytest.raises(RuntimeError):
        cb.execute(_fail)
    assert cb.state() == BreakerState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        cb.execute(lambda: 1)
    clock.now = 10.5
    assert cb.state() == BreakerState.HALF_OPEN
    assert cb.execute(lambda: "ok") == "ok"
    assert cb.state() == BreakerState.CLOSED


def test_breaker_half_open_failure_reopens():
    clock = FakeClock()
    cb = CircuitBreaker("test", 1, 0, 5.0, lambda c: c.consecutive_failures >= 1, clock)
    with pytest.raises(RuntimeError):
        cb.execute(_fail)
    clock.now = 6.0
    assert cb.state() == BreakerState.HALF_OPEN
    with pytest.raises(RuntimeError):
        cb.execute(_fail)
    assert cb.state() == BreakerState.OPEN


def test_breaker_half_open_limits_requests():
    clock = FakeClock()
    cb = CircuitBreaker("test", 1, 0, 5.0, lambda c: c.consecutive_failures >= 1, clock)
    with pytest.raises(RuntimeError):
        cb.execute(_fail)
    clock.now = 6.0

    def nested():
        with pytest.raises(CircuitBreakerOpenError):
            cb.execute(lambda: None)
        return "outer"

    assert cb.execute(nested) == "outer"


def test_breaker_interval_clears_counts():
    clock = FakeClock()
    cb = CircuitBreaker("test", 1, 5.0, 0, None, clock)
    for _ in range(2):
        with pytest.raises(RuntimeError):
            cb.execute(_fail)
    assert cb.counts.consecutive_failures == 2
    clock.now = 6.0
    assert cb.state() == BreakerState.CLOSED
    assert cb.counts.consecutive_failures == 0
    assert cb.counts.requests == 0


def test_breaker_interceptor_counts_only_server_failures():
    interceptor = breaker_interceptor("svc", 1, 0, 60.0, lambda c: c.consecutive_failures >= 2)
    calls = []

    def not_found(method, request, deadline):
        calls.append(method)
        raise RpcError(StatusCode.NOT_FOUND, "missing")

    for _ in range(3):
        with pytest.raises(RpcError):
            interceptor("/get", None, not_found)
    assert interceptor.breaker.state() == BreakerState.CLOSED

    def unavailable(method, request, deadline):
        calls.append(method)
        raise RpcError(StatusCode.UNAVAILABLE, "down")

    for _ in range(2):
        with pytest.raises(RpcError):
            interceptor("/get", None, unavailable)
    assert interceptor.breaker.state() == BreakerState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        interceptor("/get", None, unavailable)
    assert len(calls) == 5


def test_breaker_interceptor_returns_result():
    interceptor = breaker_interceptor("svc", 1, 0, 0, None)
    assert interceptor("/echo", "hi", lambda m, r, d: r * 2) == "hihi"


def test_rpc_error_equality_and_text():
    err = RpcError(StatusCode.TOO_MANY_REQUEST, "too many request")
    assert err == RpcError(100, "too many request")
    assert err != RpcError(StatusCode.CIRCUIT_BREAK, "too many request")
    assert "too many request" in str(err)