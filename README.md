# plato

Building blocks of an instant-messaging system: a hierarchical timing
wheel, length-prefixed framing, the client/server protocol messages, a chat
client library, connection-id generation, endpoint statistics for ranking
gateway nodes, RPC interceptors, span helpers, a discovery model and JSON
logging.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `plato.timingwheel` and `plato.delayqueue`

`TimingWheel(tick, wheel_size)` schedules many cheap timers. Durations are
seconds (float) or `timedelta`; the tick must be at least one millisecond.

```python
from plato.timingwheel import TimingWheel

wheel = TimingWheel(0.001, 20)
wheel.start()
timer = wheel.after_func(1.0, lambda: print("fired"))
timer.stop()          # True if this call cancelled it
wheel.stop()
```

`schedule_func(scheduler, func)` runs `func` repeatedly at the times a
`Scheduler` subclass returns from `next(prev)` until it returns `None`.
Tasks run in their own threads. The module-level `init_timer()`,
`after_func(delay, func)` and `close_timer()` manage a process-wide wheel
with a 1 ms tick and 20 slots. `DelayQueue` is the queue of delayed buckets
that drives the wheel.

### `plato.framing`

A frame is a 4-byte big-endian length followed by the payload.

```python
from plato.framing import DataPackage, read_data, send_data

frame = DataPackage(b"hello").marshal()   # b"\x00\x00\x00\x05hello"
```

`read_data(sock)` returns one frame's payload; it raises `EOFError` when the
peer closes and `FramingError` for a zero length or a truncated body.
`send_data(sock, data)` writes all of `data`.

### `plato.messages`

Protocol messages as dataclasses in protobuf wire format: `MsgCmd` (the
envelope), `LoginMsg`, `HeartbeatMsg`, `ReConnMsg`, `UPMsg`, `ACKMsg` and
`PushMsg`, with the command types in `CmdType`.

```python
from plato.messages import CmdType, MsgCmd, UPMsg, decode, encode

payload = encode(UPMsg(client_id=1, conn_id=42, body=b"hi"))
envelope = decode(MsgCmd, encode(MsgCmd(type=CmdType.UP, payload=payload)))
```

`decode` raises `DecodeError` on malformed input.

### `plato.sdk` and `plato.perf`

`Chat(ip, port, nick, user_id, session_id)` connects to a gateway over TCP,
sends a login, sends a heartbeat every second and receives in a background
thread. `send(Message(...))` sends a text message upstream, `recv()` yields
received `Message`s until `close()`, `reconn()` dials again and asks the
server to move the old connection's state. A `Chat` is a context manager.
Pushed messages are acknowledged automatically.

`plato.perf.run_main(tcp_conn_num, host, port)` opens that many chat
sessions (defaults: 10000, `127.0.0.1`, 8900) and returns them.

### `plato.config`

`Config.from_file(path)` reads a YAML file; values are addressed by dotted
keys (`get`, `get_int`, `get_str`, ...) and missing values read as zero
values. Named accessors cover the gateway, state, discovery and tracing
settings, for example `gateway_tcp_server_port()` or
`state_login_slot_range()`, which expands `"0,1024"` into the inclusive
list of slots. `init(path)` and `current()` hold a process-wide instance.

### `plato.connid`

`ConnIDGenerator().next_id()` issues time-ordered 64-bit identifiers: the
milliseconds since 2020-05-20 shifted left 16 bits, plus a per-millisecond
sequence. It raises `ClockMovedBackwardsError` if the clock goes back.
`next_conn_id()` uses a process-wide generator.

### `plato.stats` and `plato.endpoint_info`

`Stat` records a node's spare connections and message bytes;
`active_score()` is the spare bandwidth in GiB rounded to two places,
`static_score()` the spare connection count. `StatWindow` averages the last
five stats. `EndpointInfo` is an endpoint's ip, port and metadata with JSON
`marshal()` / `unmarshal()`.

### `plato.interceptors`

Callables that wrap RPC calls:

- `rate_limit_interceptor(configs)` limits each method named in
  `configs` (`RateLimitConfig(cap, rate, wait_max_duration)`) with a
  `TokenBucket`, raising `RpcError(StatusCode.TOO_MANY_REQUEST, ...)`.
- `recovery_interceptor()` logs an exception from the handler and returns
  `None`.
- `timeout_interceptor(timeout, slow_threshold)` sets a default deadline
  and logs slow calls.
- `breaker_interceptor(...)` guards calls with a `CircuitBreaker`.

```python
from plato.interceptors import RateLimitConfig, rate_limit_interceptor

limit = rate_limit_interceptor({"/helloworld.Greeter/SayHello": RateLimitConfig(cap=3, rate=1)})
limit(None, "/helloworld.Greeter/SayHello", lambda request: "ok")
```

### `plato.spans`, `plato.discov`, `plato.netutil`, `plato.hashing`

- `build_span("/svc/Method", "10.0.0.1:80")` returns a span name and
  service, method and peer attributes.
- `Endpoint` and `Service` model a service registry with JSON round trips;
  `Discovery` is the abstract interface of a discovery backend.
- `external_ip()` finds this host's non-loopback IPv4 address, falling back
  to `127.0.0.1`.
- `hash_str(key)` is the IEEE CRC-32 of a string.

### `plato.logger`

`setup_logger(LogOptions(log_dir=...), debug=False)` writes JSON lines to a
rotating file (and to stdout in debug mode). `info_ctx(ctx, "message",
key=value)` and its siblings add the trace id found in `ctx` under
`trace_id`; `panic_ctx` raises `RuntimeError` and `fatal_ctx` exits with
status 1 after logging.

## What the package does not do

The package has no command-line program and runs no services: there is no
TCP gateway server, no connection-state server, no HTTP endpoint that ranks
gateways, no Redis-backed storage of login slots or last messages, no RPC
service definitions or clients, and no terminal chat screen. `Discovery` is
an interface only; no backend implementing it is included.