"""Building blocks of an instant-messaging system: timing wheel, framing, protocol messages, chat client, endpoint statistics, RPC interceptors and logging."""

__version__ = "0.1.0"