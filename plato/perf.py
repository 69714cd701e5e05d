"""Load generator: opens many chat sessions against a gateway."""

from __future__ import annotations

from typing import Any

from plato.sdk import Chat

DEFAULT_TCP_CONN_NUM = 10000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8900


def run_main(tcp_conn_num: int = DEFAULT_TCP_CONN_NUM, host: Any = DEFAULT_HOST, port: int = DEFAULT_PORT) -> list[Chat]:
    """Open ``tcp_conn_num`` logged-in chat sessions and return them."""
    return [Chat(host, port, "logic", "1223", "123") for _ in range(tcp_conn_num)]