"""Span names and attributes describing RPC calls."""

from __future__ import annotations

from typing import Any

TRACE_NAME = "plato-trace"
LOCALHOST = "127.0.0.1"

GRPC_STATUS_CODE_KEY = "rpc.grpc.status_code"
RPC_NAME_KEY = "name"
RPC_MESSAGE_TYPE_KEY = "message.type"
RPC_MESSAGE_ID_KEY = "message.id"
RPC_MESSAGE_COMPRESSED_SIZE_KEY = "message.compressed_size"
RPC_MESSAGE_UNCOMPRESSED_SIZE_KEY = "message.uncompressed_size"
SERVER_ENVIRONMENT_KEY = "environment"
RPC_SYSTEM_KEY = "rpc.system"
RPC_SERVICE_KEY = "rpc.service"
RPC_METHOD_KEY = "rpc.method"
NET_PEER_IP_KEY = "net.peer.ip"
NET_PEER_PORT_KEY = "net.peer.port"

Attribute = tuple[str, Any]

RPC_SYSTEM_GRPC: Attribute = (RPC_SYSTEM_KEY, "grpc")
RPC_NAME_MESSAGE: Attribute = (RPC_NAME_KEY, "message")
RPC_MESSAGE_TYPE_SENT: Attribute = (RPC_MESSAGE_TYPE_KEY, "SENT")
RPC_MESSAGE_TYPE_RECEIVED: Attribute = (RPC_MESSAGE_TYPE_KEY, "RECEIVED")


def parse_service_and_method(full_method: str) -> tuple[str, list[Attribute]]:
    """Span name and service/method attributes of ``/service/method``."""
    name = full_method.lstrip("/")
    parts = name.split("/", 1)
    if len(parts) != 2:
        return name, []
    service, method = parts
    attrs: list[Attribute] = []
    if service:
        attrs.append((RPC_SERVICE_KEY, service))
    if method:
        attrs.append((RPC_METHOD_KEY, method))
    return name, attrs


def _split_host_port(addr: str) -> tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {addr!r}")
        if end + 1 >= len(addr) or addr[end + 1] != ":":
            raise ValueError(f"missing port in address {addr!r}")
        host, port = addr[1:end], addr[end + 2 :]
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {addr!r}")
    else:
        index = addr.rfind(":")
        if index < 0:
            raise ValueError(f"missing port in address {addr!r}")
        host, port = addr[:index], addr[index + 1 :]
        if ":" in host:
            raise ValueError(f"too many colons in address {addr!r}")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {addr!r}")
    if "[" in port or "]" in port:
        raise ValueError(f"unexpected bracket in address {addr!r}")
    return host, port


def peer_attrs(addr: str) -> list[Attribute]:
    """Peer ip and port attributes; empty if ``addr`` is not ``host:port``."""
    try:
        host, port = _split_host_port(addr)
    except ValueError:
        return []
    return [(NET_PEER_IP_KEY, host or LOCALHOST), (NET_PEER_PORT_KEY, port)]


def build_span(method: str, peer_addr: str) -> tuple[str, list[Attribute]]:
    """Span name and attributes of a call to ``method`` from ``peer_addr``."""
    name, attrs = parse_service_and_method(method)
    return name, attrs + peer_attrs(peer_addr)


def status_code_attr(code: int) -> Attribute:
    """The status-code attribute of a finished call."""
    return (GRPC_STATUS_CODE_KEY, int(code))