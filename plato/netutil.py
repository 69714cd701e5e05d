"""Discovery of this host's outward-facing IPv4 address."""

from __future__ import annotations

import ipaddress
import socket
from typing import Any, Iterator, Optional

LOCALHOST = "127.0.0.1"
# Connecting a UDP socket sends nothing; it only picks a route and source address.
_PROBE_TARGETS = (("192.0.2.1", 80), ("10.255.255.255", 1))


def _usable(addr: Any) -> Optional[ipaddress.IPv4Address]:
    try:
        ip = ipaddress.ip_interface(str(addr).split("%", 1)[0]).ip
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ip.ipv4_mapped
        if mapped is None:
            return None
        ip = mapped
    if ip.is_loopback:
        return None
    return ip


def is_usable_ipv4(addr: Any) -> bool:
    """Whether ``addr`` is an IPv4 address (or v4-mapped IPv6) that is not loopback."""
    return _usable(addr) is not None


def _candidates() -> Iterator[str]:
    for target in _PROBE_TARGETS:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
                probe.connect(target)
                yield probe.getsockname()[0]
        except OSError:
            continue
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return
    for info in infos:
        yield info[4][0]


def external_ip() -> str:
    """The first non-loopback IPv4 address of this host, or ``127.0.0.1``."""
    for candidate in _candidates():
        ip = _usable(candidate)
        if ip is not None and not ip.is_unspecified:
            return str(ip)
    return LOCALHOST