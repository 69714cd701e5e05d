"""Length-prefixed framing of messages on a stream socket."""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from typing import Optional

HEADER = struct.Struct(">I")
READ_TIMEOUT = 120.0
_MAX_LEN = (1 << 32) - 1


class FramingError(Exception):
    """A frame could not be read from the stream."""


@dataclass
class DataPackage:
    """A frame: a big-endian 32-bit length followed by the payload."""

    data: bytes
    length: Optional[int] = None

    def __post_init__(self) -> None:
        if self.length is None:
            self.length = len(self.data)
        if not 0 <= self.length <= _MAX_LEN:
            raise ValueError(f"frame length out of range: {self.length}")

    def marshal(self) -> bytes:
        """Encode the frame as header plus payload."""
        return HEADER.pack(self.length) + bytes(self.data)


def read_fixed(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes; raise EOFError if the peer closes first."""
    sock.settimeout(READ_TIMEOUT)
    buf = bytearray()
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise EOFError("connection closed")
        buf += chunk
    return bytes(buf)


def read_data(sock: socket.socket) -> bytes:
    """Read one complete frame and return its payload."""
    (length,) = HEADER.unpack(read_fixed(sock, HEADER.size))
    if length == 0:
        raise FramingError(f"wrong headlen :{length}")
    try:
        return read_fixed(sock, length)
    except (OSError, EOFError) as exc:
        raise FramingError(f"read headlen error:{exc}") from exc


def send_data(sock: socket.socket, data: bytes) -> None:
    """Write all of ``data`` to the socket."""
    sock.sendall(data)