"""Client/server protocol messages in protobuf wire format."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Type, TypeVar, Union

T = TypeVar("T")

_LIMITS = {"uint64": (1 << 64) - 1, "uint32": (1 << 32) - 1, "enum": (1 << 31) - 1}
_VARINT, _FIXED64, _LENGTH, _FIXED32 = 0, 1, 2, 5


class DecodeError(ValueError):
    """Bytes that are not a valid encoding of the requested message."""


class CmdType(IntEnum):
    LOGIN = 0
    HEARTBEAT = 1
    RECONN = 2
    ACK = 3
    UP = 4
    PUSH = 5


def _uint(number: int, kind: str = "uint64") -> Any:
    return field(default=0, metadata={"number": number, "kind": kind})


def _enum(number: int) -> Any:
    return field(default=CmdType.LOGIN, metadata={"number": number, "kind": "enum"})


def _bytes(number: int) -> Any:
    return field(default=b"", metadata={"number": number, "kind": "bytes"})


def _string(number: int) -> Any:
    return field(default="", metadata={"number": number, "kind": "string"})


@dataclass
class MsgCmd:
    """Envelope of every frame: a command type and its encoded payload."""

    type: Union[CmdType, int] = _enum(1)
    payload: bytes = _bytes(2)


@dataclass
class LoginMsg:
    device_id: int = _uint(1)


@dataclass
class HeartbeatMsg:
    pass


@dataclass
class ReConnMsg:
    """Reconnect request carrying the id of the connection that was lost."""

    conn_id: int = _uint(1)


@dataclass
class UPMsg:
    """Upstream message from a client."""

    client_id: int = _uint(1)
    conn_id: int = _uint(2)
    body: bytes = _bytes(3)


@dataclass
class ACKMsg:
    code: int = _uint(1, "uint32")
    msg: str = _string(2)
    type: Union[CmdType, int] = _enum(3)
    conn_id: int = _uint(4)
    client_id: int = _uint(5)
    session_id: int = _uint(6)
    msg_id: int = _uint(7)


@dataclass
class PushMsg:
    """Downstream message pushed to a client."""

    msg_id: int = _uint(1)
    session_id: int = _uint(2)
    content: bytes = _bytes(3)


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            raise DecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & ((1 << 64) - 1), pos
    raise DecodeError("varint too long")


def _numbered_fields(cls: type) -> list[dataclasses.Field]:
    return [f for f in dataclasses.fields(cls) if "number" in f.metadata]


def encode(message: Any) -> bytes:
    """Encode a message dataclass; fields at their default are omitted."""
    if not dataclasses.is_dataclass(message) or isinstance(message, type):
        raise TypeError(f"not a message: {message!r}")
    out = bytearray()
    for f in _numbered_fields(type(message)):
        number, kind = f.metadata["number"], f.metadata["kind"]
        value = getattr(message, f.name)
        if kind in _LIMITS:
            value = int(value)
            if not 0 <= value <= _LIMITS[kind]:
                raise ValueError(f"{f.name} out of range: {value}")
            if value:
                out += _varint(number << 3 | _VARINT) + _varint(value)
        else:
            data = value.encode("utf-8") if kind == "string" else bytes(value)
            if data:
                out += _varint(number << 3 | _LENGTH) + _varint(len(data)) + data
    return bytes(out)


def decode(cls: Type[T], data: bytes) -> T:
    """Decode ``data`` as ``cls``; unknown fields are skipped."""
    if not dataclasses.is_dataclass(cls) or not isinstance(cls, type):
        raise TypeError(f"not a message class: {cls!r}")
    by_number = {f.metadata["number"]: f for f in _numbered_fields(cls)}
    view = bytes(data)
    values: dict[str, Any] = {}
    pos = 0
    while pos < len(view):
        key, pos = _read_varint(view, pos)
        number, wire = key >> 3, key & 7
        if number == 0:
            raise DecodeError("invalid field number 0")
        value: Any = None
        if wire == _VARINT:
            value, pos = _read_varint(view, pos)
        elif wire == _LENGTH:
            length, pos = _read_varint(view, pos)
            end = pos + length
            if end > len(view):
                raise DecodeError("truncated field")
            value, pos = view[pos:end], end
        elif wire in (_FIXED64, _FIXED32):
            pos += 8 if wire == _FIXED64 else 4
            if pos > len(view):
                raise DecodeError("truncated field")
        else:
            raise DecodeError(f"unsupported wire type {wire}")
        f = by_number.get(number)
        if f is None:
            continue
        kind = f.metadata["kind"]
        expected = _VARINT if kind in _LIMITS else _LENGTH
        if wire != expected:
            raise DecodeError(f"field {f.name} has wire type {wire}")
        if kind == "uint32":
            value &= _LIMITS["uint32"]
        elif kind == "enum":
            try:
                value = CmdType(value)
            except ValueError:
                pass
        elif kind == "string":
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError(f"field {f.name} is not valid UTF-8") from exc
        values[f.name] = value
    return cls(**values)