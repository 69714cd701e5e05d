"""Chat client library speaking the framed client protocol."""

from __future__ import annotations

import json
import logging
import queue
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Union

from plato.framing import DataPackage, FramingError, read_data
from plato.messages import (
    ACKMsg,
    CmdType,
    DecodeError,
    HeartbeatMsg,
    LoginMsg,
    MsgCmd,
    PushMsg,
    ReConnMsg,
    UPMsg,
    decode,
    encode,
)

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 1.0
LOGIN_DEVICE_ID = 123
_RETRY_DELAY = 0.05
_CLOSED = object()


class MsgType(str, Enum):
    TEXT = "text"
    ACK = "ack"
    RECONN = "reConn"
    HEARTBEAT = "heartbeat"
    LOGIN = "loginMsg"


_JSON_KEYS = (
    ("type", "Type"),
    ("name", "Name"),
    ("form_user_id", "FormUserID"),
    ("to_user_id", "ToUserID"),
    ("content", "Content"),
    ("session", "Session"),
)


def _plain(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


@dataclass
class Message:
    """A chat message as exchanged between users."""

    type: str = ""
    name: str = ""
    form_user_id: str = ""
    to_user_id: str = ""
    content: str = ""
    session: str = ""

    def to_json(self) -> bytes:
        body = {key: _plain(getattr(self, attr)) for attr, key in _JSON_KEYS}
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Message":
        """Parse a message; keys match case-insensitively. Raises ValueError."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("message must be a JSON object")
        lowered = {k.lower(): v for k, v in obj.items() if isinstance(k, str)}
        values = {}
        for attr, key in _JSON_KEYS:
            value = lowered.get(key.lower())
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"message field {key} must be a string")
            values[attr] = value
        return cls(**values)


class Connect:
    """A TCP connection to the gateway carrying framed commands."""

    def __init__(self, ip: Any, port: int) -> None:
        self.ip = str(ip)
        self.port = port
        self.conn_id = 0
        self._send_lock = threading.Lock()
        self.sock = self._dial()

    def _dial(self) -> socket.socket:
        return socket.create_connection((self.ip, self.port))

    def send(self, cmd_type: CmdType, payload: bytes) -> None:
        """Send one command frame; raises OSError on failure."""
        frame = DataPackage(encode(MsgCmd(type=cmd_type, payload=payload))).marshal()
        with self._send_lock:
            self.sock.sendall(frame)

    def reconn(self) -> None:
        """Drop the current socket and dial the gateway again."""
        self.close()
        try:
            self.sock = self._dial()
        except OSError as exc:
            logger.warning("DialTCP.err=%s", exc)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


def handle_ack_msg(conn: Any, data: bytes) -> Message:
    """Turn an ACK into a message; login and reconnect ACKs assign the connection id."""
    try:
        ack = decode(ACKMsg, data)
    except DecodeError:
        ack = ACKMsg()
    if ack.type in (CmdType.LOGIN, CmdType.RECONN):
        conn.conn_id = ack.conn_id
    return Message(
        type=MsgType.ACK,
        name="plato",
        form_user_id="1212121",
        to_user_id="222212122",
        content=ack.msg,
    )


def handle_push_msg(conn: Any, data: bytes) -> Message:
    """Decode a pushed message and acknowledge it to the server."""
    try:
        push = decode(PushMsg, data)
    except DecodeError:
        push = PushMsg()
    try:
        msg = Message.from_json(push.content)
    except ValueError:
        msg = Message()
    ack = ACKMsg(type=CmdType.UP, conn_id=conn.conn_id)
    try:
        conn.send(CmdType.ACK, encode(ack))
    except OSError as exc:
        logger.warning("ack of push failed: %s", exc)
    return msg


class Chat:
    """A logged-in chat session with background receive and heartbeat threads."""

    def __init__(self, ip: Any, port: int, nick: str, user_id: str, session_id: str) -> None:
        self.nick = nick
        self.user_id = user_id
        self.session_id = session_id
        self.msg_client_id_table: dict[str, int] = {}
        self._lock = threading.RLock()
        self._closed = threading.Event()
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self.conn = Connect(ip, port)
        threading.Thread(target=self._loop, name="chat-recv", daemon=True).start()
        self._login()
        threading.Thread(target=self._heartbeat, name="chat-heartbeat", daemon=True).start()

    def send(self, msg: Message) -> None:
        """Send a chat message upstream; raises OSError on failure."""
        conn_id = self.conn.conn_id
        up = UPMsg(client_id=self.next_client_id(str(conn_id)), conn_id=conn_id, body=msg.to_json())
        self.conn.send(CmdType.UP, encode(up))

    def cur_client_id(self) -> int:
        """The next client id of the current connection."""
        with self._lock:
            return self.msg_client_id_table.get(str(self.conn.conn_id), 0)

    def next_client_id(self, key: str) -> int:
        """Take the next client id for ``key``, starting from zero."""
        with self._lock:
            value = self.msg_client_id_table.get(key, 0)
            self.msg_client_id_table[key] = value + 1
            return value

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self.conn.close()
        self._inbox.put(_CLOSED)

    def reconn(self) -> None:
        """Reconnect and ask the server to move the old connection's state over."""
        with self._lock:
            old_conn_id = self.conn.conn_id
            self.conn.reconn()
            try:
                self.conn.send(CmdType.RECONN, encode(ReConnMsg(conn_id=old_conn_id)))
            except OSError as exc:
                logger.warning("reconn request failed: %s", exc)

    def recv(self) -> Iterator[Message]:
        """Yield received messages until the chat is closed."""
        while True:
            item = self._inbox.get()
            if item is _CLOSED:
                self._inbox.put(_CLOSED)
                return
            yield item

    def __enter__(self) -> "Chat":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _login(self) -> None:
        try:
            self.conn.send(CmdType.LOGIN, encode(LoginMsg(device_id=LOGIN_DEVICE_ID)))
        except OSError as exc:
            logger.warning("login failed: %s", exc)

    def _loop(self) -> None:
        while not self._closed.is_set():
            try:
                data = read_data(self.conn.sock)
            except (EOFError, FramingError, OSError):
                self._closed.wait(_RETRY_DELAY)
                continue
            try:
                cmd = decode(MsgCmd, data)
            except DecodeError as exc:
                logger.warning("bad frame: %s", exc)
                continue
            if cmd.type == CmdType.ACK:
                msg = handle_ack_msg(self.conn, cmd.payload)
            elif cmd.type == CmdType.PUSH:
                msg = handle_push_msg(self.conn, cmd.payload)
            else:
                continue
            self._inbox.put(msg)

    def _heartbeat(self) -> None:
        while not self._closed.wait(HEARTBEAT_INTERVAL):
            try:
                self.conn.send(CmdType.HEARTBEAT, encode(HeartbeatMsg()))
            except OSError:
                continue