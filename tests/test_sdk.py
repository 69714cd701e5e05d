import json
import queue
import socket
import threading

import pytest

from plato.framing import DataPackage, read_data
from plato.messages import (
    ACKMsg,
    CmdType,
    LoginMsg,
    MsgCmd,
    PushMsg,
    ReConnMsg,
    UPMsg,
    decode,
    encode,
)
from plato.sdk import Chat, Message, MsgType, handle_ack_msg, handle_push_msg


class FakeConn:
    def __init__(self, conn_id=0):
        self.conn_id = conn_id
        self.sent = []

    def send(self, cmd_type, payload):
        self.sent.append((cmd_type, payload))


@pytest.fixture
def server():
    srv = socket.create_server(("127.0.0.1", 0))
    srv.settimeout(5)
    yield srv
    srv.close()


@pytest.fixture
def chat_pair(server):
    chat = Chat("127.0.0.1", server.getsockname()[1], "logic", "12312321", "2131")
    peer, _ = server.accept()
    yield chat, peer
    chat.close()
    peer.close()


def read_cmd(sock):
    while True:
        cmd = decode(MsgCmd, read_data(sock))
        if cmd.type != CmdType.HEARTBEAT:
            return cmd


def send_cmd(sock, cmd_type, payload):
    sock.sendall(DataPackage(encode(MsgCmd(type=cmd_type, payload=payload))).marshal())


def next_message(chat, timeout=5.0):
    box = queue.Queue()
    it = chat.recv()
    threading.Thread(target=lambda: box.put(next(it)), daemon=True).start()
    return box.get(timeout=timeout)


def login(chat, peer, conn_id):
    cmd = read_cmd(peer)
    assert cmd.type == CmdType.LOGIN
    send_cmd(peer, CmdType.ACK, encode(ACKMsg(type=CmdType.LOGIN, conn_id=conn_id, msg="login ok")))
    return next_message(chat)


def test_message_json_keys():
    data = json.loads(Message(type=MsgType.TEXT, name="n", content="c").to_json())
    assert data == {
        "Type": "text",
        "Name": "n",
        "FormUserID": "",
        "ToUserID": "",
        "Content": "c",
        "Session": "",
    }


def test_message_round_trip():
    msg = Message(type="text", name="a", form_user_id="1", to_user_id="2", content="hi", session="s")
    assert Message.from_json(msg.to_json()) == msg


def test_message_from_json_case_insensitive():
    assert Message.from_json(b'{"content":"x","NAME":"y"}') == Message(name="y", content="x")


@pytest.mark.parametrize("data", [b"not json", b"[1]", b'{"Content": 5}'])
def test_message_from_json_rejects(data):
    with pytest.raises(ValueError):
        Message.from_json(data)


def test_handle_ack_msg_sets_conn_id_on_login_and_reconn():
    conn = FakeConn()
    msg = handle_ack_msg(conn, encode(ACKMsg(type=CmdType.LOGIN, conn_id=42, msg="login ok")))
    assert conn.conn_id == 42
    assert msg == Message(
        type=MsgType.ACK, name="plato", form_user_id="1212121", to_user_id="222212122", content="login ok"
    )
    handle_ack_msg(conn, encode(ACKMsg(type=CmdType.RECONN, conn_id=43)))
    assert conn.conn_id == 43
    handle_ack_msg(conn, encode(ACKMsg(type=CmdType.UP, conn_id=44)))
    assert conn.conn_id == 43


def test_handle_push_msg_decodes_and_acks():
    conn = FakeConn(conn_id=5)
    sent = Message(type="text", name="bob", content="yo")
    msg = handle_push_msg(conn, encode(PushMsg(msg_id=1, content=sent.to_json())))
    assert msg == sent
    assert len(conn.sent) == 1
    cmd_type, payload = conn.sent[0]
    assert cmd_type == CmdType.ACK
    assert decode(ACKMsg, payload) == ACKMsg(type=CmdType.UP, conn_id=5)


def test_handle_push_msg_with_bad_content():
    conn = FakeConn()
    assert handle_push_msg(conn, encode(PushMsg(content=b"garbage"))) == Message()
    assert len(conn.sent) == 1


def test_chat_login_frame(chat_pair):
    _, peer = chat_pair
    cmd = read_cmd(peer)
    assert cmd.type == CmdType.LOGIN
    assert decode(LoginMsg, cmd.payload).device_id == 123


def test_chat_login_ack_sets_conn_id(chat_pair):
    chat, peer = chat_pair
    msg = login(chat, peer, 42)
    assert msg.type == MsgType.ACK
    assert msg.content == "login ok"
    assert chat.conn.conn_id == 42


def test_chat_send_up_message(chat_pair):
    chat, peer = chat_pair
    login(chat, peer, 42)
    chat.send(Message(type=MsgType.TEXT, name="logic", content="hi"))
    cmd = read_cmd(peer)
    assert cmd.type == CmdType.UP
    up = decode(UPMsg, cmd.payload)
    assert (up.client_id, up.conn_id) == (0, 42)
    assert Message.from_json(up.body).content == "hi"
    assert chat.cur_client_id() == 1


def test_chat_receives_push_and_acks(chat_pair):
    chat, peer = chat_pair
    login(chat, peer, 42)
    pushed = Message(type="text", name="alice", content="hello")
    send_cmd(peer, CmdType.PUSH, encode(PushMsg(msg_id=3, content=pushed.to_json())))
    assert next_message(chat) == pushed
    cmd = read_cmd(peer)
    assert cmd.type == CmdType.ACK
    assert decode(ACKMsg, cmd.payload).conn_id == 42


def test_chat_next_client_id_counts_per_key(chat_pair):
    chat, _ = chat_pair
    assert [chat.next_client_id("a") for _ in range(3)] == [0, 1, 2]
    assert chat.next_client_id("b") == 0


def test_chat_reconn_sends_old_conn_id(chat_pair, server):
    chat, peer = chat_pair
    login(chat, peer, 42)
    chat.reconn()
    peer2, _ = server.accept()
    try:
        cmd = read_cmd(peer2)
        assert cmd.type == CmdType.RECONN
        assert decode(ReConnMsg, cmd.payload).conn_id == 42
    finally:
        peer2.close()


def test_chat_close_ends_recv(chat_pair):
    chat, _ = chat_pair
    chat.close()
    assert list(chat.recv()) == []
    assert list(chat.recv()) == []