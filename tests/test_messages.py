import pytest

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


@pytest.mark.parametrize(
    "message",
    [
        MsgCmd(CmdType.PUSH, b"\x00\x01data"),
        LoginMsg(device_id=123),
        HeartbeatMsg(),
        ReConnMsg(conn_id=1 << 40),
        UPMsg(client_id=7, conn_id=8, body=b'{"Type":"text"}'),
        ACKMsg(code=1, msg="login ok", type=CmdType.LOGIN, conn_id=5, client_id=6, session_id=9, msg_id=10),
        PushMsg(msg_id=3, session_id=4, content=b"hello"),
    ],
)
def test_round_trip(message):
    assert decode(type(message), encode(message)) == message


def test_wire_bytes_of_envelope():
    assert encode(MsgCmd(CmdType.UP, b"hi")) == bytes([0x08, 0x04, 0x12, 0x02]) + b"hi"


def test_defaults_encode_empty():
    assert encode(ACKMsg()) == b""
    assert decode(ACKMsg, b"") == ACKMsg()


def test_max_uint64_round_trip():
    message = PushMsg(msg_id=(1 << 64) - 1)
    assert decode(PushMsg, encode(message)).msg_id == (1 << 64) - 1


def test_out_of_range_rejected():
    with pytest.raises(ValueError):
        encode(PushMsg(msg_id=1 << 64))
    with pytest.raises(ValueError):
        encode(ACKMsg(code=-1))


def test_unknown_fields_skipped():
    message = LoginMsg(device_id=55)
    data = encode(message) + bytes([15 << 3, 0x01])
    assert decode(LoginMsg, data) == message


def test_unknown_enum_value_kept():
    data = encode(MsgCmd(type=CmdType.PUSH))
    other = data.replace(bytes([int(CmdType.PUSH)]), bytes([100]))
    assert decode(MsgCmd, other).type == 100


def test_truncated_data():
    data = encode(PushMsg(content=b"hello"))
    with pytest.raises(DecodeError):
        decode(PushMsg, data[:-1])


def test_wrong_wire_type():
    with pytest.raises(DecodeError):
        decode(MsgCmd, bytes([1 << 3 | 2, 0x00]))


def test_encode_requires_message():
    with pytest.raises(TypeError):
        encode({"type": 1})