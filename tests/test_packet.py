import math

import pytest

from sioclient.packet import (
    FrameType,
    Packet,
    PacketError,
    PacketManager,
    PacketType,
    from_json,
    is_binary_message,
    is_message,
    is_text_message,
    to_json,
)


def _collector():
    calls = []
    return calls, lambda is_binary, data: calls.append((is_binary, data))


def test_simple_event_wire_format():
    text, buffers = Packet.for_message("/", ["chat", "hi"]).encode()
    assert text == '42["chat","hi"]'
    assert buffers == []


def test_binary_event_wire_format():
    packet = Packet.for_message("/", ["file", b"\x01\x02"])
    text, buffers = packet.encode()
    assert text == '451-["file",{"_placeholder":true,"num":0}]'
    assert buffers == [b"\x01\x02"]
    assert packet.type == PacketType.BINARY_EVENT


def test_ping_frame_encodes_to_frame_digit_only():
    assert Packet(frame=FrameType.PING).encode() == ("2", [])


def test_ack_with_binary_becomes_binary_ack():
    packet = Packet.for_message("/", [b"x"], pack_id=3, is_ack=True)
    text, buffers = packet.encode()
    assert packet.type == PacketType.BINARY_ACK
    assert buffers == [b"x"]
    parsed = Packet()
    assert parsed.parse(text) is True
    assert parsed.pack_id == 3
    assert parsed.parse_buffer(buffers[0]) is False
    assert parsed.message == [b"x"]


def test_ack_requires_non_negative_id():
    with pytest.raises(ValueError):
        Packet.for_message("/", [], pack_id=-1, is_ack=True)


def test_event_round_trip_with_namespace_and_id():
    text, _ = Packet.for_message("/admin", ["ev", 1, {"k": [True, None, 2.5]}], pack_id=12).encode()
    parsed = Packet()
    assert parsed.parse(text) is False
    assert parsed.frame == FrameType.MESSAGE
    assert parsed.type == PacketType.EVENT
    assert parsed.nsp == "/admin"
    assert parsed.pack_id == 12
    assert parsed.message == ["ev", 1, {"k": [True, None, 2.5]}]


def test_connect_packet_with_namespace_only():
    text, _ = Packet(type=PacketType.CONNECT, nsp="/chat").encode()
    parsed = Packet()
    assert parsed.parse(text) is False
    assert parsed.type == PacketType.CONNECT
    assert parsed.nsp == "/chat"
    assert parsed.message is None


def test_connect_packet_with_auth_round_trip():
    text, _ = Packet(type=PacketType.CONNECT, nsp="/", message={"token": "token"}).encode()
    parsed = Packet()
    parsed.parse(text)
    assert parsed.nsp == "/"
    assert parsed.message == {"token": "token"}


def test_parse_ping_frame():
    parsed = Packet()
    assert parsed.parse("2") is False
    assert parsed.frame == FrameType.PING
    assert parsed.nsp == "/"
    assert parsed.message is None


def test_parse_open_frame_handshake():
    parsed = Packet()
    parsed.parse('0{"sid":"abc","pingInterval":25000}')
    assert parsed.frame == FrameType.OPEN
    assert parsed.message == {"sid": "abc", "pingInterval": 25000}


def test_parse_invalid_packet_type():
    parsed = Packet()
    assert parsed.parse("49") is False
    assert parsed.type is None


def test_parse_empty_payload_raises():
    with pytest.raises(PacketError):
        Packet().parse("")


def test_parse_unknown_frame_raises():
    with pytest.raises(PacketError):
        Packet().parse("x")


def test_parse_invalid_json_gives_no_message():
    parsed = Packet()
    parsed.parse("42[oops")
    assert parsed.type == PacketType.EVENT
    assert parsed.message is None


def test_encode_rejects_nan():
    with pytest.raises(ValueError):
        Packet.for_message("/", ["n", math.nan]).encode()


def test_to_json_sorts_keys_and_keeps_bools():
    buffers = []
    result = to_json({"b": True, "a": 1}, buffers)
    assert list(result) == ["a", "b"]
    assert result["b"] is True
    assert buffers == []


def test_to_json_rejects_unsupported_values():
    with pytest.raises(TypeError):
        to_json({"x": object()}, [])
    with pytest.raises(TypeError):
        to_json({1: "a"}, [])


def test_json_round_trip_with_nested_binary():
    message = {"files": [b"one", {"inner": b"two"}], "name": "n"}
    buffers = []
    document = to_json(message, buffers)
    assert len(buffers) == 2
    assert from_json(document, buffers) == message


def test_from_json_placeholder_out_of_range():
    assert from_json({"_placeholder": True, "num": 5}, [b"a"]) is None
    assert from_json({"_placeholder": True, "num": 0}, [b"a"]) == b"a"


def test_message_predicates():
    assert is_text_message("42[]")
    assert not is_text_message("\x04abc")
    assert is_binary_message(b"\x04abc")
    assert not is_binary_message("42")
    assert is_message("4") and is_message(b"\x04")
    assert not is_message("") and not is_message("2")


def test_manager_encode_order():
    calls, sink = _collector()
    manager = PacketManager(encode_callback=sink)
    manager.encode(Packet.for_message("/", ["e", b"a", b"b"]))
    _, expected_buffers = Packet.for_message("/", ["e", b"a", b"b"]).encode()
    assert expected_buffers == [b"a", b"b"]
    assert [flag for flag, _ in calls] == [False, True, True]
    assert [data for _, data in calls[1:]] == expected_buffers


def test_manager_encode_override_callback():
    default_calls, default_sink = _collector()
    override_calls, override_sink = _collector()
    manager = PacketManager(encode_callback=default_sink)
    manager.encode(Packet(frame=FrameType.PONG), override_sink)
    pong_text, pong_buffers = Packet(frame=FrameType.PONG).encode()
    assert pong_text == "3"
    assert pong_buffers == []
    assert default_calls == []
    assert [flag for flag, _ in override_calls] == [False] * (1 + len(pong_buffers))


def test_manager_reassembles_binary_event():
    decoded = []
    manager = PacketManager(decode_callback=decoded.append)
    text, buffers = Packet.for_message("/ns", ["up", b"A", {"b": b"B"}], pack_id=4).encode()
    manager.put_payload(text)
    manager.put_payload(buffers[0])
    assert decoded == []
    manager.put_payload(buffers[1])
    assert len(decoded) == 1
    packet = decoded[0]
    assert packet.type == PacketType.BINARY_EVENT
    assert packet.nsp == "/ns"
    assert packet.pack_id == 4
    assert packet.message == ["up", b"A", {"b": b"B"}]


def test_manager_dispatches_text_and_control_frames():
    decoded = []
    manager = PacketManager(decode_callback=decoded.append)
    manager.put_payload('42["a"]')
    manager.put_payload("2")
    assert [p.frame for p in decoded] == [FrameType.MESSAGE, FrameType.PING]
    assert decoded[0].message == ["a"]


def test_manager_reset_drops_partial_packet():
    decoded = []
    manager = PacketManager(decode_callback=decoded.append)
    text, _ = Packet.for_message("/", ["e", b"z"]).encode()
    manager.put_payload(text)
    manager.reset()
    with pytest.raises(PacketError):
        manager.put_payload(b"z")
    assert decoded == []