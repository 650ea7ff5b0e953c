"""Socket.IO packet encoding and decoding over the Engine.IO v4 framing."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Optional, Union

BINARY_PLACEHOLDER = "_placeholder"

Payload = Union[str, bytes, bytearray, memoryview]
EncodeCallback = Callable[[bool, Union[str, bytes]], None]
DecodeCallback = Callable[["Packet"], None]

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_DIGITS = "0123456789"


class PacketError(ValueError):
    """Raised when a payload cannot be read as a packet at all."""


class FrameType(IntEnum):
    """Engine.IO frame types."""

    OPEN = 0
    CLOSE = 1
    PING = 2
    PONG = 3
    MESSAGE = 4
    UPGRADE = 5
    NOOP = 6


class PacketType(IntEnum):
    """Socket.IO packet types carried inside a MESSAGE frame."""

    CONNECT = 0
    DISCONNECT = 1
    EVENT = 2
    ACK = 3
    ERROR = 4
    BINARY_EVENT = 5
    BINARY_ACK = 6


def _first_code(payload: Payload) -> Optional[int]:
    if len(payload) == 0:
        return None
    first = payload[0]
    return first if isinstance(first, int) else ord(first)


def is_binary_message(payload: Payload) -> bool:
    """True if the payload starts with the raw MESSAGE frame byte."""
    return _first_code(payload) == FrameType.MESSAGE


def is_text_message(payload: Payload) -> bool:
    """True if the payload starts with the textual MESSAGE frame digit."""
    return _first_code(payload) == ord("0") + FrameType.MESSAGE


def is_message(payload: Payload) -> bool:
    """True for either a binary or a textual MESSAGE payload."""
    return is_binary_message(payload) or is_text_message(payload)


def to_json(value: Any, buffers: list) -> Any:
    """Turn a message into a JSON-ready value.

    Binary values are replaced by placeholders and appended to ``buffers``.
    Object keys come out sorted.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        placeholder = {BINARY_PLACEHOLDER: True, "num": len(buffers)}
        buffers.append(bytes(value))
        return placeholder
    if isinstance(value, (list, tuple)):
        return [to_json(item, buffers) for item in value]
    if isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise TypeError(f"object keys must be strings, not {type(key).__name__}")
        return {key: to_json(value[key], buffers) for key in sorted(value)}
    raise TypeError(f"cannot encode {type(value).__name__} as a message")


def from_json(value: Any, buffers=()) -> Any:
    """Turn a decoded JSON value into a message, resolving binary placeholders."""
    if isinstance(value, list):
        return [from_json(item, buffers) for item in value]
    if isinstance(value, dict):
        if value.get(BINARY_PLACEHOLDER) is True:
            num = value.get("num")
            if isinstance(num, int) and not isinstance(num, bool) and 0 <= num < len(buffers):
                return buffers[num]
            return None
        return {key: from_json(item, buffers) for key, item in value.items()}
    return value


def _dumps(document: Any) -> str:
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _find_first_of(text: str, chars: str, start: int) -> int:
    for index, char in enumerate(text[start:], start):
        if char in chars:
            return index
    return -1


@dataclass
class Packet:
    """One Socket.IO packet.

    ``message`` is a plain Python value (dict, list, str, int, float, bool,
    bytes); ``None`` means the packet carries no payload.
    """

    frame: FrameType = FrameType.MESSAGE
    type: Optional[PacketType] = None
    nsp: str = ""
    pack_id: int = -1
    message: Any = None
    pending_buffers: int = 0
    _json_text: Optional[str] = field(default=None, repr=False, compare=False)
    _buffers: list = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def for_message(cls, nsp: str, message: Any, pack_id: int = -1, is_ack: bool = False) -> "Packet":
        """Build an event packet, or an acknowledgement when ``is_ack`` is set."""
        if is_ack and pack_id < 0:
            raise ValueError("an acknowledgement needs a non-negative packet id")
        return cls(
            frame=FrameType.MESSAGE,
            type=PacketType.ACK if is_ack else PacketType.EVENT,
            nsp=nsp,
            pack_id=pack_id,
            message=message,
        )

    def parse(self, payload: Payload) -> bool:
        """Read a textual payload; return True if binary attachments must follow."""
        if isinstance(payload, (bytes, bytearray, memoryview)):
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise PacketError("payload is not valid text") from exc
        if not payload:
            raise PacketError("empty payload")
        if payload[0] not in "0123456":
            raise PacketError(f"unknown frame type {payload[0]!r}")

        self.frame = FrameType(int(payload[0]))
        self.message = None
        self.pack_id = -1
        self._json_text = None
        self._buffers = []
        self.pending_buffers = 0
        pos = 1

        if self.frame == FrameType.MESSAGE:
            type_char = payload[pos:pos + 1]
            if not type_char or type_char not in _DIGITS or int(type_char) > PacketType.BINARY_ACK:
                self.type = None
                return False
            self.type = PacketType(int(type_char))
            pos += 1
            if self.type in (PacketType.BINARY_EVENT, PacketType.BINARY_ACK):
                dash = payload.find("-")
                if dash < 0:
                    self.pending_buffers = _atoi(payload[pos:])
                    pos = 0
                else:
                    self.pending_buffers = _atoi(payload[pos:dash])
                    pos = dash + 1

        start = _find_first_of(payload, '{["/', pos)
        if start < 0:
            self.nsp = "/"
            return False
        json_pos = start
        if payload[start] == "/":
            comma = payload.find(",", start)
            if comma < 0:
                self.nsp = payload[start:]
                return False
            self.nsp = payload[start:comma]
            pos = comma + 1
            json_pos = _find_first_of(payload, '"[{', pos)
            if json_pos < 0:
                return False
        else:
            self.nsp = "/"

        if pos < json_pos:
            self.pack_id = _atoi(payload[pos:json_pos])

        if self.frame == FrameType.MESSAGE and self.type in (PacketType.BINARY_EVENT, PacketType.BINARY_ACK):
            self._json_text = payload[json_pos:]
            return True
        self.message = from_json(_loads(payload[json_pos:]))
        return False

    def parse_buffer(self, data: Payload) -> bool:
        """Add one binary attachment; return True while more are awaited."""
        if self.pending_buffers <= 0:
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffers.append(bytes(data))
        self.pending_buffers -= 1
        if self.pending_buffers == 0:
            self.message = from_json(_loads(self._json_text or ""), self._buffers)
            self._json_text = None
            self._buffers = []
            return False
        return True

    def encode(self) -> tuple[str, list[bytes]]:
        """Return the text payload and the binary attachments to send after it."""
        payload = str(int(self.frame))
        if self.frame != FrameType.MESSAGE:
            return payload, []
        if self.type is None:
            raise PacketError("message packet has no type")

        buffers: list[bytes] = []
        has_message = self.message is not None
        document = to_json(self.message, buffers) if has_message else None
        has_binary = bool(buffers)
        if self.type == PacketType.EVENT and has_binary:
            self.type = PacketType.BINARY_EVENT
        elif self.type == PacketType.ACK and has_binary:
            self.type = PacketType.BINARY_ACK

        parts = [payload, str(int(self.type))]
        if has_binary:
            parts.append(f"{len(buffers)}-")
        if self.nsp and self.nsp != "/":
            parts.append(self.nsp)
            if has_message or self.pack_id >= 0:
                parts.append(",")
        if self.pack_id >= 0:
            parts.append(str(self.pack_id))
        if has_message:
            parts.append(_dumps(document))
        return "".join(parts), buffers


class PacketManager:
    """Turns packets into payloads and reassembles incoming payloads into packets."""

    def __init__(
        self,
        decode_callback: Optional[DecodeCallback] = None,
        encode_callback: Optional[EncodeCallback] = None,
    ) -> None:
        self.decode_callback = decode_callback
        self.encode_callback = encode_callback
        self._partial: Optional[Packet] = None

    def encode(self, packet: Packet, callback: Optional[EncodeCallback] = None) -> None:
        """Encode a packet and hand the text and each attachment to the callback."""
        sink = callback or self.encode_callback
        text, buffers = packet.encode()
        if sink is None:
            return
        sink(False, text)
        for buffer in buffers:
            sink(True, buffer)

    def put_payload(self, payload: Payload) -> None:
        """Feed one received payload; complete packets go to the decode callback."""
        if is_text_message(payload):
            packet = Packet()
            if packet.parse(payload):
                self._partial = packet
                return
        elif self._partial is not None and len(payload) > 0:
            if self._partial.parse_buffer(payload):
                return
            packet, self._partial = self._partial, None
        else:
            packet = Packet()
            packet.parse(payload)
        if self.decode_callback is not None:
            self.decode_callback(packet)

    def reset(self) -> None:
        """Drop any packet still waiting for attachments."""
        self._partial = None