"""A Socket.IO namespace socket: event bindings, acknowledgements and packet queueing."""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .packet import FrameType, Packet, PacketType

CONNECT_TIMEOUT = 20.0
CLOSE_TIMEOUT = 3.0

AckCallback = Callable[[list], None]
EventListener = Callable[["Event"], None]
ErrorListener = Callable[[Any], None]


class Timer(Protocol):
    """Anything that can be cancelled before it fires."""

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class SocketOwner(Protocol):
    """The connection a socket sends through and reports its state to."""

    def opened(self) -> bool: ...

    def send(self, packet: Packet) -> None: ...

    def remove_socket(self, namespace: str) -> None: ...

    def on_socket_opened(self, namespace: str) -> None: ...

    def on_socket_closed(self, namespace: str) -> None: ...


def _start_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


_event_ids = itertools.count(1)
_event_id_lock = threading.Lock()


def _next_event_id() -> int:
    with _event_id_lock:
        return next(_event_ids)


@dataclass
class Event:
    """An event received from the server, with room for an acknowledgement reply."""

    nsp: str
    name: str
    messages: list = field(default_factory=list)
    need_ack: bool = False
    ack_message: list = field(default_factory=list)

    @property
    def message(self) -> Any:
        """The first message of the event, or None when there is none."""
        return self.messages[0] if self.messages else None

    def put_ack_message(self, messages) -> None:
        """Set the reply sent back to the server; ignored unless an ack is wanted."""
        if self.need_ack:
            self.ack_message = list(messages)


class Socket:
    """One namespace on a Socket.IO connection."""

    def __init__(
        self,
        owner: SocketOwner,
        namespace: str,
        auth: Any = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._owner: Optional[SocketOwner] = owner
        self._nsp = namespace
        self._auth = auth
        self._timer_factory = timer_factory or _start_timer
        self._connected = False
        self._socket_id = ""
        self._acks: dict[int, AckCallback] = {}
        self._bindings: dict[str, EventListener] = {}
        self._error_listener: Optional[ErrorListener] = None
        self._timer: Optional[Timer] = None
        self._queue: deque[Packet] = deque()
        self._event_lock = threading.Lock()
        self._packet_lock = threading.Lock()
        if owner is not None and owner.opened():
            self._send_connect()

    @property
    def namespace(self) -> str:
        return self._nsp

    @property
    def socket_id(self) -> str:
        return self._socket_id

    @property
    def connected(self) -> bool:
        return self._connected

    # Bindings

    def on(self, event_name: str, listener: EventListener) -> None:
        """Bind a listener to an event name, replacing any earlier one."""
        with self._event_lock:
            self._bindings[event_name] = listener

    def off(self, event_name: str) -> None:
        """Remove the listener of an event name, if any."""
        with self._event_lock:
            self._bindings.pop(event_name, None)

    def off_all(self) -> None:
        """Remove every event listener."""
        with self._event_lock:
            self._bindings.clear()

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listener = listener

    def off_error(self) -> None:
        self._error_listener = None

    # Outgoing

    def emit(self, name: str, messages=None, ack: Optional[AckCallback] = None) -> None:
        """Send an event; ``ack`` is called with the server's reply messages."""
        if self._owner is None:
            return
        payload = [name, *(messages or ())]
        if ack is not None:
            pack_id = _next_event_id()
            with self._event_lock:
                self._acks[pack_id] = ack
        else:
            pack_id = -1
        self._send_packet(Packet.for_message(self._nsp, payload, pack_id))

    def close(self) -> None:
        """Ask the server to leave this namespace; closes locally after a short wait."""
        if self._owner is None or not self._connected:
            return
        self._send_packet(Packet(frame=FrameType.MESSAGE, type=PacketType.DISCONNECT, nsp=self._nsp))
        self._replace_timer(CLOSE_TIMEOUT, self.on_close)

    # Connection state, driven by the owner

    def on_connected(self) -> None:
        self._cancel_timer()
        if self._connected or self._owner is None:
            return
        self._connected = True
        self._owner.on_socket_opened(self._nsp)
        self._flush_queue()

    def on_close(self) -> None:
        owner = self._owner
        if owner is None:
            return
        self._owner = None
        self._cancel_timer()
        self._connected = False
        with self._packet_lock:
            self._queue.clear()
        owner.on_socket_closed(self._nsp)
        owner.remove_socket(self._nsp)

    def on_open(self) -> None:
        self._send_connect()

    def on_disconnect(self) -> None:
        if self._owner is None or not self._connected:
            return
        self._connected = False
        with self._packet_lock:
            self._queue.clear()

    def on_message_packet(self, packet: Packet) -> None:
        """Handle a packet addressed to this socket's namespace."""
        if self._owner is None or packet.nsp != self._nsp:
            return
        kind = packet.type
        message = packet.message
        if kind == PacketType.CONNECT:
            if isinstance(message, dict) and isinstance(message.get("sid"), str):
                self._socket_id = message["sid"]
            self.on_connected()
        elif kind == PacketType.DISCONNECT:
            self.on_close()
        elif kind in (PacketType.EVENT, PacketType.BINARY_EVENT):
            if isinstance(message, list) and message and isinstance(message[0], str):
                self._handle_event(packet.nsp, packet.pack_id, message[0], list(message[1:]))
        elif kind in (PacketType.ACK, PacketType.BINARY_ACK):
            replies = list(message) if isinstance(message, list) else [message]
            self._handle_ack(packet.pack_id, replies)
        elif kind == PacketType.ERROR:
            if self._error_listener is not None:
                self._error_listener(message)

    # Internals

    def _handle_event(self, nsp: str, pack_id: int, name: str, messages: list) -> None:
        need_ack = pack_id >= 0
        event = Event(nsp=nsp, name=name, messages=messages, need_ack=need_ack)
        with self._event_lock:
            listener = self._bindings.get(name)
        if listener is not None:
            listener(event)
        if need_ack:
            self._send_packet(Packet.for_message(self._nsp, list(event.ack_message), pack_id, is_ack=True))

    def _handle_ack(self, pack_id: int, messages: list) -> None:
        with self._event_lock:
            callback = self._acks.pop(pack_id, None)
        if callback is not None:
            callback(messages)

    def _timeout_connection(self) -> None:
        if self._owner is None:
            return
        self._timer = None
        self.on_close()

    def _send_connect(self) -> None:
        if self._owner is None:
            return
        self._owner.send(
            Packet(frame=FrameType.MESSAGE, type=PacketType.CONNECT, nsp=self._nsp, message=self._auth)
        )
        self._replace_timer(CONNECT_TIMEOUT, self._timeout_connection)

    def _replace_timer(self, delay: float, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        self._timer = self._timer_factory(delay, callback)

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _flush_queue(self) -> None:
        while True:
            with self._packet_lock:
                if not self._queue:
                    return
                pending = self._queue.popleft()
            owner = self._owner
            if owner is None:
                return
            owner.send(pending)

    def _send_packet(self, packet: Packet) -> None:
        if self._owner is None:
            return
        if self._connected:
            self._flush_queue()
            owner = self._owner
            if owner is not None:
                owner.send(packet)
        else:
            with self._packet_lock:
                self._queue.append(packet)