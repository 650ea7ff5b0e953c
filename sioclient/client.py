"""The Socket.IO connection: Engine.IO handshake, namespaces and reconnection."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional, Union

from .connection import (
    ABNORMAL_CLOSE,
    DEFAULT_PATH,
    DEFAULT_PING_INTERVAL,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_RECONNECT_DELAY_MAX,
    NORMAL_CLOSE,
    POLICY_VIOLATION,
    CloseReason,
    ConnectionState,
    build_connection_url,
    build_query_string,
    next_delay,
    normalize_namespace,
)
from .packet import FrameType, Packet, PacketError, PacketManager
from .socket import Socket, Timer, TimerFactory
from .transport import TransportError, TransportHandler, WebSocketTransport

logger = logging.getLogger(__name__)

UNLIMITED_ATTEMPTS = 0xFFFFFFFF

ConListener = Callable[[], None]
ReconnectListener = Callable[[int, int], None]
CloseListener = Callable[[CloseReason], None]
SocketListener = Callable[[str], None]
TransportFactory = Callable[[TransportHandler], Any]


def _start_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class Client:
    """A Socket.IO client connection that owns one socket per namespace.

    The transport runs on a background network thread; listeners are called
    from that thread (or from the reconnection timer).
    """

    def __init__(
        self,
        *,
        verify_tls: bool = False,
        transport_factory: Optional[TransportFactory] = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        if transport_factory is None:
            def transport_factory(handler: TransportHandler) -> WebSocketTransport:
                return WebSocketTransport(handler, verify_tls=verify_tls)

        self._timer_factory: TimerFactory = timer_factory or _start_timer
        self._transport = transport_factory(self)
        self._packets = PacketManager(decode_callback=self._on_decode, encode_callback=self._on_encode)

        self._lock = threading.RLock()
        self._socket_lock = threading.RLock()
        self._sockets: dict[str, Socket] = {}
        self._network_thread: Optional[threading.Thread] = None
        self._reconn_timer: Optional[Timer] = None
        self._reconn_token: Optional[object] = None

        self._state = ConnectionState.CLOSED
        self._sid = ""
        self._base_url = ""
        self._query_string = ""
        self._headers: dict[str, str] = {}
        self._auth: Any = None
        self._path = DEFAULT_PATH
        self._ping_interval = 0
        self._ping_timeout = 0

        self._reconn_delay = DEFAULT_RECONNECT_DELAY
        self._reconn_delay_max = DEFAULT_RECONNECT_DELAY_MAX
        self.reconnect_attempts = UNLIMITED_ATTEMPTS
        self._reconn_made = 0

        self.open_listener: Optional[ConListener] = None
        self.fail_listener: Optional[ConListener] = None
        self.reconnecting_listener: Optional[ConListener] = None
        self.reconnect_listener: Optional[ReconnectListener] = None
        self.close_listener: Optional[CloseListener] = None
        self.socket_open_listener: Optional[SocketListener] = None
        self.socket_close_listener: Optional[SocketListener] = None

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    def opened(self) -> bool:
        return self._state == ConnectionState.OPENED

    @property
    def session_id(self) -> str:
        return self._sid

    @property
    def url(self) -> str:
        return self._base_url

    @property
    def ping_interval(self) -> int:
        return self._ping_interval

    @property
    def ping_timeout(self) -> int:
        return self._ping_timeout

    @property
    def reconnect_attempts_made(self) -> int:
        return self._reconn_made

    @property
    def reconnect_delay(self) -> int:
        """Base reconnection delay in milliseconds; raises the maximum if needed."""
        return self._reconn_delay

    @reconnect_delay.setter
    def reconnect_delay(self, millis: int) -> None:
        self._reconn_delay = millis
        if self._reconn_delay_max < millis:
            self._reconn_delay_max = millis

    @property
    def reconnect_delay_max(self) -> int:
        """Longest reconnection delay in milliseconds; lowers the base if needed."""
        return self._reconn_delay_max

    @reconnect_delay_max.setter
    def reconnect_delay_max(self, millis: int) -> None:
        self._reconn_delay_max = millis
        if self._reconn_delay > millis:
            self._reconn_delay = millis

    # Public API

    def connect(
        self,
        uri: str = "",
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Any = None,
        path: str = DEFAULT_PATH,
    ) -> None:
        """Start connecting in the background; does nothing while already connected."""
        self._cancel_reconnect()
        with self._lock:
            thread = self._network_thread
            if thread is not None:
                if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED) or not thread.is_alive():
                    if thread is not threading.current_thread():
                        thread.join()
                    self._network_thread = None
                else:
                    return
            self._state = ConnectionState.OPENING
            self._reconn_made = 0
            if uri:
                self._base_url = uri
            self._query_string = build_query_string(query)
            self._headers = dict(headers or {})
            self._auth = auth
            if path:
                self._path = path
            self._reset_states()
            self._start_network_thread()

    def socket(self, namespace: str = "") -> Socket:
        """Return the socket of a namespace, creating it on first use."""
        nsp = normalize_namespace(namespace)
        with self._socket_lock:
            sock = self._sockets.get(nsp)
            if sock is None:
                sock = Socket(self, nsp, self._auth, timer_factory=self._timer_factory)
                self._sockets[nsp] = sock
            return sock

    def close(self) -> None:
        """Leave every namespace and close the connection."""
        self._state = ConnectionState.CLOSING
        self._sockets_invoke(Socket.close)
        self._close_impl(NORMAL_CLOSE, "End by user")

    def sync_close(self) -> None:
        """Close, then wait for the network thread to finish."""
        self.close()
        with self._lock:
            thread = self._network_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
            with self._lock:
                if self._network_thread is thread:
                    self._network_thread = None

    def send(self, packet: Packet) -> None:
        """Encode a packet and send it while the connection is open."""
        self._packets.encode(packet)

    def remove_socket(self, namespace: str) -> None:
        with self._socket_lock:
            self._sockets.pop(namespace, None)

    def on_socket_opened(self, namespace: str) -> None:
        if self.socket_open_listener is not None:
            self.socket_open_listener(namespace)

    def on_socket_closed(self, namespace: str) -> None:
        if self.socket_close_listener is not None:
            self.socket_close_listener(namespace)

    def clear_con_listeners(self) -> None:
        self.open_listener = None
        self.fail_listener = None
        self.reconnecting_listener = None
        self.reconnect_listener = None
        self.close_listener = None

    def clear_socket_listeners(self) -> None:
        self.socket_open_listener = None
        self.socket_close_listener = None

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._sockets_invoke(Socket.on_close)
        self.sync_close()

    # Transport events

    def handle_open(self) -> None:
        if self._state == ConnectionState.CLOSING:
            self.close()
            return
        self._state = ConnectionState.OPENED
        self._reconn_made = 0
        self._sockets_invoke(Socket.on_open)
        self.socket("")
        if self.open_listener is not None:
            self.open_listener()

    def handle_fail(self) -> None:
        if self._state == ConnectionState.CLOSING:
            self.close()
            return
        self._state = ConnectionState.CLOSED
        self._sockets_invoke(Socket.on_disconnect)
        if self._reconn_made < self.reconnect_attempts:
            self._schedule_reconnect()
        elif self.fail_listener is not None:
            self.fail_listener()

    def handle_close(self, code: int) -> None:
        was = self._state
        self._state = ConnectionState.CLOSED
        self._sockets_invoke(Socket.on_disconnect)
        if code == NORMAL_CLOSE or was == ConnectionState.CLOSING:
            reason = CloseReason.NORMAL
        else:
            if self._reconn_made < self.reconnect_attempts:
                self._schedule_reconnect()
                return
            reason = CloseReason.DROP
        if self.close_listener is not None:
            self.close_listener(reason)

    def handle_message(self, payload: Union[str, bytes]) -> None:
        try:
            self._packets.put_payload(payload)
        except PacketError as exc:
            logger.debug("dropping unreadable payload: %s", exc)

    # Internals

    def _start_network_thread(self) -> None:
        thread = threading.Thread(target=self._connect_impl, name="sioclient-network", daemon=True)
        self._network_thread = thread
        thread.start()

    def _connect_impl(self) -> None:
        try:
            url = build_connection_url(self._base_url, self._path, self._sid, self._query_string)
        except ValueError as exc:
            logger.warning("cannot connect to %r: %s", self._base_url, exc)
            if self.fail_listener is not None:
                self.fail_listener()
            return
        self._transport.connect(url, self._headers)
        self._transport.run()

    def _close_impl(self, code: int, reason: str) -> None:
        self._cancel_reconnect()
        self._transport.close(code, reason)

    def _schedule_reconnect(self) -> None:
        delay = next_delay(self._reconn_delay, self._reconn_delay_max, self._reconn_made)
        if self.reconnect_listener is not None:
            self.reconnect_listener(self._reconn_made, delay)
        token = object()
        with self._lock:
            old = self._reconn_timer
            self._reconn_token = token
            self._reconn_timer = self._timer_factory(delay / 1000.0, lambda: self._timeout_reconnect(token))
        if old is not None:
            old.cancel()

    def _cancel_reconnect(self) -> None:
        with self._lock:
            timer, self._reconn_timer = self._reconn_timer, None
            self._reconn_token = None
        if timer is not None:
            timer.cancel()

    def _timeout_reconnect(self, token: object) -> None:
        with self._lock:
            if token is not self._reconn_token:
                return
            self._reconn_token = None
            self._reconn_timer = None
            if self._state != ConnectionState.CLOSED:
                return
            self._state = ConnectionState.OPENING
            self._reconn_made += 1
            self._reset_states()
        if self.reconnecting_listener is not None:
            self.reconnecting_listener()
        with self._lock:
            old = self._network_thread
            if old is not None and old.is_alive() and old is not threading.current_thread():
                old.join()
            self._start_network_thread()

    def _reset_states(self) -> None:
        self._sid = ""
        self._packets.reset()

    def _sockets_invoke(self, method: Callable[[Socket], None]) -> None:
        with self._socket_lock:
            sockets = list(self._sockets.values())
        for sock in sockets:
            method(sock)

    def _on_decode(self, packet: Packet) -> None:
        if packet.frame == FrameType.MESSAGE:
            with self._socket_lock:
                sock = self._sockets.get(packet.nsp)
            if sock is not None:
                sock.on_message_packet(packet)
        elif packet.frame == FrameType.OPEN:
            self._on_handshake(packet.message)
        elif packet.frame == FrameType.CLOSE:
            self._close_impl(ABNORMAL_CLOSE, "End by server")
        elif packet.frame == FrameType.PING:
            self._on_ping()

    def _on_encode(self, is_binary: bool, payload: Union[str, bytes]) -> None:
        if self._state != ConnectionState.OPENED:
            return
        try:
            self._transport.send(payload, is_binary)
        except TransportError as exc:
            logger.debug("send failed: %s", exc)

    def _on_handshake(self, message: Any) -> None:
        if isinstance(message, dict) and isinstance(message.get("sid"), str):
            self._sid = message["sid"]
            interval = message.get("pingInterval")
            timeout = message.get("pingTimeout")
            valid_int = lambda value: isinstance(value, int) and not isinstance(value, bool)  # noqa: E731
            self._ping_interval = interval if valid_int(interval) else DEFAULT_PING_INTERVAL
            self._ping_timeout = timeout if valid_int(timeout) else DEFAULT_PING_TIMEOUT
            return
        self._close_impl(POLICY_VIOLATION, "Handshake error")

    def _on_ping(self) -> None:
        def reply(is_binary: bool, payload: Union[str, bytes]) -> None:
            try:
                self._transport.send(payload, is_binary)
            except TransportError as exc:
                logger.debug("pong failed: %s", exc)

        self._packets.encode(Packet(frame=FrameType.PONG), reply)