"""A blocking websocket transport that reports its events to a handler."""

from __future__ import annotations

import ssl
import threading
from typing import Callable, Mapping, Optional, Protocol, Union

import websocket
from websocket import ABNF, WebSocketException

from .connection import ABNORMAL_CLOSE, NO_STATUS

CLOSE_TIMEOUT = 5.0


class TransportError(ConnectionError):
    """Raised when the transport cannot do what was asked of it."""


class TransportHandler(Protocol):
    """Receives the life-cycle events and messages of a transport."""

    def handle_open(self) -> None: ...

    def handle_fail(self) -> None: ...

    def handle_close(self, code: int) -> None: ...

    def handle_message(self, payload: Union[str, bytes]) -> None: ...


SocketFactory = Callable[[], "websocket.WebSocket"]


def _default_factory(verify_tls: bool) -> SocketFactory:
    sslopt = {} if verify_tls else {"cert_reqs": ssl.CERT_NONE, "check_hostname": False}

    def build() -> websocket.WebSocket:
        return websocket.WebSocket(sslopt=sslopt, enable_multithread=True)

    return build


def _close_code(data: Union[bytes, str, None]) -> int:
    if isinstance(data, str):
        data = data.encode("utf-8")
    if data and len(data) >= 2:
        return int.from_bytes(data[:2], "big")
    return NO_STATUS


class WebSocketTransport:
    """One websocket connection; ``run`` performs the handshake and reads until closed.

    The close code reported to the handler is the one this side sent: the code
    passed to ``close`` when the close started here, the server's code when it
    started there, and an abnormal-close code when the connection dropped.
    """

    def __init__(
        self,
        handler: TransportHandler,
        *,
        verify_tls: bool = False,
        socket_factory: Optional[SocketFactory] = None,
        close_timeout: float = CLOSE_TIMEOUT,
    ) -> None:
        self._handler = handler
        self._factory = socket_factory or _default_factory(verify_tls)
        self._close_timeout = close_timeout
        self._lock = threading.Lock()
        self._ws = None
        self._url: Optional[str] = None
        self._headers: dict[str, str] = {}
        self._local_close_code: Optional[int] = None
        self._close_timer: Optional[threading.Timer] = None

    @property
    def connected(self) -> bool:
        with self._lock:
            ws = self._ws
        return ws is not None and bool(getattr(ws, "connected", True))

    def connect(self, url: str, headers: Optional[Mapping[str, str]] = None) -> None:
        """Set the address and extra headers used by the next ``run``."""
        self._url = url
        self._headers = dict(headers or {})
        self._local_close_code = None

    def send(self, payload: Union[str, bytes], binary: bool = False) -> None:
        """Send one text or binary frame."""
        with self._lock:
            ws = self._ws
        if ws is None:
            raise TransportError("transport is not connected")
        opcode = ABNF.OPCODE_BINARY if binary else ABNF.OPCODE_TEXT
        try:
            ws.send(payload, opcode)
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"send failed: {exc}") from exc

    def close(self, code: int, reason: str = "") -> None:
        """Start a close handshake; does nothing when there is no live connection."""
        with self._lock:
            ws = self._ws
            if ws is None:
                return
            self._local_close_code = code
        try:
            ws.send_close(status=code, reason=reason.encode("utf-8"))
        except (WebSocketException, OSError, ValueError):
            self._shutdown(ws)
            return
        timer = threading.Timer(self._close_timeout, self._shutdown, args=(ws,))
        timer.daemon = True
        with self._lock:
            self._close_timer = timer
        timer.start()

    def run(self) -> None:
        """Connect, then deliver messages to the handler until the connection ends."""
        if self._url is None:
            raise TransportError("no address set; call connect first")
        ws = self._factory()
        try:
            ws.connect(self._url, header=self._headers)
        except (WebSocketException, OSError, ValueError):
            self._handler.handle_fail()
            return

        with self._lock:
            self._ws = ws
            self._local_close_code = None
        self._handler.handle_open()
        try:
            code = self._receive(ws)
        finally:
            with self._lock:
                self._ws = None
                local_code, self._local_close_code = self._local_close_code, None
                timer, self._close_timer = self._close_timer, None
            if timer is not None:
                timer.cancel()
            self._shutdown(ws)
        self._handler.handle_close(local_code if local_code is not None else code)

    def _receive(self, ws) -> int:
        while True:
            try:
                opcode, data = ws.recv_data()
            except (WebSocketException, OSError):
                return ABNORMAL_CLOSE
            if opcode == ABNF.OPCODE_CLOSE:
                return _close_code(data)
            if opcode == ABNF.OPCODE_TEXT:
                if isinstance(data, (bytes, bytearray)):
                    data = bytes(data).decode("utf-8", errors="replace")
                self._handler.handle_message(data)
            elif opcode == ABNF.OPCODE_BINARY:
                self._handler.handle_message(bytes(data))

    @staticmethod
    def _shutdown(ws) -> None:
        try:
            ws.shutdown()
        except (WebSocketException, OSError):
            pass