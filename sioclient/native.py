"""A high-level Socket.IO client with an event map and connection state callbacks."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field, is_dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional, Union

from .client import UNLIMITED_ATTEMPTS, Client
from .connection import CloseReason
from .packet import to_json
from .socket import Event

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "http://localhost:3000"
DEFAULT_PATH = "socket.io"
DEFAULT_NAMESPACE = "/"
DEFAULT_RECONNECTION_DELAY = 5000

EventCallback = Callable[[str, Any], None]
BinaryCallback = Callable[[str, bytes], None]
AckCallback = Callable[[list], None]
Dispatcher = Callable[[Callable[[], None]], None]
ClientFactory = Callable[[bool, bool], Client]


@dataclass
class ConnectParams:
    """Everything that defines a connection: address, path, query, headers and auth."""

    address_and_port: str = DEFAULT_ADDRESS
    query: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)
    auth_token: str = ""
    extra_auth: dict = field(default_factory=dict)
    path: str = DEFAULT_PATH

    @property
    def auth(self) -> Optional[dict]:
        """The auth object sent on namespace connect, or None when there is nothing to send."""
        auth = dict(self.extra_auth)
        if self.auth_token:
            auth["token"] = self.auth_token
        return auth or None


class ThreadOverride(Enum):
    """Where a callback runs: by the client default, through the dispatcher, or in place."""

    USE_DEFAULT = 0
    USE_GAME_THREAD = 1
    USE_NETWORK_THREAD = 2


@dataclass
class BoundEvent:
    """An event binding kept so it survives a change of the underlying client."""

    function: EventCallback
    namespace: str = DEFAULT_NAMESPACE
    thread: ThreadOverride = ThreadOverride.USE_DEFAULT


def _run_now(function: Callable[[], None]) -> None:
    function()


def _default_client_factory(use_tls: bool, verify_tls: bool) -> Client:
    return Client(verify_tls=verify_tls and use_tls)


def _url_uses_tls(url: str) -> bool:
    lowered = url.lower()
    return lowered.startswith("https://") or lowered.startswith("wss://")


class NativeClient:
    """A Socket.IO client that keeps an event map and reports state through callbacks.

    Callbacks meant for the application thread are handed to ``dispatcher``;
    by default they run at once on whichever thread produced them.
    """

    def __init__(
        self,
        force_tls: bool = False,
        verify_tls: bool = False,
        *,
        client_factory: Optional[ClientFactory] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.on_connected_callback: Optional[Callable[[str, str], None]] = None
        self.on_disconnected_callback: Optional[Callable[[CloseReason], None]] = None
        self.on_namespace_connected_callback: Optional[Callable[[str], None]] = None
        self.on_namespace_disconnected_callback: Optional[Callable[[str], None]] = None
        self.on_reconnection_callback: Optional[Callable[[int, int], None]] = None
        self.on_fail_callback: Optional[Callable[[], None]] = None

        self.event_function_map: dict[str, BoundEvent] = {}
        self.url_params = ConnectParams()
        self.max_reconnection_attempts = 0
        self.reconnection_delay = DEFAULT_RECONNECTION_DELAY
        self.is_connected = False
        self.session_id = ""
        self.socket_id = ""
        self.last_session_id = ""
        self.verbose_log = False
        self.callback_on_game_thread = True
        self.force_tls = force_tls
        self.verify_tls = verify_tls
        self.unbind_events_on_disconnect = False

        self._factory = client_factory or _default_client_factory
        self._dispatcher = dispatcher or _run_now
        self._map_lock = threading.Lock()
        self.is_setup_for_tls = force_tls
        self._client = self._factory(force_tls, verify_tls)
        self._setup_internal_callbacks()

    @property
    def client(self) -> Client:
        """The connection currently in use."""
        return self._client

    # Connection

    def connect(self, params: Union[ConnectParams, str, None] = None) -> None:
        """Connect with the given parameters, an address, or the stored ``url_params``."""
        if params is None or isinstance(params, str):
            if params:
                self.url_params = replace(self.url_params, address_and_port=params)
            params = self.url_params
        else:
            self.url_params = params

        self._sync_tls_mode(params.address_and_port)
        client = self._client
        client.reconnect_attempts = self.max_reconnection_attempts or UNLIMITED_ATTEMPTS
        client.reconnect_delay = self.reconnection_delay
        client.connect(params.address_and_port, params.query, params.headers, params.auth, params.path)

    def join_namespace(self, namespace: str) -> None:
        """Join a namespace; emitting to a namespace joins it as well."""
        self._client.socket(namespace)

    def leave_namespace(self, namespace: str) -> None:
        """Leave a namespace."""
        self._client.socket(namespace).close()

    def disconnect(self) -> None:
        """Close the connection without waiting for it to finish."""
        self._client.close()

    def sync_disconnect(self) -> None:
        """Close the connection and wait for the network thread to end."""
        self._client.sync_close()

    def clear_all_callbacks(self) -> None:
        """Drop every state callback set on this client."""
        self.on_connected_callback = None
        self.on_disconnected_callback = None
        self.on_namespace_connected_callback = None
        self.on_namespace_disconnected_callback = None
        self.on_reconnection_callback = None
        self.on_fail_callback = None

    # Emitting

    def emit(
        self,
        event_name: str,
        message: Any = None,
        callback: Optional[AckCallback] = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        """Emit an event carrying one message, or none when ``message`` is None.

        Dataclass instances are sent as objects. ``callback`` receives the
        list of messages the server acknowledges with.
        """
        if is_dataclass(message) and not isinstance(message, type):
            message = asdict(message)
        messages = [] if message is None else [message]
        self._emit(event_name, messages, callback, namespace)

    def emit_raw(
        self,
        event_name: str,
        messages=None,
        callback: Optional[AckCallback] = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        """Emit an event whose arguments are the given list of messages."""
        self._emit(event_name, list(messages or ()), callback, namespace)

    def emit_raw_binary(self, event_name: str, data, namespace: str = DEFAULT_NAMESPACE) -> None:
        """Emit an event carrying one binary attachment."""
        self._emit(event_name, [bytes(data)], None, namespace)

    # Binding

    def on_event(
        self,
        event_name: str,
        callback: EventCallback,
        namespace: str = DEFAULT_NAMESPACE,
        thread: ThreadOverride = ThreadOverride.USE_DEFAULT,
    ) -> None:
        """Call ``callback(name, message)`` on each such event; kept in the event map."""
        bound = BoundEvent(function=callback, namespace=namespace, thread=thread)
        with self._map_lock:
            self.event_function_map[event_name] = bound
        self._bind(event_name, bound)

    def on_raw_event(
        self,
        event_name: str,
        callback: EventCallback,
        namespace: str = DEFAULT_NAMESPACE,
        thread: ThreadOverride = ThreadOverride.USE_DEFAULT,
    ) -> None:
        """Bind a callback directly to the socket, without adding it to the event map."""
        self._client.socket(namespace).on(event_name, self._listener(callback, thread))

    def on_raw_binary_event(
        self,
        event_name: str,
        callback: BinaryCallback,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        """Call ``callback(name, data)`` with the binary payload of each such event."""

        def listener(event: Event) -> None:
            message = event.message
            data = bytes(message) if isinstance(message, (bytes, bytearray, memoryview)) else b""
            self._run(ThreadOverride.USE_DEFAULT, lambda: callback(event.name, data))

        self._client.socket(namespace).on(event_name, listener)

    def unbind_event(self, event_name: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        """Remove whatever is bound to an event; safe when nothing is."""
        with self._map_lock:
            self.event_function_map.pop(event_name, None)
        self._client.socket(namespace).off(event_name)

    # Internals

    def _emit(self, event_name: str, messages: list, callback: Optional[AckCallback], namespace: str) -> None:
        to_json(messages, [])
        ack = None
        if callback is not None:
            def ack(replies: list) -> None:
                self._run(ThreadOverride.USE_DEFAULT, lambda: callback(replies))
        self._client.socket(namespace).emit(event_name, messages, ack)

    def _listener(self, callback: EventCallback, thread: ThreadOverride) -> Callable[[Event], None]:
        def listener(event: Event) -> None:
            message = event.message
            self._run(thread, lambda: callback(event.name, message))

        return listener

    def _bind(self, event_name: str, bound: BoundEvent) -> None:
        self._client.socket(bound.namespace).on(event_name, self._listener(bound.function, bound.thread))

    def _rebind_current_event_map(self) -> None:
        with self._map_lock:
            bindings = list(self.event_function_map.items())
        for event_name, bound in bindings:
            self._bind(event_name, bound)

    def _run(self, thread: ThreadOverride, function: Callable[[], None]) -> None:
        on_app_thread = thread == ThreadOverride.USE_GAME_THREAD or (
            thread == ThreadOverride.USE_DEFAULT and self.callback_on_game_thread
        )
        if on_app_thread:
            self._dispatcher(function)
        else:
            function()

    def _notify(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is not None:
            self._run(ThreadOverride.USE_DEFAULT, lambda: callback(*args))

    def _log(self, text: str, *args: Any) -> None:
        if self.verbose_log:
            logger.info(text, *args)

    def _sync_tls_mode(self, url: str) -> None:
        wants_tls = self.force_tls or _url_uses_tls(url)
        if wants_tls == self.is_setup_for_tls:
            return
        self._client.sync_close()
        self._clear_internal_callbacks()
        self.is_setup_for_tls = wants_tls
        self._client = self._factory(wants_tls, self.verify_tls)
        self._setup_internal_callbacks()
        self._rebind_current_event_map()

    def _clear_internal_callbacks(self) -> None:
        self._client.clear_con_listeners()
        self._client.clear_socket_listeners()

    def _setup_internal_callbacks(self) -> None:
        client = self._client
        client.open_listener = self._handle_open
        client.fail_listener = self._handle_fail
        client.reconnect_listener = self._handle_reconnect
        client.close_listener = self._handle_close
        client.socket_open_listener = self._handle_namespace_open
        client.socket_close_listener = self._handle_namespace_close

    def _handle_open(self) -> None:
        self.is_connected = True
        self.session_id = self._client.session_id
        self._log("connection opened")

    def _handle_namespace_open(self, namespace: str) -> None:
        if namespace == DEFAULT_NAMESPACE:
            self.is_connected = True
            self.session_id = self._client.session_id
            self.last_session_id = self.session_id
            self.socket_id = self._client.socket(namespace).socket_id
            self._log("connected: socket %s, session %s", self.socket_id, self.session_id)
            self._notify(self.on_connected_callback, self.socket_id, self.session_id)
        self._log("joined namespace %s", namespace)
        self._notify(self.on_namespace_connected_callback, namespace)

    def _handle_namespace_close(self, namespace: str) -> None:
        self._log("left namespace %s", namespace)
        self._notify(self.on_namespace_disconnected_callback, namespace)

    def _handle_close(self, reason: CloseReason) -> None:
        self.is_connected = False
        if self.session_id:
            self.last_session_id = self.session_id
        self.session_id = ""
        self.socket_id = ""
        self._log("disconnected: %s", reason.name)
        if self.unbind_events_on_disconnect:
            with self._map_lock:
                bindings = list(self.event_function_map.items())
                self.event_function_map.clear()
            for event_name, bound in bindings:
                self._client.socket(bound.namespace).off(event_name)
        self._notify(self.on_disconnected_callback, reason)

    def _handle_fail(self) -> None:
        self.is_connected = False
        self._log("connection failed")
        self._notify(self.on_fail_callback)

    def _handle_reconnect(self, attempts: int, delay: int) -> None:
        self._log("reconnecting, attempt %d in %d ms", attempts, delay)
        self._notify(self.on_reconnection_callback, attempts, delay)