import re

import pytest

from sioclient.client import Client
from sioclient.connection import CloseReason, ConnectionState
from sioclient.packet import FrameType, Packet, PacketType


class FakeTransport:
    def __init__(self, handler):
        self.handler = handler
        self.urls = []
        self.headers = []
        self.sent = []
        self.closed = []

    def connect(self, url, headers=None):
        self.urls.append(url)
        self.headers.append(dict(headers or {}))

    def send(self, payload, binary=False):
        self.sent.append((payload, binary))

    def close(self, code, reason=""):
        self.closed.append((code, reason))

    def run(self):
        pass


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


def make_client():
    holder = {}
    timers = FakeTimers()

    def factory(handler):
        holder["transport"] = FakeTransport(handler)
        return holder["transport"]

    client = Client(transport_factory=factory, timer_factory=timers)
    return client, holder["transport"], timers


def connected_client():
    client, transport, timers = make_client()
    client.handle_open()
    client.handle_message('40{"sid":"s1"}')
    return client, transport, timers


def test_connect_builds_url_and_headers():
    client, transport, _ = make_client()
    client.connect("http://localhost:3000", {"b": "x y", "a": "1"}, {"X-Test": "v"}, None, "socket.io")
    client.sync_close()
    url = transport.urls[0]
    assert url.startswith("ws://localhost:3000/socket.io/?EIO=4&transport=websocket&t=")
    assert url.endswith("&a=1&b=x%20y")
    assert transport.headers[0] == {"X-Test": "v"}
    assert client.url == "http://localhost:3000"


def test_connect_with_custom_path():
    client, transport, _ = make_client()
    client.connect("http://localhost:3000", path="custom")
    client.sync_close()
    assert "/custom/?EIO=4" in transport.urls[0]


def test_unsupported_scheme_reports_failure():
    client, transport, _ = make_client()
    failures = []
    client.fail_listener = lambda: failures.append(True)
    client.connect("ftp://example.com")
    client.sync_close()
    assert failures == [True]
    assert transport.urls == []


def test_handshake_reads_sid_and_ping_settings():
    client, _, _ = make_client()
    client.handle_message('0{"sid":"abc","pingInterval":100,"pingTimeout":200}')
    assert client.session_id == "abc"
    assert client.ping_interval == 100
    assert client.ping_timeout == 200


def test_handshake_defaults_ping_settings():
    client, _, _ = make_client()
    client.handle_message('0{"sid":"abc"}')
    assert client.ping_interval == 25000
    assert client.ping_timeout == 60000


def test_handshake_without_sid_closes():
    client, transport, _ = make_client()
    client.handle_message('0{"pingInterval":100}')
    assert transport.closed == [(1008, "Handshake error")]


def test_open_creates_default_socket_and_sends_connect():
    client, transport, _ = make_client()
    opened = []
    client.open_listener = lambda: opened.append(True)
    client.handle_open()
    assert client.opened()
    assert opened == [True]
    assert ("40", False) in transport.sent
    assert client.socket("/").namespace == "/"


def test_open_sends_auth_with_connect():
    client, transport, _ = make_client()
    client.connect("http://localhost:3000", auth={"token": "token"})
    client.sync_close()
    client2, transport2, _ = make_client()
    client2._auth = None
    client.handle_open()
    assert ('40{"token":"token"}', False) in transport.sent
    assert transport2.sent == []


def test_ping_is_answered_with_pong():
    client, transport, _ = make_client()
    client.handle_message("2")
    assert transport.sent == [("3", False)]


def test_namespace_connect_sets_socket_id_and_notifies():
    client, transport, _ = make_client()
    opened = []
    client.socket_open_listener = opened.append
    client.handle_open()
    client.handle_message('40{"sid":"s1"}')
    assert client.socket("/").socket_id == "s1"
    assert client.socket("/").connected
    assert opened == ["/"]


def test_event_is_routed_to_listener():
    client, _, _ = connected_client()
    events = []
    client.socket("/").on("chat", events.append)
    client.handle_message('42["chat","hi"]')
    assert [event.message for event in events] == ["hi"]


def test_binary_event_is_reassembled():
    client, _, _ = make_client()
    events = []
    client.socket("/").on("file", events.append)
    client.handle_message('451-["file",{"_placeholder":true,"num":0}]')
    assert events == []
    client.handle_message(b"\x01\x02")
    assert [event.message for event in events] == [b"\x01\x02"]


def test_emit_with_ack_round_trip():
    client, transport, _ = connected_client()
    replies = []
    client.socket("/").emit("ev", ["x"], replies.append)
    match = re.fullmatch(r'42(\d+)\["ev","x"\]', transport.sent[-1][0])
    assert match is not None
    client.handle_message(f'43{match.group(1)}["ok"]')
    assert replies == [["ok"]]


def test_send_is_dropped_when_not_open():
    client, transport, _ = make_client()
    client.send(Packet(frame=FrameType.MESSAGE, type=PacketType.EVENT, nsp="/", message=["a"]))
    assert transport.sent == []


def test_server_close_frame_closes_abnormally():
    client, transport, _ = make_client()
    client.handle_message("1")
    assert transport.closed == [(1006, "End by server")]


def test_close_leaves_namespaces_and_closes_transport():
    client, transport, _ = connected_client()
    client.close()
    assert ("41", False) in transport.sent
    assert transport.closed == [(1000, "End by user")]
    assert client.state == ConnectionState.CLOSING


def test_normal_close_reports_normal_reason():
    client, _, _ = connected_client()
    reasons = []
    client.close_listener = reasons.append
    client.handle_close(1000)
    assert reasons == [CloseReason.NORMAL]
    assert not client.opened()
    assert not client.socket("/").connected


def test_dropped_connection_without_retries_reports_drop():
    client, _, _ = connected_client()
    client.reconnect_attempts = 0
    reasons = []
    client.close_listener = reasons.append
    client.handle_close(1006)
    assert reasons == [CloseReason.DROP]


def test_dropped_connection_schedules_reconnect():
    client, transport, timers = make_client()
    client.connect("http://localhost:3000")
    client.handle_open()
    scheduled = []
    reconnecting = []
    client.reconnect_listener = lambda made, delay: scheduled.append((made, delay))
    client.reconnecting_listener = lambda: reconnecting.append(True)
    client.handle_close(1006)
    assert scheduled == [(0, 5000)]
    timer = timers.timers[-1]
    assert timer.delay == pytest.approx(5.0)
    timer.callback()
    assert reconnecting == [True]
    assert client.reconnect_attempts_made == 1
    client.sync_close()
    assert len(transport.urls) == 2


def test_cancelled_reconnect_does_not_fire():
    client, _, timers = make_client()
    client.handle_open()
    reconnecting = []
    client.reconnecting_listener = lambda: reconnecting.append(True)
    client.handle_close(1006)
    timer = timers.timers[-1]
    client.close()
    timer.callback()
    assert timer.cancelled
    assert reconnecting == []


def test_fail_without_retries_calls_fail_listener():
    client, _, _ = make_client()
    client.reconnect_attempts = 0
    failures = []
    client.fail_listener = lambda: failures.append(True)
    client.handle_fail()
    assert failures == [True]
    assert client.state == ConnectionState.CLOSED


def test_fail_while_closing_closes_again():
    client, transport, _ = make_client()
    client.close()
    client.handle_fail()
    assert transport.closed == [(1000, "End by user"), (1000, "End by user")]


def test_clear_con_listeners():
    client, _, _ = make_client()
    client.reconnect_attempts = 0
    failures = []
    client.fail_listener = lambda: failures.append(True)
    client.clear_con_listeners()
    client.handle_fail()
    assert failures == []
    assert client.fail_listener is None


def test_clear_socket_listeners():
    client, _, _ = make_client()
    opened = []
    client.socket_open_listener = opened.append
    client.clear_socket_listeners()
    client.on_socket_opened("/chat")
    assert opened == []


def test_reconnect_delay_settings_stay_consistent():
    client, _, _ = make_client()
    client.reconnect_delay = 30000
    assert client.reconnect_delay_max == 30000
    client.reconnect_delay_max = 1000
    assert client.reconnect_delay == 1000


def test_socket_namespaces_are_normalized_and_shared():
    client, _, _ = make_client()
    chat = client.socket("chat")
    assert chat.namespace == "/chat"
    assert client.socket("/chat") is chat
    client.remove_socket("/chat")
    assert client.socket("/chat") is not chat


def test_context_exit_closes_sockets():
    client, transport, _ = make_client()
    closed = []
    client.socket_close_listener = closed.append
    with client:
        client.socket("room")
    assert closed == ["/room"]
    assert transport.closed == [(1000, "End by user")]