# sioclient

A Socket.IO client library for Python. It speaks Engine.IO protocol version 4
over a WebSocket, keeps one socket per namespace, queues packets until a
namespace is joined, matches acknowledgements to their callbacks and
reconnects with a growing delay when the connection drops.

## Installation

```
pip install sioclient
```

## Quick start

The high-level entry point is `NativeClient` in `sioclient.native`:

```python
from sioclient.native import ConnectParams, NativeClient

client = NativeClient()
client.on_connected_callback = lambda socket_id, session_id: print("connected", socket_id)
client.on_event("chat", lambda name, data: print(name, data))

client.connect(ConnectParams(
    address_and_port="http://localhost:3000",
    query={"room": "lobby"},
    headers={"X-Client": "demo"},
    auth_token="token",
))

client.emit("chat", {"text": "hello"}, callback=lambda reply: print("ack", reply))
client.join_namespace("/admin")

client.sync_disconnect()
```

`connect` also takes a bare address string, or nothing at all, in which case
the stored `url_params` are used. `ConnectParams` defaults to
`http://localhost:3000` and the `socket.io` path; `auth_token` and
`extra_auth` are combined into the auth object sent when a namespace is
joined.

### Connection settings

- `max_reconnection_attempts` – `0` (the default) means retry without limit.
- `reconnection_delay` – base delay in milliseconds (default 5000); each
  further attempt waits 1.5 times longer, up to the client's maximum.
- `force_tls` / `verify_tls` – constructor arguments. An `https://` or
  `wss://` address switches to TLS; when the TLS mode changes, the underlying
  `Client` is replaced and the bindings in `event_function_map` are bound
  again.
- `unbind_events_on_disconnect` – drop every binding in the event map when
  the connection closes.

### State callbacks

`on_connected_callback(socket_id, session_id)`,
`on_disconnected_callback(reason)` (a `CloseReason`),
`on_namespace_connected_callback(namespace)`,
`on_namespace_disconnected_callback(namespace)`,
`on_reconnection_callback(attempts, delay_ms)` and `on_fail_callback()`.
`clear_all_callbacks()` removes them all.

Callbacks run through the `dispatcher` given to the constructor (by default
they run at once, on the network thread). `ThreadOverride` chooses per
binding whether to use the dispatcher (`USE_GAME_THREAD`), run in place
(`USE_NETWORK_THREAD`) or follow `callback_on_game_thread` (`USE_DEFAULT`).

### Binding events

- `on_event(event_name, callback, namespace="/", thread=...)` calls
  `callback(name, message)` with the first message of each event and stores
  the binding in `event_function_map`.
- `on_raw_event` binds the same kind of callback to the socket directly,
  without storing it in the event map.
- `on_raw_binary_event` calls `callback(name, data)` with the event's binary
  payload as `bytes` (empty when the message is not binary).
- `unbind_event(event_name, namespace)` removes a binding; safe when nothing
  is bound.

### Emitting

`emit` sends one message: `None` (no message), strings, numbers, booleans,
`bytes`, lists, dicts or dataclass instances (sent as objects). `emit_raw`
sends a list of values as the event arguments, and `emit_raw_binary` sends a
single binary attachment. An optional `callback` receives the list of
messages the server acknowledges with.

## Lower-level pieces

- `sioclient.packet` – `Packet`, `PacketManager`, `FrameType`, `PacketType`,
  `PacketError` and the JSON/binary-placeholder conversion `to_json` /
  `from_json`.
- `sioclient.socket` – `Socket`, one namespace on a connection, with `on`,
  `off`, `emit`, acknowledgement handling and an `Event` type whose
  `put_ack_message` sets the reply to the server.
- `sioclient.connection` – URL building (`build_connection_url`), query
  encoding (`encode_query_string`, `build_query_string`), `is_tls`,
  `normalize_namespace`, the reconnection delay (`next_delay`), plus
  `CloseReason` and `ConnectionState`.
- `sioclient.transport` – `WebSocketTransport`, the blocking WebSocket layer
  that reports to a `TransportHandler`.
- `sioclient.client` – `Client`, the connection manager that runs the
  transport on a background thread and ties the pieces together.

## What it does not do

- It is a library only; there is no command-line tool.
- Only the WebSocket transport is used; there is no HTTP long-polling
  fallback.
- It does not send pings of its own or time out a silent server; it answers
  the server's pings.