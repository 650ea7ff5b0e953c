"""Connection-level helpers: URL building, query encoding and reconnection timing."""

from __future__ import annotations

import time
from enum import Enum, IntEnum
from typing import Mapping, Optional
from urllib.parse import urlsplit

DEFAULT_PATH = "socket.io"
DEFAULT_RESOURCE = "/socket.io/"
ENGINE_QUERY = "?EIO=4&transport=websocket"

DEFAULT_RECONNECT_DELAY = 5000
DEFAULT_RECONNECT_DELAY_MAX = 25000
DEFAULT_PING_INTERVAL = 25000
DEFAULT_PING_TIMEOUT = 60000
MAX_BACKOFF_EXPONENT = 32

NORMAL_CLOSE = 1000
NO_STATUS = 1005
ABNORMAL_CLOSE = 1006
POLICY_VIOLATION = 1008

_PLAIN_SCHEMES = ("http", "ws")
_TLS_SCHEMES = ("https", "wss")
_DEFAULT_PORTS = {"http": 80, "ws": 80, "https": 443, "wss": 443}


class CloseReason(IntEnum):
    """Why a connection ended."""

    NORMAL = 0
    DROP = 1


class ConnectionState(Enum):
    """Life cycle of the underlying connection."""

    OPENING = "opening"
    OPENED = "opened"
    CLOSING = "closing"
    CLOSED = "closed"


def _is_unreserved(byte: int) -> bool:
    return chr(byte).isascii() and chr(byte).isalnum()


def encode_query_string(value: str) -> str:
    """Percent-encode every byte of ``value`` that is not an ASCII letter or digit."""
    return "".join(
        chr(byte) if _is_unreserved(byte) else f"%{byte:02X}"
        for byte in value.encode("utf-8")
    )


def build_query_string(query: Optional[Mapping[str, str]]) -> str:
    """Join query pairs as ``&key=value`` in key order, encoding the values."""
    if not query:
        return ""
    return "".join(f"&{key}={encode_query_string(query[key])}" for key in sorted(query))


def _scheme(uri: str) -> str:
    scheme = urlsplit(uri).scheme
    if scheme not in _PLAIN_SCHEMES + _TLS_SCHEMES:
        raise ValueError("unsupported URI scheme")
    return scheme


def is_tls(uri: str) -> bool:
    """True for https/wss addresses, False for http/ws; anything else is an error."""
    return _scheme(uri) in _TLS_SCHEMES


def normalize_namespace(namespace: str) -> str:
    """Give a namespace its leading slash; the empty namespace is ``/``."""
    if not namespace:
        return "/"
    if not namespace.startswith("/"):
        return "/" + namespace
    return namespace


def build_connection_url(
    base_url: str,
    path: Optional[str] = DEFAULT_PATH,
    sid: str = "",
    query_string: str = "",
    timestamp: Optional[int] = None,
) -> str:
    """Build the websocket URL for the Engine.IO handshake."""
    scheme = _scheme(base_url)
    parts = urlsplit(base_url)
    host = parts.hostname or ""
    port = parts.port
    if port is None:
        port = _DEFAULT_PORTS[scheme]

    if ":" in host:
        host = f"[{host}]"

    resource = parts.path or "/"
    if parts.query:
        resource = f"{resource}?{parts.query}"
    resource = DEFAULT_RESOURCE if resource == "/" else resource
    if path and path != DEFAULT_PATH:
        resource = f"/{path}/"

    ws_scheme = "wss" if scheme in _TLS_SCHEMES else "ws"
    if timestamp is None:
        timestamp = int(time.time())

    url = f"{ws_scheme}://{host}:{port}{resource}{ENGINE_QUERY}"
    if sid:
        url += f"&sid={sid}"
    return f"{url}&t={timestamp}{query_string}"


def next_delay(delay: int, delay_max: int, attempts_made: int) -> int:
    """Reconnection delay in milliseconds: grows by 1.5 per attempt, capped at ``delay_max``."""
    exponent = min(attempts_made, MAX_BACKOFF_EXPONENT)
    return int(min(delay * 1.5 ** exponent, delay_max))