"""Socket.IO client: packet codec, namespaced sockets, a WebSocket transport and a reconnecting connection."""

__version__ = "0.1.0"

__all__ = ["client", "connection", "native", "packet", "socket", "transport"]