"""Transport layer for admin and viewer client connections.

Provides the connection abstraction used by the relay components and the
WebSocket server that produces concrete connections.
"""

from broadcast.transport.base import Connection, ConnectionState
from broadcast.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "Connection",
    "ConnectionState",
    "WebSocketConnection",
    "WebSocketTransport",
]
