"""WebSocket transport implementation.

Serves the admin and viewer endpoints from a single WebSocket server.
Endpoints are classified by request path before the handshake; requests
for any other path are answered with HTTP 404 and never upgraded.
"""

import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from http import HTTPStatus
from typing import Any
from urllib.parse import urlparse

import websockets
from pydantic import BaseModel
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request, Response
from websockets.protocol import State

from broadcast.protocol import encode
from broadcast.transport.base import Connection, ConnectionState

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[Connection], Awaitable[None]]


def request_endpoint(raw_path: str) -> str:
    """Return the endpoint part of a request target, without query string."""
    return urlparse(raw_path).path


class WebSocketConnection(Connection):
    """Connection backed by a ``websockets`` server connection."""

    def __init__(self, websocket: ServerConnection, connection_id: str) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: WebSocket connection
            connection_id: Unique identifier for logging
        """
        super().__init__(connection_id)
        self._websocket = websocket

    @property
    def remote_address(self) -> Any:
        """Peer address as reported by the socket."""
        return self._websocket.remote_address

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN and self._websocket.state == State.OPEN

    async def send(self, message: BaseModel) -> bool:
        if not self.is_open:
            return False

        try:
            await self._websocket.send(encode(message))
            return True
        except websockets.exceptions.ConnectionClosed:
            self.mark_closed()
            logger.debug(
                "Dropped message for closed connection",
                extra={"connection_id": self.connection_id},
            )
        except Exception as e:
            logger.error(
                "Failed to send message",
                extra={"connection_id": self.connection_id, "error": str(e)},
            )
        return False

    async def messages(self) -> AsyncIterator[str | bytes]:
        try:
            async for raw_message in self._websocket:
                yield raw_message
        except websockets.exceptions.ConnectionClosedError as e:
            self.mark_closed()
            raise ConnectionError(f"WebSocket connection lost: {e}") from e
        finally:
            self.mark_closed()

    async def close(self) -> None:
        if self.state == ConnectionState.CLOSED and self._websocket.state == State.CLOSED:
            return

        self.mark_closed()
        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"connection_id": self.connection_id, "error": str(e)},
            )


class WebSocketTransport:
    """WebSocket transport server.

    Manages the WebSocket server lifecycle and hands each accepted
    connection to the handler registered for its endpoint.
    """

    def __init__(
        self,
        routes: Mapping[str, ConnectionHandler],
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3000,
        max_message_bytes: int = 4 * 2**20,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            routes: Endpoint path → connection handler
            host: Bind host address
            port: Bind port
            max_message_bytes: Largest inbound message accepted
        """
        self._routes = dict(routes)
        self._host = host
        self._port = port
        self._max_message_bytes = max_message_bytes
        self._server: Any = None  # websockets Server
        self._running = False

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "endpoints": sorted(self._routes)},
        )

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server", extra={"host": self._host, "port": self._port}
        )

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                process_request=self._process_request,
                max_size=self._max_message_bytes,
            )
            self._running = True
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

        logger.info(
            "WebSocket server started", extra={"host": self._host, "port": self._port}
        )

    async def stop(self) -> None:
        """Stop the WebSocket server and close all open connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    def _process_request(
        self, websocket: ServerConnection, request: Request
    ) -> Response | None:
        """Reject upgrades for unknown endpoints before the handshake."""
        endpoint = request_endpoint(request.path)
        if endpoint in self._routes:
            return None

        logger.warning(
            "Rejected upgrade for unknown endpoint",
            extra={"path": request.path, "remote": websocket.remote_address},
        )
        return websocket.respond(HTTPStatus.NOT_FOUND, "Unknown endpoint\n")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Wrap an accepted connection and run its endpoint handler."""
        endpoint = request_endpoint(websocket.request.path)
        handler = self._routes.get(endpoint)
        if handler is None:
            await websocket.close(code=1008, reason="Unknown endpoint")
            return

        connection = WebSocketConnection(
            websocket, f"{endpoint.strip('/')}-{uuid.uuid4().hex[:12]}"
        )
        connection.mark_open()
        started = time.monotonic()

        logger.info(
            "New WebSocket connection",
            extra={
                "connection_id": connection.connection_id,
                "endpoint": endpoint,
                "remote": websocket.remote_address,
            },
        )

        try:
            await handler(connection)
        except Exception as e:
            logger.exception(
                "Error in connection handler",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
        finally:
            connection.mark_closed()
            logger.info(
                "WebSocket connection closed",
                extra={
                    "connection_id": connection.connection_id,
                    "duration_s": round(time.monotonic() - started, 3),
                },
            )
