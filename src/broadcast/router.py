"""Connection router.

Maps the two WebSocket endpoints onto the relay components: ``/admin``
connections go through the admin session relay, ``/viewer`` connections
through the viewer registry. Each handler runs for the lifetime of its
connection and dispatches inbound messages by their ``type`` tag.
"""

import logging

from broadcast.admin import AdminSessionRelay
from broadcast.protocol import (
    AdminAudioMessage,
    AdminTextMessage,
    ProtocolError,
    StatusMessage,
    ToggleAudioMessage,
    UpdateContextMessage,
    parse_admin_message,
    parse_viewer_message,
)
from broadcast.transport.base import Connection
from broadcast.transport.websocket_transport import ConnectionHandler
from broadcast.viewers import Viewer, ViewerRegistry

logger = logging.getLogger(__name__)

ADMIN_ENDPOINT = "/admin"
VIEWER_ENDPOINT = "/viewer"


class ConnectionRouter:
    """Routes admin and viewer connections to their components."""

    def __init__(self, relay: AdminSessionRelay, viewers: ViewerRegistry) -> None:
        self.relay = relay
        self.viewers = viewers

    @property
    def routes(self) -> dict[str, ConnectionHandler]:
        """Endpoint path → connection handler."""
        return {
            ADMIN_ENDPOINT: self.handle_admin,
            VIEWER_ENDPOINT: self.handle_viewer,
        }

    async def handle_admin(self, connection: Connection) -> None:
        """Run an admin connection from admission to close."""
        try:
            # The finally clause must cover admission itself
            if not await self.relay.admit_admin(connection):
                return

            async for raw in connection.messages():
                await self._dispatch_admin(connection, raw)
        except ConnectionError as e:
            logger.error(
                "Admin WebSocket error",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
        finally:
            await self.relay.disconnect_admin(connection)

    async def _dispatch_admin(self, connection: Connection, raw: str | bytes) -> None:
        try:
            message = parse_admin_message(raw)
        except ProtocolError as e:
            logger.error(
                "Error parsing admin message",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
            return

        if isinstance(message, AdminAudioMessage):
            await self.relay.relay_audio(message.data)
        elif isinstance(message, AdminTextMessage):
            await self.relay.relay_text(message.content)
        elif isinstance(message, UpdateContextMessage):
            await self.relay.update_context(message.context)
        else:
            logger.debug(
                "Ignoring unrecognized admin message",
                extra={"connection_id": connection.connection_id},
            )

    async def handle_viewer(self, connection: Connection) -> None:
        """Run a viewer connection from admission to close."""
        viewer = await self.viewers.admit(connection)
        if viewer is None:
            return

        try:
            admin_connected = self.relay.is_connected
            await connection.send(
                StatusMessage(
                    message="Admin is connected" if admin_connected else "Waiting for admin...",
                    admin_connected=admin_connected,
                    viewer_count=self.viewers.count(),
                )
            )

            async for raw in connection.messages():
                await self._dispatch_viewer(viewer, raw)
        except ConnectionError as e:
            logger.error(
                "Viewer WebSocket error",
                extra={"viewer_id": viewer.id, "error": str(e)},
            )
        finally:
            self.viewers.remove(viewer.id)

    async def _dispatch_viewer(self, viewer: Viewer, raw: str | bytes) -> None:
        try:
            message = parse_viewer_message(raw)
        except ProtocolError as e:
            logger.error(
                "Error parsing viewer message",
                extra={"viewer_id": viewer.id, "error": str(e)},
            )
            return

        if isinstance(message, ToggleAudioMessage):
            await self.viewers.set_audio_enabled(viewer.id, message.enabled)
        else:
            logger.debug("Ignoring unrecognized viewer message", extra={"viewer_id": viewer.id})
