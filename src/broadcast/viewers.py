"""Viewer registry.

Tracks connected viewers, enforces the viewer capacity and fans broadcast
messages out to every open viewer, honoring each viewer's audio preference.

Each viewer has a bounded outbox drained by its own writer task, so a
viewer that stops reading never delays delivery to the others. When an
outbox is full, further messages for that viewer are dropped.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from broadcast.protocol import (
    ServerToViewerMessage,
    StatusMessage,
    TranscriptMessage,
    ViewerAudioMessage,
    ViewerTextMessage,
)
from broadcast.transport.base import Connection

logger = logging.getLogger(__name__)

DEFAULT_MAX_VIEWERS = 5
DEFAULT_OUTBOX_SIZE = 256


@dataclass
class Viewer:
    """A connected viewer and its delivery preferences."""

    id: str
    connection: Connection
    audio_enabled: bool = True
    connected_at: float = field(default_factory=time.time)
    outbox: asyncio.Queue[ServerToViewerMessage] = field(
        default_factory=lambda: asyncio.Queue(maxsize=DEFAULT_OUTBOX_SIZE), repr=False
    )
    writer: asyncio.Task[None] | None = field(default=None, repr=False)


class ViewerRegistry:
    """Capacity-bounded mapping of viewer id → Viewer.

    The registry never removes viewers on its own: a failed send is skipped
    and removal happens when the connection's owner sees it close.
    """

    def __init__(
        self,
        max_viewers: int = DEFAULT_MAX_VIEWERS,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
    ) -> None:
        """Initialize viewer registry.

        Args:
            max_viewers: Maximum number of concurrent viewers
            outbox_size: Messages buffered per viewer before dropping
        """
        if max_viewers < 1:
            raise ValueError(f"max_viewers must be >= 1, got {max_viewers}")
        if outbox_size < 1:
            raise ValueError(f"outbox_size must be >= 1, got {outbox_size}")
        self.max_viewers = max_viewers
        self.outbox_size = outbox_size
        self._viewers: dict[str, Viewer] = {}

    def count(self) -> int:
        """Current number of registered viewers."""
        return len(self._viewers)

    def get(self, viewer_id: str) -> Viewer | None:
        """Look up a viewer by id."""
        return self._viewers.get(viewer_id)

    def _new_viewer_id(self) -> str:
        while True:
            viewer_id = f"viewer_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
            if viewer_id not in self._viewers:
                return viewer_id

    async def admit(self, connection: Connection) -> Viewer | None:
        """Admit a new viewer connection.

        Args:
            connection: Newly accepted viewer connection

        Returns:
            The registered Viewer, or None if the registry is full (the
            connection is told why and closed)
        """
        # Capacity check and insert must not be separated by an await
        if len(self._viewers) >= self.max_viewers:
            logger.warning(
                "Viewer rejected: registry full",
                extra={"connection_id": connection.connection_id, "max_viewers": self.max_viewers},
            )
            await connection.send(
                StatusMessage(
                    message=f"Server full. Maximum {self.max_viewers} viewers allowed."
                )
            )
            await connection.close()
            return None

        viewer = Viewer(
            id=self._new_viewer_id(),
            connection=connection,
            outbox=asyncio.Queue(maxsize=self.outbox_size),
        )
        self._viewers[viewer.id] = viewer
        logger.info(
            "Viewer connected",
            extra={"viewer_id": viewer.id, "viewer_count": len(self._viewers)},
        )

        # Welcome goes out first; broadcasts arriving meanwhile wait in the outbox
        await self._send(
            viewer,
            StatusMessage(message="Connected to broadcast", viewer_count=len(self._viewers)),
        )
        if viewer.id in self._viewers:
            viewer.writer = asyncio.create_task(
                self._write_loop(viewer), name=f"viewer_writer_{viewer.id}"
            )
        return viewer

    def remove(self, viewer_id: str) -> None:
        """Remove a viewer and stop its writer. No-op if it is not registered."""
        viewer = self._viewers.pop(viewer_id, None)
        if viewer is None:
            return

        if viewer.writer is not None:
            viewer.writer.cancel()
            viewer.writer = None
        logger.info(
            "Viewer disconnected",
            extra={"viewer_id": viewer_id, "viewer_count": len(self._viewers)},
        )

    async def set_audio_enabled(self, viewer_id: str, enabled: bool) -> None:
        """Enable or mute audio delivery for one viewer and acknowledge it."""
        viewer = self._viewers.get(viewer_id)
        if viewer is None:
            return

        viewer.audio_enabled = enabled
        state = "enabled" if enabled else "disabled"
        logger.info("Viewer audio toggled", extra={"viewer_id": viewer_id, "audio": state})
        self._enqueue(viewer, StatusMessage(message=f"Audio {state}"))

    async def broadcast_text(self, content: str) -> None:
        """Send an assistant text chunk to every viewer."""
        await self._broadcast(ViewerTextMessage(content=content))

    async def broadcast_transcript(self, content: str) -> None:
        """Send an admin transcript to every viewer."""
        await self._broadcast(TranscriptMessage(content=content))

    async def broadcast_audio(self, data: str) -> None:
        """Send an audio chunk to viewers that have audio enabled."""
        await self._broadcast(ViewerAudioMessage(data=data), audio=True)

    async def broadcast_status(
        self, message: str, admin_connected: bool | None = None
    ) -> None:
        """Send a status update with the current viewer count to every viewer."""
        await self._broadcast(
            StatusMessage(
                message=message,
                viewer_count=len(self._viewers),
                admin_connected=admin_connected,
            )
        )

    async def _broadcast(self, message: ServerToViewerMessage, audio: bool = False) -> None:
        for viewer in self._viewers.values():
            if audio and not viewer.audio_enabled:
                continue
            self._enqueue(viewer, message)

    def _enqueue(self, viewer: Viewer, message: ServerToViewerMessage) -> None:
        if not viewer.connection.is_open:
            return
        try:
            viewer.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Viewer outbox full, dropping message",
                extra={"viewer_id": viewer.id, "message_type": message.type},
            )

    async def _write_loop(self, viewer: Viewer) -> None:
        while True:
            message = await viewer.outbox.get()
            try:
                await self._send(viewer, message)
            finally:
                viewer.outbox.task_done()

    async def _send(self, viewer: Viewer, message: ServerToViewerMessage) -> None:
        if viewer.connection.is_open:
            await viewer.connection.send(message)
