"""Admin session relay.

Owns the single admin connection and the single upstream Realtime session.
Admin commands are translated into upstream events; upstream events are
translated into admin echoes and viewer broadcasts.

State is derived from two facts, whether an admin is connected and whether
the upstream link is open:

- IDLE: no admin
- CONNECTING: admin connected, upstream not (yet) open
- READY: admin connected and upstream open

Sends towards an absent or closed upstream are dropped without signaling
the caller.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Any, Protocol

from broadcast import upstream as events
from broadcast.config import UpstreamConfig
from broadcast.protocol import (
    AssistantAudioMessage,
    AssistantMessage,
    AssistantMessageDone,
    ServerToAdminMessage,
    StatusMessage,
    UserMessage,
)
from broadcast.transport.base import Connection
from broadcast.upstream import RealtimeClient
from broadcast.viewers import ViewerRegistry

logger = logging.getLogger(__name__)


class UpstreamLink(Protocol):
    """What the relay needs from an upstream session client."""

    @property
    def is_open(self) -> bool: ...

    async def connect(self) -> None: ...

    async def send_event(self, event: dict[str, Any]) -> bool: ...

    def events(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


UpstreamFactory = Callable[[str], UpstreamLink]


class RelayState(Enum):
    """Admin session states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"


class AdminSessionRelay:
    """Relay between the admin client, the upstream session and the viewers.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        viewers: ViewerRegistry,
        config: UpstreamConfig | None = None,
        upstream_factory: UpstreamFactory | None = None,
    ) -> None:
        """Initialize admin session relay.

        Args:
            viewers: Registry that receives broadcasts
            config: Upstream configuration (defaults apply when omitted)
            upstream_factory: Builds an upstream link from an API key;
                defaults to a RealtimeClient for ``config.session_url``
        """
        self.viewers = viewers
        self.config = config or UpstreamConfig()
        self._upstream_factory: UpstreamFactory = upstream_factory or (
            lambda api_key: RealtimeClient(self.config.session_url, api_key)
        )

        self._admin: Connection | None = None
        self._admin_connected = False
        self._upstream: UpstreamLink | None = None
        self._upstream_task: asyncio.Task[None] | None = None
        self._context = self.config.default_instructions

    @property
    def is_connected(self) -> bool:
        """Whether an admin currently holds the session."""
        return self._admin_connected

    @property
    def context(self) -> str:
        """Current instruction string."""
        return self._context

    @property
    def upstream_open(self) -> bool:
        """Whether the upstream link can accept events."""
        return self._upstream is not None and self._upstream.is_open

    @property
    def state(self) -> RelayState:
        """Current session state."""
        if not self._admin_connected:
            return RelayState.IDLE
        return RelayState.READY if self.upstream_open else RelayState.CONNECTING

    # ------------------------------------------------------------------
    # Admin lifecycle
    # ------------------------------------------------------------------

    async def admit_admin(self, connection: Connection) -> bool:
        """Admit an admin connection if no other admin is live.

        Args:
            connection: Newly accepted admin connection

        Returns:
            True if the connection now owns the session
        """
        if self._admin_connected and self._admin is not None and self._admin.is_open:
            logger.warning(
                "Admin rejected: session already owned",
                extra={"connection_id": connection.connection_id},
            )
            await connection.send(
                StatusMessage(message="Admin already connected. Only one admin allowed.")
            )
            await connection.close()
            return False

        # Claim the session before any await so a concurrent arrival is rejected
        stale_link, stale_task = self._detach_upstream()
        self._admin = connection
        self._admin_connected = True
        logger.info("Admin connected", extra={"connection_id": connection.connection_id})

        self._start_upstream()

        await self.viewers.broadcast_status(
            "Admin connected. Broadcast starting...", admin_connected=True
        )
        await self._stop_upstream(stale_link, stale_task)
        return True

    async def disconnect_admin(self, connection: Connection | None = None) -> None:
        """Release the session.

        Args:
            connection: If given, only release when it is the current admin
                connection; a rejected duplicate closing is a no-op.
        """
        if not self._admin_connected:
            return
        if connection is not None and connection is not self._admin:
            return

        self._admin_connected = False
        self._admin = None
        link, task = self._detach_upstream()

        # Announce before the upstream close handshake, which may be slow
        logger.info("Admin disconnected")
        await self.viewers.broadcast_status(
            "Admin disconnected. Broadcast paused.", admin_connected=False
        )
        await self._stop_upstream(link, task)

    async def shutdown(self) -> None:
        """Release the session and wait for the upstream task to finish."""
        await self.disconnect_admin()
        await self._close_upstream()

    # ------------------------------------------------------------------
    # Admin commands
    # ------------------------------------------------------------------

    async def relay_audio(self, audio_b64: str) -> None:
        """Forward a base64 PCM16 chunk to the upstream input buffer."""
        if not self.upstream_open:
            return
        await self._send_upstream(events.audio_append_event(audio_b64))

    async def relay_text(self, text: str) -> None:
        """Forward typed text upstream, echo it to the admin and viewers."""
        if not self.upstream_open:
            return

        await self._send_upstream(events.user_text_item_event(text))
        await self._send_upstream(events.response_create_event())

        await self._send_to_admin(UserMessage(content=text))
        await self.viewers.broadcast_transcript(text)
        logger.info("Admin sent text", extra={"text_length": len(text)})

    async def update_context(self, context: str | None) -> None:
        """Replace the session instructions.

        An empty or missing context restores the default instructions.
        """
        self._context = context or self.config.default_instructions

        if self.upstream_open:
            await self._send_upstream(events.instructions_update_event(self._context))
            await self._send_upstream(
                events.user_text_item_event(
                    f"[System Note: {self._context}] Please acknowledge this context."
                )
            )
            await self._send_upstream(events.response_create_event())
            logger.info("Context updated", extra={"context_preview": self._context[:100]})

        await self._send_to_admin(StatusMessage(message="AI context updated"))

    # ------------------------------------------------------------------
    # Upstream link
    # ------------------------------------------------------------------

    def _start_upstream(self) -> None:
        api_key = self.config.api_key
        if not api_key:
            logger.error("OPENAI_API_KEY not set; admin session has no upstream")
            return

        link = self._upstream_factory(api_key)
        self._upstream = link
        self._upstream_task = asyncio.create_task(
            self._run_upstream(link), name="upstream_session"
        )

    async def _run_upstream(self, link: UpstreamLink) -> None:
        try:
            await link.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to connect to OpenAI Realtime API", extra={"error": str(e)})
            self._clear_upstream(link)
            return

        try:
            await self._configure_session(link)
            async for raw in link.events():
                await self.handle_upstream_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Upstream session error")
        finally:
            logger.info("OpenAI WebSocket closed")
            self._clear_upstream(link)
            await link.close()

    async def _configure_session(self, link: UpstreamLink) -> None:
        await link.send_event(events.session_update_event(self.config, self._context))
        logger.info("OpenAI session configured")

    def _clear_upstream(self, link: UpstreamLink) -> None:
        if self._upstream is link:
            self._upstream = None
            self._upstream_task = None

    def _detach_upstream(self) -> tuple[UpstreamLink | None, asyncio.Task[None] | None]:
        link, task = self._upstream, self._upstream_task
        self._upstream = None
        self._upstream_task = None
        return link, task

    async def _close_upstream(self) -> None:
        await self._stop_upstream(*self._detach_upstream())

    async def _stop_upstream(
        self, link: UpstreamLink | None, task: asyncio.Task[None] | None
    ) -> None:
        if link is not None:
            await link.close()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _send_upstream(self, event: dict[str, Any]) -> None:
        if self._upstream is not None:
            await self._upstream.send_event(event)

    async def handle_upstream_message(self, raw: str | bytes) -> None:
        """Demultiplex one inbound upstream event.

        Malformed payloads are logged and dropped.
        """
        try:
            event = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Error parsing OpenAI message", extra={"error": str(e)})
            return
        if not isinstance(event, dict):
            logger.error("Unexpected OpenAI message shape", extra={"kind": type(event).__name__})
            return

        try:
            await self._dispatch_upstream_event(event)
        except Exception:
            logger.exception("Error handling OpenAI event", extra={"event_type": event.get("type")})

    async def _dispatch_upstream_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")

        if event_type == events.SESSION_CREATED:
            logger.info("OpenAI session created")
            await self._send_to_admin(StatusMessage(message="Ready to receive audio"))

        elif event_type == events.SESSION_UPDATED:
            logger.info("OpenAI session updated")

        elif event_type == events.SPEECH_STARTED:
            logger.info("Speech detected")
            await self.viewers.broadcast_status("Admin is speaking...")

        elif event_type == events.SPEECH_STOPPED:
            logger.info("Speech ended")

        elif event_type == events.INPUT_TRANSCRIPTION_COMPLETED:
            transcript = event.get("transcript")
            if transcript:
                logger.info("Admin speech transcribed", extra={"text_length": len(transcript)})
                await self._send_to_admin(UserMessage(content=transcript))
                await self.viewers.broadcast_transcript(transcript)

        elif event_type == events.TRANSCRIPT_DELTA:
            delta = event.get("delta")
            if delta:
                await self._send_to_admin(AssistantMessage(content=delta))
                await self.viewers.broadcast_text(delta)

        elif event_type == events.AUDIO_DELTA:
            delta = event.get("delta")
            if delta:
                await self._send_to_admin(AssistantAudioMessage(data=delta))
                await self.viewers.broadcast_audio(delta)

        elif event_type == events.TRANSCRIPT_DONE:
            logger.info("Response transcript complete")
            await self._send_to_admin(AssistantMessageDone())

        elif event_type == events.AUDIO_DONE:
            logger.info("Response audio complete")

        elif event_type == events.RESPONSE_DONE:
            logger.info("Response complete")
            await self.viewers.broadcast_status("Response complete")

        elif event_type == events.ERROR:
            error = event.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            logger.error("OpenAI error", extra={"error": error})
            await self.viewers.broadcast_status(f"Error: {message or 'Unknown error'}")

        elif event_type:
            logger.debug("OpenAI event", extra={"event_type": event_type})

    async def _send_to_admin(self, message: ServerToAdminMessage) -> None:
        admin = self._admin
        if admin is not None and admin.is_open:
            await admin.send(message)
