"""OpenAI Realtime API WebSocket client.

This module provides the upstream side of the relay: a thin client that
opens the Realtime API WebSocket, sends JSON events and yields raw inbound
events. Event demultiplexing lives in the admin relay; this module only
knows how to build and transport events.

Example usage:
    >>> client = RealtimeClient(config.upstream.session_url, api_key)
    >>> await client.connect()
    >>> await client.send_event(session_update_event(config.upstream, "Be brief."))
    >>> async for raw in client.events():
    ...     handle(raw)
    >>> await client.close()
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.protocol import State

from broadcast.config import UpstreamConfig

logger = logging.getLogger(__name__)

# Inbound event kinds handled by the relay
SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
SPEECH_STARTED = "input_audio_buffer.speech_started"
SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
INPUT_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
TRANSCRIPT_DELTA = "response.audio_transcript.delta"
AUDIO_DELTA = "response.audio.delta"
TRANSCRIPT_DONE = "response.audio_transcript.done"
AUDIO_DONE = "response.audio.done"
RESPONSE_DONE = "response.done"
ERROR = "error"


def session_update_event(config: UpstreamConfig, instructions: str) -> dict[str, Any]:
    """Build the full session configuration event sent once the link opens."""
    turn_detection = config.turn_detection
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text"],
            "instructions": instructions,
            "input_audio_format": config.input_audio_format,
            "input_audio_transcription": {"model": config.transcription_model},
            "turn_detection": {
                "type": turn_detection.type,
                "threshold": turn_detection.threshold,
                "prefix_padding_ms": turn_detection.prefix_padding_ms,
                "silence_duration_ms": turn_detection.silence_duration_ms,
            },
        },
    }


def instructions_update_event(instructions: str) -> dict[str, Any]:
    """Build a session update that only replaces the instructions."""
    return {"type": "session.update", "session": {"instructions": instructions}}


def audio_append_event(audio_b64: str) -> dict[str, Any]:
    """Build an input audio buffer append event."""
    return {"type": "input_audio_buffer.append", "audio": audio_b64}


def user_text_item_event(text: str) -> dict[str, Any]:
    """Build a user-authored conversation item."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def response_create_event() -> dict[str, Any]:
    """Build an event asking the model to respond."""
    return {"type": "response.create"}


class RealtimeClient:
    """WebSocket client for the OpenAI Realtime API.

    Attributes:
        url: Full session URL including the model parameter
    """

    def __init__(self, url: str, api_key: str) -> None:
        """Initialize Realtime client.

        Args:
            url: Realtime session URL
            api_key: OpenAI API key
        """
        self.url = url
        self._api_key = api_key
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        """Check if events can currently be sent."""
        return self._ws is not None and self._ws.state == State.OPEN

    async def connect(self) -> None:
        """Open the WebSocket to the Realtime API.

        Raises:
            OSError: If the connection cannot be established
            websockets.exceptions.InvalidHandshake: If the API rejects the upgrade
        """
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        logger.info("Connecting to OpenAI Realtime API", extra={"url": self.url})
        self._ws = await websockets.connect(self.url, additional_headers=headers)
        logger.info("Connected to OpenAI Realtime API")

    async def send_event(self, event: dict[str, Any]) -> bool:
        """Send one JSON event.

        Returns:
            True if the event was sent, False if the link is not open
        """
        ws = self._ws
        if ws is None or ws.state != State.OPEN:
            return False

        try:
            await ws.send(json.dumps(event))
            return True
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Dropped upstream event on closed link", extra={"type": event.get("type")})
            return False

    async def events(self) -> AsyncIterator[str]:
        """Yield raw inbound events until the link closes.

        Binary frames are skipped. A link that drops with an error ends
        iteration the same way as a clean close, after logging.
        """
        if self._ws is None:
            return

        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    logger.debug("Skipping binary upstream frame", extra={"size": len(message)})
                    continue
                yield message
        except websockets.exceptions.ConnectionClosedError as e:
            logger.error("OpenAI WebSocket error", extra={"error": str(e)})

    async def close(self) -> None:
        """Close the link. Safe to call multiple times."""
        if self._ws is None:
            return

        ws = self._ws
        self._ws = None
        try:
            await ws.close()
        except Exception as e:
            logger.warning("Error closing OpenAI WebSocket", extra={"error": str(e)})
