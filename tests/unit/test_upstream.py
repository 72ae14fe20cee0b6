"""Unit tests for the Realtime API client and event builders."""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.protocol import State

from broadcast.config import TurnDetectionConfig, UpstreamConfig
from broadcast.upstream import (
    RealtimeClient,
    audio_append_event,
    instructions_update_event,
    response_create_event,
    session_update_event,
    user_text_item_event,
)

SESSION_URL = "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17"


class TestEventBuilders:
    """Test upstream event construction."""

    def test_session_update(self) -> None:
        config = UpstreamConfig(
            transcription_model="whisper-1",
            turn_detection=TurnDetectionConfig(threshold=0.6, silence_duration_ms=800),
        )

        event = session_update_event(config, "Be brief.")

        assert event == {
            "type": "session.update",
            "session": {
                "modalities": ["text"],
                "instructions": "Be brief.",
                "input_audio_format": "pcm16",
                "input_audio_transcription": {"model": "whisper-1"},
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.6,
                    "prefix_padding_ms": 300,
                    "silence_duration_ms": 800,
                },
            },
        }

    def test_instructions_update(self) -> None:
        assert instructions_update_event("Be brief.") == {
            "type": "session.update",
            "session": {"instructions": "Be brief."},
        }

    def test_audio_append(self) -> None:
        assert audio_append_event("AAEC") == {"type": "input_audio_buffer.append", "audio": "AAEC"}

    def test_user_text_item(self) -> None:
        event = user_text_item_event("hello")
        assert event["type"] == "conversation.item.create"
        assert event["item"]["role"] == "user"
        assert event["item"]["content"] == [{"type": "input_text", "text": "hello"}]

    def test_response_create(self) -> None:
        assert response_create_event() == {"type": "response.create"}


class TestRealtimeClient:
    """Test Realtime API client."""

    @pytest.fixture
    def mock_websocket(self) -> MagicMock:
        """Create mock client WebSocket connection."""
        ws = MagicMock()
        ws.state = State.OPEN
        ws.send = AsyncMock()
        ws.close = AsyncMock()
        return ws

    @pytest_asyncio.fixture
    async def client(self, mock_websocket: MagicMock) -> RealtimeClient:
        """Client connected to the mock WebSocket."""
        client = RealtimeClient(SESSION_URL, "sk-test")
        with patch(
            "broadcast.upstream.websockets.connect", AsyncMock(return_value=mock_websocket)
        ):
            await client.connect()
        return client

    def test_not_open_before_connect(self) -> None:
        client = RealtimeClient(SESSION_URL, "sk-test")
        assert client.is_open is False

    @pytest.mark.asyncio
    async def test_connect_sends_auth_headers(self, mock_websocket: MagicMock) -> None:
        """Test the API key and beta header are sent on connect."""
        client = RealtimeClient(SESSION_URL, "sk-test")
        connect = AsyncMock(return_value=mock_websocket)

        with patch("broadcast.upstream.websockets.connect", connect):
            await client.connect()

        connect.assert_awaited_once_with(
            SESSION_URL,
            additional_headers={
                "Authorization": "Bearer sk-test",
                "OpenAI-Beta": "realtime=v1",
            },
        )
        assert client.is_open is True

    @pytest.mark.asyncio
    async def test_send_event(self, client: RealtimeClient, mock_websocket: MagicMock) -> None:
        assert await client.send_event(response_create_event()) is True
        assert json.loads(mock_websocket.send.call_args[0][0]) == {"type": "response.create"}

    @pytest.mark.asyncio
    async def test_send_event_not_connected(self) -> None:
        """Test sends before connect are dropped."""
        client = RealtimeClient(SESSION_URL, "sk-test")
        assert await client.send_event(response_create_event()) is False

    @pytest.mark.asyncio
    async def test_send_event_closed_race(
        self, client: RealtimeClient, mock_websocket: MagicMock
    ) -> None:
        """Test a link closing mid-send is reported, not raised."""
        mock_websocket.send.side_effect = ConnectionClosedOK(None, None)
        assert await client.send_event(response_create_event()) is False

    @pytest.mark.asyncio
    async def test_events_skip_binary(
        self, client: RealtimeClient, mock_websocket: MagicMock
    ) -> None:
        """Test only text frames are yielded."""

        async def mock_iter() -> AsyncGenerator[str | bytes]:
            yield '{"type": "session.created"}'
            yield b"\x00"
            yield '{"type": "response.done"}'

        mock_websocket.__aiter__ = lambda self: mock_iter()

        received = [raw async for raw in client.events()]

        assert received == ['{"type": "session.created"}', '{"type": "response.done"}']

    @pytest.mark.asyncio
    async def test_events_end_on_error(
        self, client: RealtimeClient, mock_websocket: MagicMock
    ) -> None:
        """Test an abnormal close ends iteration without raising."""

        async def mock_iter() -> AsyncGenerator[str]:
            yield '{"type": "session.created"}'
            raise ConnectionClosedError(None, None)

        mock_websocket.__aiter__ = lambda self: mock_iter()

        received = [raw async for raw in client.events()]

        assert received == ['{"type": "session.created"}']

    @pytest.mark.asyncio
    async def test_close_idempotent(
        self, client: RealtimeClient, mock_websocket: MagicMock
    ) -> None:
        await client.close()
        await client.close()

        mock_websocket.close.assert_awaited_once()
        assert client.is_open is False
