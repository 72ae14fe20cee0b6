"""WebSocket message protocol definitions.

Defines Pydantic models for the admin and viewer endpoints. Every message
is a JSON object carrying a ``type`` discriminator; inbound messages are
grouped into one tagged union per endpoint.
"""

import json
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class ProtocolError(ValueError):
    """Raised when an inbound payload is not a valid protocol message."""


# ---------------------------------------------------------------------------
# Admin → Server
# ---------------------------------------------------------------------------


class AdminAudioMessage(BaseModel):
    """Admin → Server: microphone audio chunk."""

    type: Literal["audio"] = "audio"
    data: str = Field(..., description="Base64-encoded PCM16 audio")


class AdminTextMessage(BaseModel):
    """Admin → Server: typed user message."""

    type: Literal["text"] = "text"
    content: str = Field(..., description="Text authored by the admin")


class UpdateContextMessage(BaseModel):
    """Admin → Server: replace the session instructions.

    An empty or missing context falls back to the default instructions.
    """

    type: Literal["update_context"] = "update_context"
    context: str | None = Field(default=None, description="New instruction string")


# ---------------------------------------------------------------------------
# Viewer → Server
# ---------------------------------------------------------------------------


class ToggleAudioMessage(BaseModel):
    """Viewer → Server: enable or mute audio delivery for this viewer."""

    type: Literal["toggle_audio"] = "toggle_audio"
    enabled: bool


# ---------------------------------------------------------------------------
# Server → Client (shared)
# ---------------------------------------------------------------------------


class StatusMessage(BaseModel):
    """Server → Admin/Viewer: human-readable status update.

    ``viewerCount`` and ``adminConnected`` are only sent to viewers and are
    omitted from the wire format when unset.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["status"] = "status"
    message: str
    viewer_count: int | None = Field(default=None, alias="viewerCount")
    admin_connected: bool | None = Field(default=None, alias="adminConnected")


# ---------------------------------------------------------------------------
# Server → Admin
# ---------------------------------------------------------------------------


class UserMessage(BaseModel):
    """Server → Admin: what the admin said or typed."""

    type: Literal["user_message"] = "user_message"
    content: str


class AssistantMessage(BaseModel):
    """Server → Admin: streamed assistant transcript chunk."""

    type: Literal["assistant_message"] = "assistant_message"
    content: str


class AssistantMessageDone(BaseModel):
    """Server → Admin: assistant transcript finished."""

    type: Literal["assistant_message_done"] = "assistant_message_done"


class AssistantAudioMessage(BaseModel):
    """Server → Admin: streamed assistant audio chunk."""

    type: Literal["assistant_audio"] = "assistant_audio"
    data: str = Field(..., description="Base64-encoded PCM16 audio")


# ---------------------------------------------------------------------------
# Server → Viewer
# ---------------------------------------------------------------------------


class ViewerTextMessage(BaseModel):
    """Server → Viewer: streamed assistant text chunk."""

    type: Literal["text"] = "text"
    content: str


class TranscriptMessage(BaseModel):
    """Server → Viewer: what the admin said (input transcript)."""

    type: Literal["transcript"] = "transcript"
    content: str


class ViewerAudioMessage(BaseModel):
    """Server → Viewer: streamed assistant audio chunk."""

    type: Literal["audio"] = "audio"
    data: str = Field(..., description="Base64-encoded PCM16 audio")


# Union type for all admin → server messages
AdminClientMessage = Annotated[
    AdminAudioMessage | AdminTextMessage | UpdateContextMessage,
    Field(discriminator="type"),
]

# Union type for all viewer → server messages (single member today)
ViewerClientMessage = ToggleAudioMessage

# Union type for all server → admin messages
ServerToAdminMessage = (
    StatusMessage
    | UserMessage
    | AssistantMessage
    | AssistantMessageDone
    | AssistantAudioMessage
)

# Union type for all server → viewer messages
ServerToViewerMessage = (
    StatusMessage | ViewerTextMessage | TranscriptMessage | ViewerAudioMessage
)

_admin_adapter: TypeAdapter[AdminClientMessage] = TypeAdapter(AdminClientMessage)

ADMIN_MESSAGE_TYPES = frozenset({"audio", "text", "update_context"})
VIEWER_MESSAGE_TYPES = frozenset({"toggle_audio"})


def _load_object(raw: str | bytes) -> dict:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Expected JSON object, got {type(data).__name__}")
    return data


def parse_admin_message(raw: str | bytes) -> AdminClientMessage | None:
    """Parse an inbound admin message.

    Args:
        raw: Raw WebSocket payload

    Returns:
        The parsed message, or None if the ``type`` tag is not recognized

    Raises:
        ProtocolError: If the payload is not JSON or fails validation
    """
    data = _load_object(raw)
    if data.get("type") not in ADMIN_MESSAGE_TYPES:
        return None
    try:
        return _admin_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['type']} message: {e}") from e


def parse_viewer_message(raw: str | bytes) -> ViewerClientMessage | None:
    """Parse an inbound viewer message.

    Args:
        raw: Raw WebSocket payload

    Returns:
        The parsed message, or None if the ``type`` tag is not recognized

    Raises:
        ProtocolError: If the payload is not JSON or fails validation
    """
    data = _load_object(raw)
    if data.get("type") not in VIEWER_MESSAGE_TYPES:
        return None
    try:
        return ToggleAudioMessage.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['type']} message: {e}") from e


def encode(message: BaseModel) -> str:
    """Serialize an outbound message to its wire format."""
    return message.model_dump_json(by_alias=True, exclude_none=True)
