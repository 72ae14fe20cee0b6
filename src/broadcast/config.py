"""Configuration schema for the broadcast relay.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_CONTEXT = (
    "You are a helpful assistant. Respond naturally to the user's speech. "
    "Keep responses concise and conversational."
)


class ServerConfig(BaseModel):
    """WebSocket and HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3000, ge=1024, le=65535, description="WebSocket bind port")
    http_port: int | None = Field(
        default=None,
        ge=1024,
        le=65535,
        description="Health/static HTTP port (defaults to port + 1)",
    )
    static_dir: str = Field(
        default="public",
        description="Directory of front-end assets served over HTTP",
    )
    max_message_bytes: int = Field(
        default=4 * 2**20,
        ge=2**16,
        description="Largest inbound WebSocket message accepted",
    )

    @property
    def resolved_http_port(self) -> int:
        """HTTP port, falling back to the port after the WebSocket port."""
        return self.http_port if self.http_port is not None else self.port + 1


class ViewerConfig(BaseModel):
    """Viewer registry configuration."""

    max_viewers: int = Field(default=5, ge=1, description="Maximum concurrent viewers")
    outbox_size: int = Field(
        default=256, ge=1, description="Messages buffered per viewer before dropping"
    )


class TurnDetectionConfig(BaseModel):
    """Upstream voice-activity turn detection parameters."""

    type: str = Field(default="server_vad", description="Turn detection mode")
    threshold: float = Field(default=0.5, ge=0.0, le=1.0, description="VAD activation threshold")
    prefix_padding_ms: int = Field(
        default=300, ge=0, description="Audio kept before detected speech"
    )
    silence_duration_ms: int = Field(
        default=500, ge=0, description="Silence that ends a turn"
    )


class UpstreamConfig(BaseModel):
    """OpenAI Realtime API configuration."""

    url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime API WebSocket endpoint",
    )
    model: str = Field(
        default="gpt-4o-realtime-preview-2024-12-17",
        description="Realtime model identifier",
    )
    api_key: str | None = Field(
        default=None,
        description="API key (normally supplied via OPENAI_API_KEY)",
        repr=False,
    )
    input_audio_format: str = Field(default="pcm16", description="Admin audio format")
    transcription_model: str = Field(
        default="whisper-1", description="Model used to transcribe admin speech"
    )
    turn_detection: TurnDetectionConfig = Field(default_factory=TurnDetectionConfig)
    default_instructions: str = Field(
        default=DEFAULT_CONTEXT,
        min_length=1,
        description="Instructions used when no context has been set",
    )

    @property
    def session_url(self) -> str:
        """Full WebSocket URL including the model query parameter."""
        return f"{self.url}?model={self.model}"


class BroadcastConfig(BaseModel):
    """Root relay configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    viewers: ViewerConfig = Field(default_factory=ViewerConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the level is a standard logging level name."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log_level '{v}'")
        return level

    @classmethod
    def from_yaml(cls, path: Path) -> "BroadcastConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "BroadcastConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay environment variables onto raw configuration data.

    Recognized variables: HOST, PORT, OPENAI_API_KEY, OPENAI_REALTIME_MODEL,
    LOG_LEVEL.
    """
    if host := os.getenv("HOST"):
        data.setdefault("server", {})["host"] = host

    if port := os.getenv("PORT"):
        data.setdefault("server", {})["port"] = int(port)

    if api_key := os.getenv("OPENAI_API_KEY"):
        data.setdefault("upstream", {})["api_key"] = api_key

    if model := os.getenv("OPENAI_REALTIME_MODEL"):
        data.setdefault("upstream", {})["model"] = model

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    return data
