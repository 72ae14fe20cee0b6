"""Unit tests for relay configuration.

Tests configuration loading, validation, defaults and environment overrides.
"""

from pathlib import Path

import pytest

from broadcast.config import (
    DEFAULT_CONTEXT,
    BroadcastConfig,
    ServerConfig,
    TurnDetectionConfig,
    UpstreamConfig,
    ViewerConfig,
    apply_env_overrides,
)

ENV_VARS = ("HOST", "PORT", "OPENAI_API_KEY", "OPENAI_REALTIME_MODEL", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of config tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_server_config_defaults() -> None:
    """Test server configuration defaults."""
    config = ServerConfig()
    assert config.host == "0.0.0.0"  # noqa: S104
    assert config.port == 3000
    assert config.http_port is None
    assert config.resolved_http_port == 3001
    assert config.static_dir == "public"
    assert config.max_message_bytes == 4 * 1024 * 1024


def test_server_config_validation() -> None:
    """Test server port validation."""
    assert ServerConfig(port=9000, http_port=9100).resolved_http_port == 9100

    with pytest.raises(ValueError):
        ServerConfig(port=80)

    with pytest.raises(ValueError):
        ServerConfig(port=70000)


def test_viewer_config() -> None:
    """Test viewer capacity defaults and validation."""
    assert ViewerConfig().max_viewers == 5
    assert ViewerConfig().outbox_size == 256

    with pytest.raises(ValueError):
        ViewerConfig(max_viewers=0)

    with pytest.raises(ValueError):
        ViewerConfig(outbox_size=0)


def test_upstream_config_defaults() -> None:
    """Test upstream configuration defaults."""
    config = UpstreamConfig()
    assert config.api_key is None
    assert config.model == "gpt-4o-realtime-preview-2024-12-17"
    assert config.session_url == (
        "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17"
    )
    assert config.default_instructions == DEFAULT_CONTEXT
    assert config.turn_detection == TurnDetectionConfig(
        type="server_vad", threshold=0.5, prefix_padding_ms=300, silence_duration_ms=500
    )


def test_upstream_api_key_hidden_from_repr() -> None:
    """Test the API key never appears in repr output."""
    config = UpstreamConfig(api_key="sk-secret")
    assert "sk-secret" not in repr(config)


def test_turn_detection_threshold_validation() -> None:
    """Test VAD threshold must be within 0..1."""
    with pytest.raises(ValueError):
        TurnDetectionConfig(threshold=1.5)


def test_log_level_validation() -> None:
    """Test log level names are normalized and validated."""
    assert BroadcastConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="Unknown log_level"):
        BroadcastConfig(log_level="LOUD")


def test_from_yaml(tmp_path: Path) -> None:
    """Test loading configuration from YAML."""
    path = tmp_path / "broadcast.yaml"
    path.write_text(
        "server:\n"
        "  port: 4000\n"
        "viewers:\n"
        "  max_viewers: 3\n"
        "upstream:\n"
        "  default_instructions: Be brief.\n"
        "log_level: WARNING\n",
        encoding="utf-8",
    )

    config = BroadcastConfig.from_yaml(path)

    assert config.server.port == 4000
    assert config.server.resolved_http_port == 4001
    assert config.viewers.max_viewers == 3
    assert config.upstream.default_instructions == "Be brief."
    assert config.log_level == "WARNING"


def test_from_yaml_empty_file(tmp_path: Path) -> None:
    """Test an empty YAML file yields defaults."""
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert BroadcastConfig.from_yaml(path) == BroadcastConfig()


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test loading a missing file raises."""
    with pytest.raises(FileNotFoundError):
        BroadcastConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_non_mapping(tmp_path: Path) -> None:
    """Test a YAML list at the root is rejected."""
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError, match="must be a mapping"):
        BroadcastConfig.from_yaml(path)


def test_from_yaml_with_defaults_missing_file(tmp_path: Path) -> None:
    """Test defaults are used when the file does not exist."""
    config = BroadcastConfig.from_yaml_with_defaults(tmp_path / "missing.yaml")
    assert config.server.port == 3000
    assert config.viewers.max_viewers == 5


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test environment variables override file values."""
    path = tmp_path / "broadcast.yaml"
    path.write_text("server:\n  port: 4000\n", encoding="utf-8")
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "5000")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_REALTIME_MODEL", "gpt-realtime")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = BroadcastConfig.from_yaml(path)

    assert config.server.host == "127.0.0.1"
    assert config.server.port == 5000
    assert config.upstream.api_key == "sk-env"
    assert config.upstream.session_url.endswith("?model=gpt-realtime")
    assert config.log_level == "DEBUG"


def test_env_overrides_apply_without_file(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment overrides apply to pure defaults."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    config = BroadcastConfig.from_yaml_with_defaults(None)

    assert config.upstream.api_key == "sk-env"


def test_apply_env_overrides_untouched_without_env() -> None:
    """Test raw data passes through when no variables are set."""
    data = {"server": {"port": 4000}}
    assert apply_env_overrides(data) == {"server": {"port": 4000}}


def test_shipped_config_loads() -> None:
    """Test the repository's default config file is valid."""
    path = Path(__file__).parent.parent.parent / "configs" / "broadcast.yaml"

    config = BroadcastConfig.from_yaml(path)

    assert config.viewers.max_viewers == 5
    assert config.upstream.default_instructions == DEFAULT_CONTEXT
