"""Tests for deskbridge.engine.config - environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

from deskbridge.engine.config import BridgeConfig


def test_defaults(monkeypatch) -> None:
    for key in ("SLACK_BOT_TOKEN", "SLACK_APP_TOKEN", "BRIDGE_DATA_DIR", "BRIDGE_MODEL"):
        monkeypatch.delenv(key, raising=False)
    config = BridgeConfig.from_env()

    assert config.model == "sonnet"
    assert config.edit_interval_seconds == 0.5
    assert config.api_port == 3848
    assert config.api_enabled is True
    assert config.invocation_timeout_seconds == 0.0
    assert config.missing_credentials() == ["SLACK_BOT_TOKEN", "SLACK_APP_TOKEN"]


def test_env_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-1")
    monkeypatch.setenv("SLACK_APP_TOKEN", "xapp-1")
    monkeypatch.setenv("BRIDGE_ALLOWED_USERS", "U1, U2,,")
    monkeypatch.setenv("BRIDGE_MODEL", "opus")
    monkeypatch.setenv("BRIDGE_EDIT_INTERVAL", "1.5")
    monkeypatch.setenv("BRIDGE_MAX_MESSAGE_LENGTH", "2000")
    monkeypatch.setenv("BRIDGE_API_ENABLED", "no")
    monkeypatch.setenv("BRIDGE_API_SECRET", "s3cret")
    monkeypatch.setenv("BRIDGE_DATA_DIR", str(tmp_path))

    config = BridgeConfig.from_env()

    assert config.missing_credentials() == []
    assert config.allowed_users == ["U1", "U2"]
    assert config.model == "opus"
    assert config.edit_interval_seconds == 1.5
    assert config.max_message_length == 2000
    assert config.api_enabled is False
    assert config.api_secret == "s3cret"
    assert config.sessions_path == tmp_path / "sessions.json"
    assert config.resolved_desks_dir == tmp_path / "desks"
    assert config.resolved_manifests_dir == tmp_path / "session-manifests"


def test_secrets_hidden_from_repr() -> None:
    config = BridgeConfig(slack_bot_token="xoxb-secret", api_secret="hunter2")
    assert "xoxb-secret" not in repr(config)
    assert "hunter2" not in repr(config)


def test_explicit_directories(monkeypatch) -> None:
    config = BridgeConfig(desks_dir="~/desks", manifests_dir="/var/manifests")
    assert config.resolved_desks_dir == Path("~/desks").expanduser()
    assert config.resolved_manifests_dir == Path("/var/manifests")


def test_attachment_and_channel_paths(monkeypatch, tmp_path) -> None:
    config = BridgeConfig(data_dir=str(tmp_path))
    assert config.resolved_attachments_dir == tmp_path / "attachments"
    assert config.resolved_channels_file == tmp_path / "channels.yaml"

    monkeypatch.setenv("BRIDGE_ATTACHMENTS_DIR", "~/bridge-files")
    monkeypatch.setenv("BRIDGE_CHANNELS_FILE", str(tmp_path / "team.yaml"))
    config = BridgeConfig.from_env()
    assert config.resolved_attachments_dir == Path("~/bridge-files").expanduser()
    assert config.resolved_channels_file == tmp_path / "team.yaml"
