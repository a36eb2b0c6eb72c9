"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via BRIDGE_* env vars;
Slack credentials come from SLACK_BOT_TOKEN / SLACK_APP_TOKEN.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


def _default_data_dir() -> str:
    return str(Path.home() / ".deskbridge" / "data")


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class BridgeConfig:
    """Bridge runtime configuration."""

    # Slack credentials
    slack_bot_token: str = field(default="", repr=False)
    slack_app_token: str = field(default="", repr=False)

    # Access control; empty means everyone / everywhere
    allowed_channels: list[str] = field(default_factory=list)
    allowed_users: list[str] = field(default_factory=list)

    # Claude subprocess
    claude_command: str = "claude"
    model: str = "sonnet"
    permission_mode: str = "acceptEdits"
    claude_settings_path: str | None = None
    default_cwd: str = "."
    # Max wall-clock time for one invocation.
    # Set to 0 (or a negative value) to disable timeout.
    invocation_timeout_seconds: float = 0.0

    # Storage
    data_dir: str = field(default_factory=_default_data_dir)
    desks_dir: str | None = None
    manifests_dir: str | None = None
    attachments_dir: str | None = None
    # Team-mode channel policies (YAML)
    channels_file: str | None = None

    # Output delivery
    edit_interval_seconds: float = 0.5
    max_message_length: int = 3500

    # Session lifecycle
    session_max_idle_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0
    desk_reload_interval_seconds: float = 5.0

    # Bridge HTTP API (subprocess -> thread sends)
    api_host: str = "127.0.0.1"
    api_port: int = 3848
    api_secret: str = field(default="", repr=False)
    api_enabled: bool = True

    # Logging
    log_level: str = "INFO"

    @property
    def sessions_path(self) -> Path:
        return Path(self.data_dir) / "sessions.json"

    @property
    def resolved_desks_dir(self) -> Path:
        if self.desks_dir:
            return Path(self.desks_dir).expanduser()
        return Path(self.data_dir) / "desks"

    @property
    def resolved_manifests_dir(self) -> Path:
        if self.manifests_dir:
            return Path(self.manifests_dir).expanduser()
        return Path(self.data_dir) / "session-manifests"

    @property
    def resolved_attachments_dir(self) -> Path:
        if self.attachments_dir:
            return Path(self.attachments_dir).expanduser()
        return Path(self.data_dir) / "attachments"

    @property
    def resolved_channels_file(self) -> Path:
        if self.channels_file:
            return Path(self.channels_file).expanduser()
        return Path(self.data_dir) / "channels.yaml"

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.slack_bot_token:
            missing.append("SLACK_BOT_TOKEN")
        if not self.slack_app_token:
            missing.append("SLACK_APP_TOKEN")
        return missing

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from SLACK_* and BRIDGE_* environment variables."""
        bridge_vars = sorted(k for k in os.environ if k.startswith("BRIDGE_"))
        if bridge_vars:
            logger.info(
                "BridgeConfig.from_env: BRIDGE_* env overrides: %s",
                ", ".join(
                    k if k == "BRIDGE_API_SECRET" else f"{k}={os.environ[k]}"
                    for k in bridge_vars
                ),
            )
        else:
            logger.debug("BridgeConfig.from_env: no BRIDGE_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            slack_bot_token=os.getenv("SLACK_BOT_TOKEN", ""),
            slack_app_token=os.getenv("SLACK_APP_TOKEN", ""),
            allowed_channels=_split_list(os.getenv("BRIDGE_ALLOWED_CHANNELS")),
            allowed_users=_split_list(os.getenv("BRIDGE_ALLOWED_USERS")),
            claude_command=os.getenv(
                "BRIDGE_CLAUDE_COMMAND", cls.claude_command
            ),
            model=os.getenv("BRIDGE_MODEL", cls.model),
            permission_mode=os.getenv(
                "BRIDGE_PERMISSION_MODE", cls.permission_mode
            ),
            claude_settings_path=os.getenv("BRIDGE_CLAUDE_SETTINGS") or None,
            default_cwd=os.getenv("BRIDGE_DEFAULT_CWD", cls.default_cwd),
            invocation_timeout_seconds=float(os.getenv(
                "BRIDGE_INVOCATION_TIMEOUT",
                str(cls.invocation_timeout_seconds),
            )),
            data_dir=os.getenv("BRIDGE_DATA_DIR") or defaults.data_dir,
            desks_dir=os.getenv("BRIDGE_DESKS_DIR") or None,
            manifests_dir=os.getenv("BRIDGE_MANIFESTS_DIR") or None,
            attachments_dir=os.getenv("BRIDGE_ATTACHMENTS_DIR") or None,
            channels_file=os.getenv("BRIDGE_CHANNELS_FILE") or None,
            edit_interval_seconds=float(os.getenv(
                "BRIDGE_EDIT_INTERVAL", str(cls.edit_interval_seconds)
            )),
            max_message_length=int(os.getenv(
                "BRIDGE_MAX_MESSAGE_LENGTH", str(cls.max_message_length)
            )),
            session_max_idle_hours=float(os.getenv(
                "BRIDGE_SESSION_MAX_IDLE_HOURS",
                str(cls.session_max_idle_hours),
            )),
            sweep_interval_seconds=float(os.getenv(
                "BRIDGE_SWEEP_INTERVAL", str(cls.sweep_interval_seconds)
            )),
            desk_reload_interval_seconds=float(os.getenv(
                "BRIDGE_DESK_RELOAD_INTERVAL",
                str(cls.desk_reload_interval_seconds),
            )),
            api_host=os.getenv("BRIDGE_API_HOST", cls.api_host),
            api_port=int(os.getenv("BRIDGE_API_PORT", str(cls.api_port))),
            api_secret=os.getenv("BRIDGE_API_SECRET", ""),
            api_enabled=(
                os.getenv("BRIDGE_API_ENABLED", "1").lower() in _TRUTHY
            ),
            log_level=os.getenv("BRIDGE_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "BridgeConfig.from_env: model=%s cwd=%s data_dir=%s api=%s:%s",
            config.model, config.default_cwd, config.data_dir,
            config.api_host, config.api_port,
        )
        return config
