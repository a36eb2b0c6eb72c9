"""Per-channel team-mode policy.

Channels listed in a YAML file can be put in team mode: requests are
classified, checked against the channel's capabilities and blocked
patterns, and wrapped in a guardrailed prompt. Channels not listed use
the ``defaults`` block (team mode off unless the defaults enable it)::

    defaults:
      enabled: false
    channels:
      C0123456:
        name: marketing
        enabled: true
        capabilities:
          - {name: copy, enabled: true}
          - {name: research, enabled: false}
        system_prompt_prefix: Our brand voice is plain and friendly.
        system_prompt_suffix: Sign off as the marketing bot.
        blocked_patterns: ["rm -rf", "password"]

A listed channel inherits any key it omits from ``defaults``. The file is
re-read when its modification time changes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deskbridge.engine.errors import ChannelConfigError

logger = logging.getLogger(__name__)


@dataclass
class TaskCapability:
    name: str
    enabled: bool = True
    system_prompt_addition: str = ""


@dataclass
class ChannelConfig:
    channel_id: str
    channel_name: str = "unknown"
    enabled: bool = False
    capabilities: list[TaskCapability] = field(default_factory=list)
    system_prompt_prefix: str = ""
    system_prompt_suffix: str = ""
    blocked_patterns: list[str] = field(default_factory=list)

    def capability(self, name: str) -> TaskCapability | None:
        return next((c for c in self.capabilities if c.name == name), None)


def _parse_capability(raw: Any, source: str) -> TaskCapability:
    if isinstance(raw, str):
        return TaskCapability(name=raw)
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise ChannelConfigError(source, "each capability needs a name")
    return TaskCapability(
        name=raw["name"],
        enabled=bool(raw.get("enabled", True)),
        system_prompt_addition=str(raw.get("system_prompt_addition") or ""),
    )


def parse_channel(channel_id: str, raw: dict[str, Any], source: str) -> ChannelConfig:
    capabilities = raw.get("capabilities") or []
    patterns = raw.get("blocked_patterns") or []
    if not isinstance(capabilities, list):
        raise ChannelConfigError(source, f"{channel_id}: capabilities must be a list")
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ChannelConfigError(source, f"{channel_id}: blocked_patterns must be a list of strings")
    return ChannelConfig(
        channel_id=channel_id,
        channel_name=str(raw.get("name") or "unknown"),
        enabled=bool(raw.get("enabled", False)),
        capabilities=[_parse_capability(c, source) for c in capabilities],
        system_prompt_prefix=str(raw.get("system_prompt_prefix") or ""),
        system_prompt_suffix=str(raw.get("system_prompt_suffix") or ""),
        blocked_patterns=list(patterns),
    )


class ChannelConfigStore:
    """Channel policies loaded from one YAML file."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._defaults: dict[str, Any] = {}
        self._channels: dict[str, dict[str, Any]] = {}
        self._mtime_ns: int | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    def reload(self) -> int:
        """Re-read the file; returns the number of listed channels.

        Raises ChannelConfigError when the file is malformed.
        """
        self._defaults, self._channels, self._mtime_ns = {}, {}, None
        if self._path is None or not self._path.exists():
            return 0
        source = str(self._path)
        try:
            self._mtime_ns = self._path.stat().st_mtime_ns
            with open(self._path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ChannelConfigError(source, str(e)) from e
        if not isinstance(raw, dict):
            raise ChannelConfigError(source, "expected a mapping at top level")
        defaults = raw.get("defaults") or {}
        channels = raw.get("channels") or {}
        if not isinstance(defaults, dict) or not isinstance(channels, dict):
            raise ChannelConfigError(source, "'defaults' and 'channels' must be mappings")
        for channel_id, entry in channels.items():
            if not isinstance(entry, dict):
                raise ChannelConfigError(source, f"{channel_id}: expected a mapping")
            # Every entry is validated up front.
            parse_channel(str(channel_id), {**defaults, **entry}, source)
        parse_channel("defaults", defaults, source)

        self._defaults = defaults
        self._channels = {str(k): v for k, v in channels.items()}
        logger.info("Loaded %d channel config(s) from %s", len(self._channels), self._path)
        return len(self._channels)

    def _refresh(self) -> None:
        if self._path is None:
            return
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None
        if mtime_ns == self._mtime_ns:
            return
        try:
            self.reload()
        except ChannelConfigError:
            logger.exception("Channel config reload failed; team mode disabled until fixed")

    def get(self, channel_id: str) -> ChannelConfig:
        self._refresh()
        entry = self._channels.get(channel_id, {})
        return parse_channel(channel_id, {**self._defaults, **entry}, str(self._path))

    def is_team_mode(self, channel_id: str) -> bool:
        return self.get(channel_id).enabled

    def all(self) -> list[ChannelConfig]:
        self._refresh()
        return [self.get(channel_id) for channel_id in self._channels]
