"""Desk definitions: named bundles of prompt text, path boundaries and knowledge.

Desks live as YAML files in one directory::

    {desks_dir}/_defaults.yaml     # merged into every desk
    {desks_dir}/backend.yaml

    name: Backend Desk
    slug: backend
    description: Owns the API services.
    routing:
      mentions: ["@backend", "@api"]   # empty list = default desk
      channel: null                    # optional channel restriction
    boundaries:
      writable: [~/src/api/**]
      readable: [~/src/**]
      blocked: [~/.ssh/**]
    knowledge:
      always_load: [~/notes/api.md]
    system_prompt_suffix: |
      Prefer small, reviewed changes.

A message selects a desk by mentioning one of its ``@words``; with no
match, the desk without mentions (if any) is used. The desk is bound
once, when the thread's session is created.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deskbridge.engine.errors import DeskConfigError
from deskbridge.engine.models import DeskBoundaries

logger = logging.getLogger(__name__)

DEFAULTS_FILE = "_defaults.yaml"

# @word tokens that are not Slack user mentions (<@U123>) or emails.
_MENTION_RE = re.compile(r"(?<![<\w@])@([a-zA-Z][a-zA-Z0-9_-]*)")


@dataclass
class DeskDefinition:
    name: str
    slug: str
    description: str = ""
    mentions: list[str] = field(default_factory=list)
    channel: str | None = None
    boundaries: DeskBoundaries = field(default_factory=DeskBoundaries)
    always_load: list[str] = field(default_factory=list)
    system_prompt_suffix: str = ""
    source: Path | None = None

    @property
    def is_default(self) -> bool:
        return not self.mentions


@dataclass
class DeskRoute:
    desk: DeskDefinition
    matched_mention: str  # "" when the default desk was used


@dataclass
class DeskResolution:
    """What a session needs from its desk at creation time."""
    desk: DeskDefinition
    matched_mention: str
    boundaries: DeskBoundaries
    knowledge_text: str = ""

    @property
    def system_prompt_suffix(self) -> str:
        return self.desk.system_prompt_suffix


# ── Mentions ──


def extract_mentions(text: str) -> list[str]:
    """Return lowercased ``@word`` mentions in first-seen order, deduped."""
    seen: list[str] = []
    for match in _MENTION_RE.finditer(text or ""):
        mention = f"@{match.group(1).lower()}"
        if mention not in seen:
            seen.append(mention)
    return seen


def remove_mentions(text: str, mentions: list[str]) -> str:
    """Strip the given mention tokens (and the whitespace around them)."""
    cleaned = text
    for mention in mentions:
        if not mention:
            continue
        pattern = re.compile(rf"\s*{re.escape(mention)}(?![\w-])\s*", re.IGNORECASE)
        cleaned = pattern.sub(" ", cleaned)
    return cleaned.strip()


# ── Parsing ──


def expand_path(path: str) -> str:
    return os.path.expanduser(path) if path.startswith("~") else path


def _str_list(value: Any, what: str, source: Path) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DeskConfigError(str(source), f"{what} must be a list of strings")
    return list(value)


def _section(raw: dict, key: str, source: Path) -> dict:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DeskConfigError(str(source), f"'{key}' must be a mapping")
    return value


def parse_desk(raw: Any, source: Path, defaults: dict | None = None) -> DeskDefinition:
    """Build a DeskDefinition from parsed YAML, merging defaults in.

    Defaults contribute blocked paths and always-load knowledge (prepended)
    and a prompt suffix (joined before the desk's own).
    """
    if not isinstance(raw, dict):
        raise DeskConfigError(str(source), "expected a mapping at top level")
    name, slug = raw.get("name"), raw.get("slug")
    if not isinstance(name, str) or not name or not isinstance(slug, str) or not slug:
        raise DeskConfigError(str(source), "missing name or slug")

    defaults = defaults or {}
    default_bounds = _section(defaults, "boundaries", source)
    default_knowledge = _section(defaults, "knowledge", source)

    routing = _section(raw, "routing", source)
    bounds = _section(raw, "boundaries", source)
    knowledge = _section(raw, "knowledge", source)

    def paths(section: dict, key: str, label: str) -> list[str]:
        return [expand_path(p) for p in _str_list(section.get(key), label, source)]

    suffixes = [
        s.strip() for s in (defaults.get("system_prompt_suffix"), raw.get("system_prompt_suffix"))
        if isinstance(s, str) and s.strip()
    ]
    channel = routing.get("channel")

    return DeskDefinition(
        name=name,
        slug=slug,
        description=str(raw.get("description") or ""),
        mentions=[m.lower() for m in _str_list(routing.get("mentions"), "routing.mentions", source)],
        channel=str(channel) if channel else None,
        boundaries=DeskBoundaries(
            writable=paths(bounds, "writable", "boundaries.writable"),
            readable=paths(bounds, "readable", "boundaries.readable"),
            blocked=(
                paths(default_bounds, "blocked", "defaults boundaries.blocked")
                + paths(bounds, "blocked", "boundaries.blocked")
            ),
        ),
        always_load=(
            paths(default_knowledge, "always_load", "defaults knowledge.always_load")
            + paths(knowledge, "always_load", "knowledge.always_load")
        ),
        system_prompt_suffix="\n\n".join(suffixes),
        source=source,
    )


def _load_yaml(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_knowledge(paths: list[str]) -> str:
    """Concatenate always-load knowledge files; missing files are skipped."""
    parts: list[str] = []
    for raw_path in paths:
        path = Path(raw_path)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Knowledge file not found: %s", path)
            continue
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to load knowledge file %s: %s", path, exc)
            continue
        parts.append(f"--- {path} ---\n{content}")
    return "\n\n".join(parts)


# ── Registry ──


class DeskRegistry:
    """Desk definitions loaded from a directory, reloadable in place."""

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = Path(directory) if directory is not None else None
        self._desks: dict[str, DeskDefinition] = {}
        self._fingerprint: tuple = ()

    @property
    def directory(self) -> Path | None:
        return self._directory

    def __len__(self) -> int:
        return len(self._desks)

    def reload(self) -> int:
        """Re-read every desk file. Invalid files are logged and skipped."""
        desks: dict[str, DeskDefinition] = {}
        directory = self._directory
        self._fingerprint = self._compute_fingerprint()
        if directory is None or not directory.is_dir():
            if directory is not None:
                logger.warning("Desks directory not found: %s", directory)
            self._desks = desks
            return 0

        defaults: dict = {}
        defaults_path = directory / DEFAULTS_FILE
        if defaults_path.is_file():
            try:
                loaded = _load_yaml(defaults_path)
            except (OSError, yaml.YAMLError) as exc:
                logger.error("Error loading desk defaults %s: %s", defaults_path, exc)
                loaded = None
            if isinstance(loaded, dict):
                defaults = loaded
            elif loaded is not None:
                logger.error("Ignoring desk defaults %s: expected a mapping", defaults_path)

        for path in sorted(directory.glob("*.yaml")):
            if path.name.startswith("_"):
                continue
            try:
                desk = parse_desk(_load_yaml(path), path, defaults)
            except (OSError, yaml.YAMLError, DeskConfigError) as exc:
                logger.error("Skipping desk file %s: %s", path, exc)
                continue
            if desk.slug in desks:
                logger.warning(
                    "Duplicate desk slug %r in %s (already defined in %s)",
                    desk.slug, path, desks[desk.slug].source,
                )
                continue
            desks[desk.slug] = desk
            logger.info(
                "Loaded desk: %s (mentions: %s)",
                desk.slug, ", ".join(desk.mentions) or "none",
            )

        self._desks = desks
        logger.info("Loaded %d desks from %s", len(desks), directory)
        return len(desks)

    def all(self) -> list[DeskDefinition]:
        return list(self._desks.values())

    def get(self, slug: str) -> DeskDefinition | None:
        return self._desks.get(slug)

    def default(self, channel: str | None = None) -> DeskDefinition | None:
        for desk in self._desks.values():
            if desk.is_default and self._channel_ok(desk, channel):
                return desk
        return None

    @staticmethod
    def _channel_ok(desk: DeskDefinition, channel: str | None) -> bool:
        return desk.channel is None or channel is None or desk.channel == channel

    def route(self, text: str, channel: str | None = None) -> list[DeskRoute]:
        """Desks matching the text's mentions, else the default desk."""
        mentions = extract_mentions(text)
        routes: list[DeskRoute] = []
        for desk in self._desks.values():
            if not self._channel_ok(desk, channel):
                continue
            for mention in mentions:
                if mention in desk.mentions:
                    routes.append(DeskRoute(desk=desk, matched_mention=mention))
                    break
        if not routes:
            fallback = self.default(channel)
            if fallback is not None:
                routes.append(DeskRoute(desk=fallback, matched_mention=""))
        return routes

    def resolve_desk(self, mention: str) -> DeskResolution | None:
        """Look up a desk by one mention token (``"@backend"``; ``""`` = default)."""
        mention = mention.lower()
        if mention and not mention.startswith("@"):
            mention = f"@{mention}"
        if not mention:
            desk = self.default()
        else:
            desk = next((d for d in self._desks.values() if mention in d.mentions), None)
        if desk is None:
            return None
        return self._resolution(desk, mention)

    def resolve_for_message(
        self, text: str, channel: str | None = None,
    ) -> tuple[DeskResolution | None, str]:
        """Pick the desk for a new session's first message.

        Returns the resolution (None when no desk applies) and the text
        with the matched mention tokens removed.
        """
        routes = self.route(text, channel)
        if not routes:
            return None, text
        if len(routes) > 1:
            logger.info(
                "Message matches %d desks; using %s",
                len(routes), routes[0].desk.slug,
            )
        route = routes[0]
        cleaned = remove_mentions(text, [r.matched_mention for r in routes])
        return self._resolution(route.desk, route.matched_mention), cleaned

    def context_for(self, slug: str) -> DeskResolution | None:
        """Rebuild a bound desk's context for a resumed session."""
        desk = self._desks.get(slug)
        if desk is None:
            logger.warning("Desk %r is no longer defined", slug)
            return None
        return self._resolution(desk, "")

    @staticmethod
    def _resolution(desk: DeskDefinition, mention: str) -> DeskResolution:
        return DeskResolution(
            desk=desk,
            matched_mention=mention,
            boundaries=desk.boundaries,
            knowledge_text=load_knowledge(desk.always_load),
        )

    # ── hot reload ──

    def _compute_fingerprint(self) -> tuple:
        directory = self._directory
        if directory is None or not directory.is_dir():
            return ()
        entries = []
        for path in sorted(directory.glob("*.yaml")):
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.append((path.name, stat.st_mtime_ns, stat.st_size))
        return tuple(entries)

    def reload_if_changed(self) -> bool:
        if self._compute_fingerprint() == self._fingerprint:
            return False
        logger.info("Desk definitions changed; reloading")
        self.reload()
        return True

    async def watch(self, interval: float = 5.0) -> None:
        """Poll the directory and reload on change until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.reload_if_changed()
            except OSError:
                logger.exception("Desk reload failed")
