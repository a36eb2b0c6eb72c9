"""Per-session boundary manifests.

When a session is bound to a desk, its boundaries are frozen into
``{manifests_dir}/{session_id}.yaml``. Hooks running inside the Claude
session read this file to enforce the boundaries; the bridge never
rewrites it, so later desk edits do not widen a running session.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from deskbridge.engine.models import DeskBoundaries
from deskbridge.shared.services.storage import atomic_write_text

logger = logging.getLogger(__name__)

_HEADER = "# Auto-generated session manifest\n# DO NOT EDIT - managed by deskbridge\n\n"


@dataclass
class SessionManifest:
    session_id: str
    desk_slug: str
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    writable_paths: list[str] = field(default_factory=list)
    readable_paths: list[str] = field(default_factory=list)
    blocked_paths: list[str] = field(default_factory=list)

    @property
    def boundaries(self) -> DeskBoundaries:
        return DeskBoundaries(
            writable=list(self.writable_paths),
            readable=list(self.readable_paths),
            blocked=list(self.blocked_paths),
        )

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "desk_slug": self.desk_slug,
            "created_at": self.created_at,
            "writable_paths": list(self.writable_paths),
            "readable_paths": list(self.readable_paths),
            "blocked_paths": list(self.blocked_paths),
        }


class ManifestStore:
    """Create-once, read, and delete session manifests in one directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id for manifest: {session_id!r}")
        return self._directory / f"{session_id}.yaml"

    def create(
        self,
        session_id: str,
        desk_slug: str,
        boundaries: DeskBoundaries,
    ) -> SessionManifest:
        """Write the manifest unless one already exists; return what is on disk."""
        existing = self.load(session_id)
        if existing is not None:
            logger.info("Manifest for session %s already exists; keeping it", session_id)
            return existing

        manifest = SessionManifest(
            session_id=session_id,
            desk_slug=desk_slug,
            writable_paths=list(boundaries.writable),
            readable_paths=list(boundaries.readable),
            blocked_paths=list(boundaries.blocked),
        )
        path = self.path_for(session_id)
        content = _HEADER + yaml.safe_dump(manifest.to_dict(), sort_keys=False)
        atomic_write_text(path, content)
        logger.info("Saved session manifest: %s", path)
        return manifest

    def load(self, session_id: str) -> SessionManifest | None:
        path = self.path_for(session_id)
        if not path.is_file():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Error loading manifest %s: %s", path, exc)
            return None
        if not isinstance(raw, dict):
            logger.error("Ignoring manifest %s: expected a mapping", path)
            return None

        def paths(key: str) -> list[str]:
            value = raw.get(key)
            return [str(v) for v in value] if isinstance(value, list) else []

        return SessionManifest(
            session_id=str(raw.get("session_id") or session_id),
            desk_slug=str(raw.get("desk_slug") or ""),
            created_at=str(raw.get("created_at") or ""),
            writable_paths=paths("writable_paths"),
            readable_paths=paths("readable_paths"),
            blocked_paths=paths("blocked_paths"),
        )

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Error deleting manifest %s: %s", path, exc)
            return False
        logger.info("Deleted session manifest: %s", path)
        return True
