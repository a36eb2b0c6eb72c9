"""Thread → session registry with JSON persistence.

Storage layout:
    {data_dir}/sessions.json

    {"version": 1, "sessions": {"<channel>:<thread_ts>": {...}}}

Reads fail open (a broken file means an empty registry) and writes are
best effort: a failed save is logged and the in-memory state stands.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from deskbridge.engine.locks import KeyedLock
from deskbridge.engine.models import ThreadKey, ThreadSession
from deskbridge.shared.services.storage import atomic_write_text, read_json_object

logger = logging.getLogger(__name__)

_STORE_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    """Maps chat threads to resumable Claude sessions.

    ``resolve`` is serialized per thread key, so two racing inbound
    events for a new thread create exactly one session.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._locks = KeyedLock()
        self._sessions: dict[ThreadKey, ThreadSession] = self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, thread_key: ThreadKey) -> bool:
        return thread_key in self._sessions

    # ── persistence ──

    def _load(self) -> dict[ThreadKey, ThreadSession]:
        if self._path is None:
            return {}
        data = read_json_object(self._path)
        if data is None:
            return {}
        raw_sessions = data.get("sessions")
        if not isinstance(raw_sessions, dict):
            logger.warning("Session store %s has no sessions map; starting fresh", self._path)
            return {}

        sessions: dict[ThreadKey, ThreadSession] = {}
        for key, raw in raw_sessions.items():
            try:
                session = ThreadSession.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed session entry %s", key)
                continue
            sessions[session.thread_key] = session
        logger.info("Loaded %d thread sessions from %s", len(sessions), self._path)
        return sessions

    def _save(self) -> None:
        if self._path is None:
            return
        data = {
            "version": _STORE_VERSION,
            "sessions": {
                str(key): session.to_dict()
                for key, session in self._sessions.items()
            },
        }
        try:
            atomic_write_text(self._path, json.dumps(data, indent=2))
        except OSError:
            logger.exception("Failed to persist sessions to %s", self._path)

    # ── operations ──

    async def resolve(
        self,
        thread_key: ThreadKey,
        owner_id: str,
    ) -> tuple[ThreadSession, bool]:
        """Return the thread's session, creating one if needed.

        Returns ``(session, is_new)``. An existing session has its
        activity timestamp refreshed.
        """
        async with self._locks.hold(thread_key):
            existing = self._sessions.get(thread_key)
            if existing is not None:
                existing.last_activity_at = _utcnow()
                self._save()
                return existing, False

            session = ThreadSession(
                thread_key=thread_key,
                session_id=str(uuid.uuid4()),
                owner_id=owner_id,
            )
            self._sessions[thread_key] = session
            self._save()
            logger.info(
                "Created session %s for thread %s owner=%s",
                session.session_id, thread_key, owner_id,
            )
            return session, True

    def touch(self, thread_key: ThreadKey) -> None:
        session = self._sessions.get(thread_key)
        if session is None:
            return
        session.last_activity_at = _utcnow()
        self._save()

    def set_desk(self, thread_key: ThreadKey, desk_slug: str) -> None:
        """Record the desk bound to a session. The first binding wins."""
        session = self._sessions.get(thread_key)
        if session is None or session.desk_slug:
            return
        session.desk_slug = desk_slug
        self._save()

    def get(self, thread_key: ThreadKey) -> ThreadSession | None:
        return self._sessions.get(thread_key)

    def find_by_session_id(self, session_id: str) -> ThreadSession | None:
        for session in self._sessions.values():
            if session.session_id == session_id:
                return session
        return None

    def all(self) -> list[ThreadSession]:
        return list(self._sessions.values())

    def sweep(
        self,
        max_idle: timedelta,
        now: datetime | None = None,
    ) -> list[ThreadSession]:
        """Evict sessions idle for longer than ``max_idle``; return them."""
        cutoff = (now or _utcnow()) - max_idle
        evicted = [
            session for session in self._sessions.values()
            if session.last_activity_at < cutoff
        ]
        if not evicted:
            return []
        for session in evicted:
            del self._sessions[session.thread_key]
        self._save()
        logger.info("Swept %d idle thread sessions", len(evicted))
        return evicted
