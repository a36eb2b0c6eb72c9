"""Core data models for the bridge engine.

Stream events and turn segments are small dataclass families; consumers
dispatch on the concrete type rather than on a string field.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ThreadKey:
    """Identity of one chat thread: the conversation plus its root message."""
    conversation_id: str
    root_message_id: str

    def __str__(self) -> str:
        return f"{self.conversation_id}:{self.root_message_id}"

    @classmethod
    def parse(cls, value: str) -> ThreadKey:
        conversation_id, sep, root = value.partition(":")
        if not sep or not conversation_id or not root:
            raise ValueError(f"Invalid thread key: {value!r}")
        return cls(conversation_id, root)


@dataclass
class ThreadSession:
    """Durable mapping from a thread to its resumable AI session."""
    thread_key: ThreadKey
    session_id: str
    owner_id: str
    created_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)
    desk_slug: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "conversation_id": self.thread_key.conversation_id,
            "root_message_id": self.thread_key.root_message_id,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "desk_slug": self.desk_slug,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThreadSession:
        return cls(
            thread_key=ThreadKey(
                str(data["conversation_id"]), str(data["root_message_id"]),
            ),
            session_id=str(data["session_id"]),
            owner_id=str(data.get("owner_id") or ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            desk_slug=data.get("desk_slug") or None,
        )


# ── Content blocks ──


@dataclass
class TextBlock:
    text: str = ""


@dataclass
class ToolUseBlock:
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    id: str = ""


ContentBlock = Union[TextBlock, ToolUseBlock]


# ── Stream events ──


@dataclass
class StreamEvent:
    """Base for events read from the subprocess output stream."""
    session_id: str | None = None


@dataclass
class SessionInit(StreamEvent):
    pass


@dataclass
class AssistantContent(StreamEvent):
    blocks: list[ContentBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(
            b.text for b in self.blocks if isinstance(b, TextBlock)
        ).strip()


@dataclass
class UserContent(StreamEvent):
    """Tool results flowing back into the conversation."""


@dataclass
class TerminalResult(StreamEvent):
    final_text: str | None = None
    cost_usd: float | None = None
    is_error: bool = False


# ── Turn segments ──


@dataclass
class TextSegment:
    text: str


@dataclass
class ToolSegment:
    name: str
    input: dict[str, Any]
    notice: str


@dataclass
class PromptSegment:
    questions: list[Any]


TurnSegment = Union[TextSegment, ToolSegment, PromptSegment]


@dataclass
class Attachment:
    """A file attached to an inbound message, already on local disk."""
    path: Path
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.path.name


@dataclass
class InboundFile:
    """A file shared with an inbound message, not yet downloaded."""
    name: str
    url: str
    size: int = 0
    filetype: str = ""

    @property
    def extension(self) -> str:
        if self.filetype:
            return self.filetype.lower()
        return Path(self.name).suffix.lstrip(".").lower()


@dataclass
class DeskBoundaries:
    """Path globs a desk session may write, read, or never touch."""
    writable: list[str] = field(default_factory=list)
    readable: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
