"""Abstract chat-platform contract.

The engine talks to the chat surface only through this interface.
Implementations translate platform failures into PlatformError /
MessageTooLongError and swallow idempotent reaction errors
(already reacted, no such reaction).
"""
from __future__ import annotations

import abc
from pathlib import Path
from typing import Any

from deskbridge.engine.models import InboundFile, ThreadKey


class ChatPlatform(abc.ABC):
    """Thread-scoped messaging operations."""

    @abc.abstractmethod
    async def post_message(self, thread_key: ThreadKey, text: str) -> str:
        """Post a new message in the thread and return its message id."""

    @abc.abstractmethod
    async def edit_message(
        self, thread_key: ThreadKey, message_id: str, text: str,
    ) -> None:
        """Replace the text of an existing message."""

    @abc.abstractmethod
    async def post_blocks(
        self, thread_key: ThreadKey, text: str, blocks: list[dict[str, Any]],
    ) -> str:
        """Post an interactive message; ``text`` is the notification fallback."""

    @abc.abstractmethod
    async def update_blocks(
        self,
        thread_key: ThreadKey,
        message_id: str,
        text: str,
        blocks: list[dict[str, Any]],
    ) -> None:
        """Replace the blocks of an existing interactive message."""

    @abc.abstractmethod
    async def add_reaction(
        self, thread_key: ThreadKey, message_id: str, marker: str,
    ) -> None:
        """Add a reaction marker. Already-set is not an error."""

    @abc.abstractmethod
    async def remove_reaction(
        self, thread_key: ThreadKey, message_id: str, marker: str,
    ) -> None:
        """Remove a reaction marker. Not-set is not an error."""

    @abc.abstractmethod
    async def upload_file(
        self,
        thread_key: ThreadKey,
        path: Path,
        comment: str | None = None,
    ) -> None:
        """Upload a local file into the thread, with an optional comment."""

    @abc.abstractmethod
    async def download_file(self, file: InboundFile, dest: Path) -> None:
        """Download an inbound file to ``dest``. Raises PlatformError on failure."""
