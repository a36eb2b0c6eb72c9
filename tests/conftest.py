"""Shared test doubles for the bridge engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from deskbridge.engine.errors import MessageTooLongError, PlatformError
from deskbridge.engine.models import InboundFile, ThreadKey
from deskbridge.engine.platform import ChatPlatform


class FakePlatform(ChatPlatform):
    """In-memory ChatPlatform that records every call.

    ``calls`` keeps (operation, args...) tuples in call order. Set
    ``fail_ops`` to make operations raise PlatformError, or
    ``max_length`` to reject longer texts with MessageTooLongError.
    Downloads write ``contents for <name>`` to the destination.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.messages: dict[str, str] = {}
        self.blocks: dict[str, list[dict[str, Any]]] = {}
        self.reactions: dict[str, set[str]] = {}
        self.uploads: list[tuple[ThreadKey, Path, str | None]] = []
        self.downloads: list[tuple[InboundFile, Path]] = []
        self.fail_ops: set[str] = set()
        self.max_length: int | None = None
        self._next = 0

    def _new_id(self) -> str:
        self._next += 1
        return f"m{self._next}"

    def _check(self, op: str, text: str = "") -> None:
        if op in self.fail_ops:
            raise PlatformError(op, "boom")
        if self.max_length is not None and len(text) > self.max_length:
            raise MessageTooLongError(op, len(text))

    @property
    def posts(self) -> list[str]:
        return [c[2] for c in self.calls if c[0] == "post"]

    @property
    def edits(self) -> list[str]:
        return [c[3] for c in self.calls if c[0] == "edit"]

    async def post_message(self, thread_key: ThreadKey, text: str) -> str:
        self._check("post", text)
        message_id = self._new_id()
        self.calls.append(("post", thread_key, text, message_id))
        self.messages[message_id] = text
        return message_id

    async def edit_message(self, thread_key: ThreadKey, message_id: str, text: str) -> None:
        self._check("edit", text)
        self.calls.append(("edit", thread_key, message_id, text))
        self.messages[message_id] = text

    async def post_blocks(self, thread_key: ThreadKey, text: str, blocks: list[dict[str, Any]]) -> str:
        self._check("post_blocks", text)
        message_id = self._new_id()
        self.calls.append(("post_blocks", thread_key, text, message_id))
        self.messages[message_id] = text
        self.blocks[message_id] = blocks
        return message_id

    async def update_blocks(
        self, thread_key: ThreadKey, message_id: str, text: str, blocks: list[dict[str, Any]],
    ) -> None:
        self._check("update_blocks", text)
        self.calls.append(("update_blocks", thread_key, message_id, text))
        self.blocks[message_id] = blocks

    async def add_reaction(self, thread_key: ThreadKey, message_id: str, marker: str) -> None:
        self._check("add_reaction")
        self.calls.append(("add_reaction", thread_key, message_id, marker))
        self.reactions.setdefault(message_id, set()).add(marker)

    async def remove_reaction(self, thread_key: ThreadKey, message_id: str, marker: str) -> None:
        self._check("remove_reaction")
        self.calls.append(("remove_reaction", thread_key, message_id, marker))
        self.reactions.get(message_id, set()).discard(marker)

    async def upload_file(self, thread_key: ThreadKey, path: Path, comment: str | None = None) -> None:
        self._check("upload")
        self.uploads.append((thread_key, path, comment))

    async def download_file(self, file: InboundFile, dest: Path) -> None:
        self._check("download")
        self.downloads.append((file, dest))
        dest.write_text(f"contents for {file.name}", encoding="utf-8")


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def thread_key() -> ThreadKey:
    return ThreadKey("C123", "1700000000.000100")
