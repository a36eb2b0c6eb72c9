"""Slack implementation of the chat platform contract.

Thread keys map to ``(channel, thread_ts)``. Slack API failures are
translated into the engine's error types: ``msg_too_long`` becomes
MessageTooLongError, duplicate or missing reactions are ignored, and
everything else becomes PlatformError.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, NoReturn

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from deskbridge.engine.errors import MessageTooLongError, PlatformError
from deskbridge.engine.models import InboundFile, ThreadKey
from deskbridge.engine.platform import ChatPlatform

logger = logging.getLogger(__name__)

_TOO_LONG_ERRORS = frozenset({"msg_too_long", "msg_blocks_too_long"})
_IGNORED_REACTION_ERRORS = {
    "add": frozenset({"already_reacted"}),
    "remove": frozenset({"no_reaction"}),
}
_DOWNLOAD_TIMEOUT = aiohttp.ClientTimeout(total=60)


def _error_code(e: SlackApiError) -> str:
    try:
        return str(e.response["error"])
    except (KeyError, TypeError):
        return str(e)


class SlackPlatform(ChatPlatform):
    """ChatPlatform backed by slack_sdk's AsyncWebClient."""

    def __init__(
        self,
        token: str | None = None,
        *,
        client: AsyncWebClient | None = None,
    ) -> None:
        if client is None and not token:
            raise ValueError("SlackPlatform needs a bot token or a client")
        self._client = client if client is not None else AsyncWebClient(token=token)
        self._token = token or getattr(client, "token", None)

    @property
    def client(self) -> AsyncWebClient:
        return self._client

    def _raise(self, operation: str, e: SlackApiError, length: int = 0) -> NoReturn:
        code = _error_code(e)
        if code in _TOO_LONG_ERRORS:
            raise MessageTooLongError(operation, length) from e
        raise PlatformError(operation, code) from e

    async def post_message(self, thread_key: ThreadKey, text: str) -> str:
        try:
            response = await self._client.chat_postMessage(
                channel=thread_key.conversation_id,
                thread_ts=thread_key.root_message_id,
                text=text,
                mrkdwn=True,
            )
        except SlackApiError as e:
            self._raise("postMessage", e, len(text))
        return str(response["ts"])

    async def edit_message(
        self, thread_key: ThreadKey, message_id: str, text: str,
    ) -> None:
        try:
            await self._client.chat_update(
                channel=thread_key.conversation_id,
                ts=message_id,
                text=text,
            )
        except SlackApiError as e:
            self._raise("update", e, len(text))

    async def post_blocks(
        self, thread_key: ThreadKey, text: str, blocks: list[dict[str, Any]],
    ) -> str:
        try:
            response = await self._client.chat_postMessage(
                channel=thread_key.conversation_id,
                thread_ts=thread_key.root_message_id,
                text=text,
                blocks=blocks,
            )
        except SlackApiError as e:
            self._raise("postMessage", e, len(text))
        return str(response["ts"])

    async def update_blocks(
        self,
        thread_key: ThreadKey,
        message_id: str,
        text: str,
        blocks: list[dict[str, Any]],
    ) -> None:
        try:
            await self._client.chat_update(
                channel=thread_key.conversation_id,
                ts=message_id,
                text=text,
                blocks=blocks,
            )
        except SlackApiError as e:
            self._raise("update", e, len(text))

    async def add_reaction(
        self, thread_key: ThreadKey, message_id: str, marker: str,
    ) -> None:
        try:
            await self._client.reactions_add(
                channel=thread_key.conversation_id,
                timestamp=message_id,
                name=marker,
            )
        except SlackApiError as e:
            if _error_code(e) in _IGNORED_REACTION_ERRORS["add"]:
                return
            self._raise("reactions.add", e)

    async def remove_reaction(
        self, thread_key: ThreadKey, message_id: str, marker: str,
    ) -> None:
        try:
            await self._client.reactions_remove(
                channel=thread_key.conversation_id,
                timestamp=message_id,
                name=marker,
            )
        except SlackApiError as e:
            if _error_code(e) in _IGNORED_REACTION_ERRORS["remove"]:
                return
            self._raise("reactions.remove", e)

    async def upload_file(
        self,
        thread_key: ThreadKey,
        path: Path,
        comment: str | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {
            "channel": thread_key.conversation_id,
            "thread_ts": thread_key.root_message_id,
            "file": str(path),
            "filename": path.name,
            "title": path.name,
        }
        if comment:
            kwargs["initial_comment"] = comment
        try:
            await self._client.files_upload_v2(**kwargs)
        except SlackApiError as e:
            self._raise("files.upload", e)
        logger.info("Uploaded %s to %s", path, thread_key)

    async def download_file(self, file: InboundFile, dest: Path) -> None:
        """Fetch a private file URL with the bot token and write it to dest."""
        if not self._token:
            raise PlatformError("files.download", "no bot token")
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with aiohttp.ClientSession(timeout=_DOWNLOAD_TIMEOUT) as session:
                async with session.get(file.url, headers=headers) as resp:
                    if resp.status != 200:
                        raise PlatformError("files.download", f"HTTP {resp.status}")
                    content_type = resp.headers.get("Content-Type", "")
                    content = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PlatformError("files.download", str(e) or type(e).__name__) from e

        # A bad token gets the Slack login page instead of the file.
        head = content[:15].lstrip()
        if head.startswith((b"<!DOCTYPE", b"<html")):
            raise PlatformError(
                "files.download", f"got HTML instead of file content ({content_type})",
            )
        dest.write_bytes(content)
        logger.info("Downloaded %s (%.1fKB) -> %s", file.name, len(content) / 1024, dest)

    async def auth_test(self) -> str:
        """Return the bot's own user id."""
        try:
            response = await self._client.auth_test()
        except SlackApiError as e:
            self._raise("auth.test", e)
        return str(response.get("user_id") or "")
