"""Inbound Slack traffic over Socket Mode.

Every request is acknowledged first, then routed:

- ``message`` events (DMs and allowed channels) and ``app_mention``
  events become conversational input for the thread, with any shared
  files passed along for download,
- ``block_actions`` button clicks become prompt selections, prompt
  submissions, or plain replies.

The handlers only schedule work on the orchestrator; nothing here waits
for Claude.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from slack_sdk.socket_mode.aiohttp import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse

from deskbridge.engine.models import InboundFile, ThreadKey
from deskbridge.engine.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)

MENTION_GREETING = "Hi! Send me a message and I'll help you out."

_USER_MENTION_RE = re.compile(r"<@[A-Z0-9]+>")

# Subtypes that are still a person talking.
_ACCEPTED_SUBTYPES = frozenset({"file_share"})


def parse_files(event: dict[str, Any]) -> list[InboundFile]:
    """Shared files of a message event that carry a download URL."""
    files = []
    for raw in event.get("files") or []:
        url = raw.get("url_private_download") or raw.get("url_private")
        if not url:
            continue
        files.append(InboundFile(
            name=raw.get("name") or raw.get("id") or "file",
            url=url,
            size=int(raw.get("size") or 0),
            filetype=raw.get("filetype") or "",
        ))
    return files


class SlackEventHandler:
    """Filters Slack events and hands accepted input to the orchestrator."""

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        *,
        bot_user_id: str = "",
        allowed_users: list[str] | None = None,
        allowed_channels: list[str] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self.bot_user_id = bot_user_id
        self._allowed_users = set(allowed_users or [])
        self._allowed_channels = set(allowed_channels or [])

    def is_allowed_user(self, user_id: str) -> bool:
        return not self._allowed_users or user_id in self._allowed_users

    def is_allowed_channel(self, channel_id: str) -> bool:
        return not self._allowed_channels or channel_id in self._allowed_channels

    # ── Socket Mode entry point ──

    async def on_request(self, client: SocketModeClient, req: SocketModeRequest) -> None:
        await client.send_socket_mode_response(
            SocketModeResponse(envelope_id=req.envelope_id)
        )
        try:
            await self.route(req.type, req.payload or {})
        except Exception:
            logger.exception("Error handling Slack %s request", req.type)

    async def route(self, request_type: str, payload: dict[str, Any]) -> None:
        if request_type == "events_api":
            event = payload.get("event") or {}
            event_type = event.get("type")
            if event_type == "message":
                self.handle_message(event)
            elif event_type == "app_mention":
                await self.handle_mention(event)
            else:
                logger.debug("Ignoring Slack event type %s", event_type)
        elif request_type == "interactive":
            if payload.get("type") == "block_actions":
                self.handle_block_actions(payload)
        else:
            logger.debug("Ignoring Slack request type %s", request_type)

    # ── events ──

    def handle_message(self, event: dict[str, Any]) -> bool:
        """Route a message event; True when it was dispatched."""
        # Bot output, edits, deletions and joins all carry a bot_id or subtype.
        if event.get("bot_id"):
            return False
        subtype = event.get("subtype")
        if subtype and subtype not in _ACCEPTED_SUBTYPES:
            return False
        user, channel, ts = event.get("user"), event.get("channel"), event.get("ts")
        text = event.get("text") or ""
        if not user or not channel or not ts:
            return False

        is_dm = event.get("channel_type") == "im"
        if not is_dm and self.bot_user_id and f"<@{self.bot_user_id}>" in text:
            return False  # handled by app_mention
        if not self.is_allowed_user(user):
            logger.info("Ignoring message from non-allowed user: %s", user)
            return False
        if not is_dm and not self.is_allowed_channel(channel):
            logger.info("Ignoring message in non-allowed channel: %s", channel)
            return False

        thread_key = ThreadKey(channel, event.get("thread_ts") or ts)
        files = parse_files(event)
        logger.info("Message from %s in %s: %.50s (%d files)", user, channel, text, len(files))
        self._orchestrator.dispatch(thread_key, user, text, files=files or None, message_id=ts)
        return True

    async def handle_mention(self, event: dict[str, Any]) -> bool:
        user, channel, ts = event.get("user"), event.get("channel"), event.get("ts")
        if not user or not channel or not ts:
            logger.info("Ignoring mention without user")
            return False
        if not self.is_allowed_user(user):
            logger.info("Ignoring mention from non-allowed user: %s", user)
            return False

        thread_key = ThreadKey(channel, event.get("thread_ts") or ts)
        clean_text = _USER_MENTION_RE.sub("", event.get("text") or "").strip()
        logger.info("Mentioned by %s in %s", user, channel)
        files = parse_files(event)
        if not clean_text and not files:
            await self._orchestrator.post(thread_key, MENTION_GREETING)
            return False
        self._orchestrator.dispatch(
            thread_key, user, clean_text, files=files or None, message_id=ts,
        )
        return True

    def handle_block_actions(self, payload: dict[str, Any]) -> int:
        """Dispatch each button action; returns how many were dispatched."""
        channel = (payload.get("channel") or {}).get("id")
        message = payload.get("message") or {}
        thread_ts = message.get("thread_ts") or message.get("ts")
        user = (payload.get("user") or {}).get("id") or "unknown"
        if not channel or not thread_ts:
            return 0
        thread_key = ThreadKey(channel, thread_ts)

        dispatched = 0
        for action in payload.get("actions") or []:
            value = action.get("value")
            if action.get("type") != "button" or not value:
                continue
            logger.info("Button clicked: %.80s by %s", value, user)
            self._orchestrator.track(
                self._orchestrator.handle_button(
                    thread_key, user, value,
                    message_id=message.get("ts"),
                    blocks=message.get("blocks"),
                )
            )
            dispatched += 1
        return dispatched


def create_socket_client(
    app_token: str,
    web_client: Any,
    handler: SlackEventHandler,
) -> SocketModeClient:
    client = SocketModeClient(app_token=app_token, web_client=web_client)
    client.socket_mode_request_listeners.append(handler.on_request)
    return client
