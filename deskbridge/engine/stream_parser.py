"""Parse the Claude CLI's ``--output-format stream-json`` output.

Each stdout line is one JSON object. Lines that are not JSON objects
are diagnostic noise: they are logged and skipped.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from deskbridge.engine.models import (
    AssistantContent,
    ContentBlock,
    SessionInit,
    StreamEvent,
    TerminalResult,
    TextBlock,
    ToolUseBlock,
    UserContent,
)

logger = logging.getLogger(__name__)


def _parse_blocks(content: Any) -> list[ContentBlock]:
    if isinstance(content, str):
        return [TextBlock(text=content)] if content else []
    if not isinstance(content, list):
        return []
    blocks: list[ContentBlock] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        block_type = item.get("type")
        if block_type == "text":
            blocks.append(TextBlock(text=str(item.get("text") or "")))
        elif block_type == "tool_use":
            tool_input = item.get("input")
            blocks.append(ToolUseBlock(
                name=str(item.get("name") or ""),
                input=tool_input if isinstance(tool_input, dict) else {},
                id=str(item.get("id") or ""),
            ))
        # thinking / redacted blocks are not shown
    return blocks


def _parse_cost(payload: dict[str, Any]) -> float | None:
    for key in ("total_cost_usd", "cost_usd"):
        value = payload.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def parse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map one decoded JSON object to a StreamEvent, or None if irrelevant."""
    event_type = payload.get("type")
    session_id = payload.get("session_id") or None

    if event_type == "system":
        if payload.get("subtype") == "init":
            return SessionInit(session_id=session_id)
        return None

    if event_type == "assistant":
        message = payload.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return AssistantContent(session_id=session_id, blocks=_parse_blocks(content))

    if event_type in ("user", "tool_result"):
        return UserContent(session_id=session_id)

    if event_type == "tool_use":
        # Older CLI releases emitted tool calls as top-level events.
        tool_input = payload.get("tool_input")
        return AssistantContent(
            session_id=session_id,
            blocks=[ToolUseBlock(
                name=str(payload.get("tool") or ""),
                input=tool_input if isinstance(tool_input, dict) else {},
                id=str(payload.get("id") or ""),
            )],
        )

    if event_type == "result":
        result = payload.get("result")
        return TerminalResult(
            session_id=session_id,
            final_text=result if isinstance(result, str) else None,
            cost_usd=_parse_cost(payload),
            is_error=bool(payload.get("is_error")),
        )

    return None


def parse_line(line: bytes | str) -> StreamEvent | None:
    """Decode and parse a single output line."""
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON line: %.100s", text)
        return None
    if not isinstance(payload, dict):
        logger.debug("Skipping non-object JSON line: %.100s", text)
        return None
    event = parse_event(payload)
    if event is None:
        logger.debug("Ignoring stream event type=%s", payload.get("type"))
    return event


async def iter_stream_events(reader: asyncio.StreamReader) -> AsyncIterator[StreamEvent]:
    """Yield events from a line-delimited stream until EOF.

    ``readline`` hands back the unterminated tail at EOF, so a final
    event without a trailing newline is still parsed.
    """
    while True:
        try:
            line = await reader.readline()
        except ValueError:
            # Line longer than the reader's limit; the reader has discarded it.
            logger.warning("Skipping oversized stream line")
            continue
        if not line:
            break
        event = parse_line(line)
        if event is not None:
            yield event
