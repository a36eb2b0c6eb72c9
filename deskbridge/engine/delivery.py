"""Outbound message policy for one invocation.

Each invocation owns a single live message: it is posted up front as a
"processing" placeholder, edited in place as Claude streams text, and
finally replaced by the answer (split across follow-up messages when it
is too long). Edits are debounced so the platform sees at most one edit
per ``min_interval``; tool notices and prompts are separate messages.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from deskbridge.engine.errors import MessageTooLongError, PlatformError
from deskbridge.engine.models import ThreadKey
from deskbridge.engine.platform import ChatPlatform
from deskbridge.engine.prompt_manager import RenderedPrompt
from deskbridge.shared.formatters.mrkdwn import format_for_slack, truncate

logger = logging.getLogger(__name__)

PROCESSING_TEXT = ":thinking_face: Processing..."
NO_RESPONSE_TEXT = ":warning: No response received from Claude"
WAITING_TEXT = ":speech_balloon: _Waiting for your input..._"

DEFAULT_MAX_LENGTH = 3500
DEFAULT_MIN_INTERVAL = 0.5

# Paragraph, then line, then word boundaries.
_SPLIT_SEPARATORS = ("\n\n", "\n", " ")


def split_message(text: str, limit: int = DEFAULT_MAX_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` characters.

    Each cut lands on the latest paragraph break that fits, else the
    latest line break, else the latest space, else a hard cut at the
    limit. Breaks in the first half of the window are skipped.
    The separator at a cut is dropped.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    floor = (limit + 1) // 2
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut, skip = limit, 0
        for sep in _SPLIT_SEPARATORS:
            idx = remaining.rfind(sep, floor, limit + len(sep))
            if idx >= floor:
                cut, skip = idx, len(sep)
                break
        chunks.append(remaining[:cut])
        remaining = remaining[cut + skip:]
    if remaining:
        chunks.append(remaining)
    return chunks


class OutputDelivery:
    """Debounced live-message delivery for one invocation.

    At most one trailing flush task is pending at any time; a newer
    update replaces the buffered text rather than queueing behind it.
    """

    def __init__(
        self,
        platform: ChatPlatform,
        thread_key: ThreadKey,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_length: int = DEFAULT_MAX_LENGTH,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._platform = platform
        self._thread_key = thread_key
        self._min_interval = min_interval
        self._max_length = max_length
        self._safe_length = max(1, max_length // 2)
        self._clock = clock

        self._message_id: str | None = None
        self._pending: str = ""
        self._sent: str | None = None
        self._sent_preview: str | None = None
        self._last_flush: float | None = None
        self._timer: asyncio.Task | None = None
        self._edit_lock = asyncio.Lock()
        self._finished = False

    @property
    def message_id(self) -> str | None:
        return self._message_id

    @property
    def finished(self) -> bool:
        return self._finished

    async def start(self, text: str = PROCESSING_TEXT) -> str:
        """Post the live placeholder. The post counts as the last flush."""
        self._message_id = await self._platform.post_message(self._thread_key, text)
        self._last_flush = self._clock()
        return self._message_id

    # ── live text ──

    async def update(self, text: str) -> None:
        """Replace the buffered text and flush now or once the interval ends."""
        if self._finished:
            return
        self._pending = text
        if self._timer is not None:
            return  # the scheduled flush picks up the latest text

        elapsed = self._elapsed()
        if elapsed >= self._min_interval:
            await self._send_live()
        else:
            self._timer = asyncio.create_task(
                self._trailing_flush(self._min_interval - elapsed)
            )

    async def flush(self, text: str | None = None) -> None:
        """Edit immediately, cancelling any scheduled flush."""
        if self._finished:
            return
        if text is not None:
            self._pending = text
        self._cancel_timer()
        await self._send_live()

    def _elapsed(self) -> float:
        if self._last_flush is None:
            return float("inf")
        return self._clock() - self._last_flush

    async def _trailing_flush(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        await self._send_live()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _send_live(self) -> None:
        async with self._edit_lock:
            text = self._pending
            if not text.strip() or text == self._sent or self._message_id is None:
                return
            self._last_flush = self._clock()
            preview = format_for_slack(text)
            if len(preview) > self._max_length:
                preview = truncate(preview, self._max_length)
            if await self._edit(self._message_id, preview):
                self._sent = text
                self._sent_preview = preview

    # ── discrete messages ──

    async def post_notice(self, text: str) -> str | None:
        """Post a tool-activity notice as its own message."""
        try:
            return await self._platform.post_message(self._thread_key, text)
        except PlatformError as e:
            logger.warning("Failed to post notice in %s: %s", self._thread_key, e)
            return None

    async def post_prompt(self, rendered: RenderedPrompt) -> str | None:
        try:
            return await self._platform.post_blocks(
                self._thread_key, rendered.text, rendered.blocks,
            )
        except PlatformError as e:
            logger.error("Failed to post prompt in %s: %s", self._thread_key, e)
            await self._post_error(f"Could not show the question: {e.reason}")
            return None

    async def react(self, marker: str) -> None:
        """Add a reaction to the live message."""
        if self._message_id is None:
            return
        try:
            await self._platform.add_reaction(self._thread_key, self._message_id, marker)
        except PlatformError as e:
            logger.debug("Reaction %s failed: %s", marker, e)

    # ── terminal states ──

    async def finalize(self, text: str) -> None:
        """Replace the live message with the answer, splitting if needed."""
        self._finish()
        formatted = format_for_slack(text) if text else ""
        if not formatted:
            formatted = NO_RESPONSE_TEXT

        chunks = split_message(formatted, self._max_length)
        if len(chunks) > 1:
            logger.info(
                "Response too long (%d chars), splitting into %d messages",
                len(formatted), len(chunks),
            )
        async with self._edit_lock:
            first, rest = chunks[0], chunks[1:]
            if self._message_id is not None and first == self._sent_preview:
                delivered = True  # already showing exactly this
            elif self._message_id is not None:
                delivered = await self._edit(self._message_id, first)
            else:
                delivered = await self._post(first)
            if not delivered:
                await self._post_error("Failed to deliver the response")
                return
            for chunk in rest:
                if not await self._post(chunk):
                    await self._post_error("Failed to deliver part of the response")
                    return

    async def fail(self, reason: str) -> None:
        """Replace the live message with an error marker."""
        self._finish()
        text = f":x: Error: {reason}"
        async with self._edit_lock:
            if self._message_id is None or not await self._edit(self._message_id, text):
                await self._post(text)

    async def await_input(self, text: str = "") -> None:
        """Finish with any turn text followed by a waiting-for-input marker."""
        body = f"{text.rstrip()}\n\n{WAITING_TEXT}" if text.strip() else WAITING_TEXT
        await self.finalize(body)

    def _finish(self) -> None:
        self._finished = True
        self._cancel_timer()

    async def close(self) -> None:
        self._cancel_timer()

    # ── platform calls ──

    async def _edit(self, message_id: str, text: str) -> bool:
        try:
            await self._platform.edit_message(self._thread_key, message_id, text)
            return True
        except MessageTooLongError:
            logger.warning(
                "Edit rejected as too long (%d chars); truncating to %d",
                len(text), self._safe_length,
            )
            try:
                await self._platform.edit_message(
                    self._thread_key, message_id, truncate(text, self._safe_length),
                )
                return True
            except PlatformError as e:
                logger.error("Truncated edit failed in %s: %s", self._thread_key, e)
                return False
        except PlatformError as e:
            logger.error("Edit failed in %s: %s", self._thread_key, e)
            return False

    async def _post(self, text: str) -> bool:
        try:
            await self._platform.post_message(self._thread_key, text)
            return True
        except MessageTooLongError:
            logger.warning("Post rejected as too long (%d chars); truncating", len(text))
            try:
                await self._platform.post_message(
                    self._thread_key, truncate(text, self._safe_length),
                )
                return True
            except PlatformError as e:
                logger.error("Truncated post failed in %s: %s", self._thread_key, e)
                return False
        except PlatformError as e:
            logger.error("Post failed in %s: %s", self._thread_key, e)
            return False

    async def _post_error(self, reason: str) -> None:
        try:
            await self._platform.post_message(self._thread_key, f":x: {reason}")
        except PlatformError:
            logger.exception("Could not report delivery failure in %s", self._thread_key)
