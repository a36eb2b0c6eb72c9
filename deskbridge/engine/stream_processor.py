"""Turns a Claude event stream into chat output for one invocation.

Claude's stream-json output resends the whole current message on every
text event, so text *replaces* the pending buffer instead of appending
to it. Tool calls and tool results mark turn boundaries: the pending
text is flushed to the live message before the tool notice is posted,
which keeps text and notices in the order Claude produced them.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable

from deskbridge.engine.delivery import OutputDelivery
from deskbridge.engine.models import (
    AssistantContent,
    PromptSegment,
    SessionInit,
    StreamEvent,
    TerminalResult,
    TextBlock,
    TextSegment,
    ThreadKey,
    ToolSegment,
    ToolUseBlock,
    TurnSegment,
    UserContent,
)
from deskbridge.engine.prompt_manager import (
    PromptManager,
    is_choice_prompt_tool,
    parse_questions,
    prompt_fingerprint,
)
from deskbridge.shared.formatters.tool_call import describe_tool, tool_emoji

logger = logging.getLogger(__name__)


class StreamEventProcessor:
    """Consumes the events of a single invocation.

    After the stream ends, ``final_text``, ``failed`` / ``error_text`` and
    ``awaiting_input`` tell the caller which terminal state to show.
    """

    def __init__(
        self,
        thread_key: ThreadKey,
        delivery: OutputDelivery,
        prompts: PromptManager,
        *,
        session_id: str | None = None,
    ) -> None:
        self._thread_key = thread_key
        self._delivery = delivery
        self._prompts = prompts

        self.session_id = session_id
        self.segments: list[TurnSegment] = []
        self.cost_usd: float | None = None
        self.failed = False
        self.error_text: str | None = None
        self.awaiting_input = False

        self._pending = ""
        self._final_text: str | None = None
        self._seen_prompts: set[str] = set()
        self._seen_tool_ids: set[str] = set()
        self._reacted: set[str] = set()

    @property
    def final_text(self) -> str:
        """Text of the most recent turn (flushed or still pending)."""
        return self._pending or self._final_text or ""

    async def consume(self, events: AsyncIterable[StreamEvent]) -> None:
        async for event in events:
            await self.process(event)
        await self._end_turn()

    async def process(self, event: StreamEvent) -> None:
        if isinstance(event, SessionInit):
            self._on_session_init(event)
        elif isinstance(event, AssistantContent):
            await self._on_assistant(event)
        elif isinstance(event, UserContent):
            await self._end_turn()
        elif isinstance(event, TerminalResult):
            await self._on_result(event)
        else:
            logger.debug("Unhandled stream event %s", type(event).__name__)

    # ── handlers ──

    def _on_session_init(self, event: SessionInit) -> None:
        if not event.session_id:
            return
        if self.session_id is None:
            self.session_id = event.session_id
        elif event.session_id != self.session_id:
            logger.warning(
                "Thread %s: stream reports session %s, expected %s",
                self._thread_key, event.session_id, self.session_id,
            )
        logger.debug("Session initialized: %s", event.session_id)

    async def _on_assistant(self, event: AssistantContent) -> None:
        # Mixed content is handled in block order: text before a tool
        # call belongs to the turn the tool call ends.
        text_parts: list[str] = []
        for block in event.blocks:
            if isinstance(block, TextBlock):
                text_parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                if text_parts:
                    await self._set_text("".join(text_parts))
                    text_parts = []
                await self._on_tool(block)
        if text_parts:
            await self._set_text("".join(text_parts))

    async def _set_text(self, text: str) -> None:
        text = text.strip()
        if not text or self.awaiting_input:
            return
        self._pending = text
        await self._delivery.update(text)

    async def _on_tool(self, block: ToolUseBlock) -> None:
        if is_choice_prompt_tool(block.name):
            await self._on_choice_prompt(block)
            return

        if block.id:
            if block.id in self._seen_tool_ids:
                return
            self._seen_tool_ids.add(block.id)

        await self._end_turn()
        notice = describe_tool(block.name, block.input)
        self.segments.append(ToolSegment(name=block.name, input=block.input, notice=notice))
        logger.info("Thread %s tool: %s", self._thread_key, block.name)
        await self._delivery.post_notice(notice)

        emoji = tool_emoji(block.name)
        if emoji not in self._reacted:
            self._reacted.add(emoji)
            await self._delivery.react(emoji)

    async def _on_choice_prompt(self, block: ToolUseBlock) -> None:
        fingerprint = prompt_fingerprint(block.input)
        if fingerprint in self._seen_prompts:
            logger.debug("Suppressing duplicate choice prompt in %s", self._thread_key)
            return
        self._seen_prompts.add(fingerprint)

        questions = parse_questions(block.input)
        await self._end_turn()
        if not questions:
            notice = describe_tool(block.name, block.input)
            self.segments.append(ToolSegment(name=block.name, input=block.input, notice=notice))
            await self._delivery.post_notice(notice)
            return

        rendered = await self._prompts.open(self._thread_key, questions)
        self.segments.append(PromptSegment(questions=questions))
        self.awaiting_input = True
        logger.info(
            "Thread %s asked %d question(s); waiting for input",
            self._thread_key, len(questions),
        )
        message_id = await self._delivery.post_prompt(rendered)
        if message_id is not None:
            self._prompts.attach(self._thread_key, message_id)

    async def _on_result(self, event: TerminalResult) -> None:
        if event.cost_usd is not None:
            self.cost_usd = event.cost_usd
            logger.info("Thread %s cost: $%.4f", self._thread_key, event.cost_usd)
        if event.session_id and self.session_id is None:
            self.session_id = event.session_id

        if event.is_error:
            self.failed = True
            self.error_text = (event.final_text or "").strip() or "Claude reported an error"
        elif (
            not self.awaiting_input
            and not self.final_text
            and event.final_text
            and event.final_text.strip()
        ):
            self._pending = event.final_text.strip()
        await self._end_turn()

    async def _end_turn(self) -> None:
        """Close the current turn: record its text and flush it now."""
        if not self._pending:
            return
        text = self._pending
        self._pending = ""
        self._final_text = text
        self.segments.append(TextSegment(text=text))
        await self._delivery.flush(text)
