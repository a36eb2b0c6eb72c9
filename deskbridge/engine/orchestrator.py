"""Conversation orchestrator: the single entry point for thread input.

Every piece of conversational input (a message, an @mention, a button
click, a submitted set of prompt answers) goes through ``submit``. For
each invocation the orchestrator:

1. abandons any pending choice prompt in the thread,
2. waits for the thread's previous invocation (FIFO per thread),
3. in team-mode channels, classifies the request and rejects what the
   channel does not allow,
4. resolves or creates the thread's Claude session (binding a desk on
   creation),
5. posts the live message, downloads shared files, and streams Claude's
   events through a StreamEventProcessor,
6. ends with exactly one terminal state: the answer, an error marker,
   or a waiting-for-input marker.

Failures are contained in the invocation; other threads never see them.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import timedelta
from pathlib import Path
from typing import Any

from deskbridge.engine.attachments import fetch_attachments, remove_attachments
from deskbridge.engine.config import BridgeConfig
from deskbridge.engine.delivery import OutputDelivery
from deskbridge.engine.errors import BridgeError, PlatformError
from deskbridge.engine.locks import KeyedLock
from deskbridge.engine.models import Attachment, InboundFile, ThreadKey, ThreadSession
from deskbridge.engine.platform import ChatPlatform
from deskbridge.engine.prompt_manager import (
    ChoiceValue,
    PromptManager,
    SubmitValue,
    decode_value,
    highlight_blocks,
)
from deskbridge.engine.providers.base import Provider
from deskbridge.engine.session_registry import SessionRegistry
from deskbridge.engine.stream_processor import StreamEventProcessor
from deskbridge.shared.services.channels import ChannelConfig, ChannelConfigStore
from deskbridge.shared.services.classifier import classify_request, is_request_allowed
from deskbridge.shared.services.desks import DeskRegistry, DeskResolution
from deskbridge.shared.services.manifests import ManifestStore
from deskbridge.shared.services.prompt_builder import (
    build_guardrailed_prompt,
    build_rejection_message,
    build_system_prompt,
    validate_message,
)

logger = logging.getLogger(__name__)

# Reactions on the inbound message
REACTION_WORKING = "hourglass_flowing_sand"
REACTION_DONE = "white_check_mark"
REACTION_FAILED = "x"
REACTION_WAITING = "speech_balloon"


def compose_prompt(
    text: str,
    attachments: list[Attachment] | None = None,
    skipped: list[str] | None = None,
) -> str:
    """Prefix the message with one ``[Attached: path]`` line per file.

    Files that could not be downloaded are listed on one
    ``[Skipped attachments: ...]`` line after the attached ones.
    """
    lines = [f"[Attached: {a.path}]" for a in attachments or []]
    if skipped:
        lines.append(f"[Skipped attachments: {'; '.join(skipped)}]")
    if not lines:
        return text
    prefix = "\n".join(lines)
    return f"{prefix}\n\n{text}" if text else prefix


class ConversationOrchestrator:
    """Routes thread input to Claude and Claude's output back to the thread."""

    def __init__(
        self,
        platform: ChatPlatform,
        provider: Provider,
        registry: SessionRegistry,
        *,
        prompts: PromptManager | None = None,
        desks: DeskRegistry | None = None,
        manifests: ManifestStore | None = None,
        channels: ChannelConfigStore | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        self._platform = platform
        self._provider = provider
        self._registry = registry
        self._prompts = prompts if prompts is not None else PromptManager()
        self._desks = desks
        self._manifests = manifests
        self._channels = channels
        self._config = config if config is not None else BridgeConfig()
        self._invocations = KeyedLock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def prompts(self) -> PromptManager:
        return self._prompts

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ── input ──

    async def submit(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        text: str,
        attachments: list[Attachment] | None = None,
        *,
        files: list[InboundFile] | None = None,
        message_id: str | None = None,
        apply_policy: bool = True,
    ) -> None:
        """Run one invocation for the thread. Never raises for invocation errors.

        ``files`` are downloaded into the session's attachment directory
        first. ``apply_policy`` runs the channel's team-mode checks; answers
        to Claude's own questions skip them.
        """
        if self._invocations.is_locked(thread_key):
            logger.info("Thread %s busy; queueing message", thread_key)
        async with self._invocations.hold(thread_key):
            # Any new input abandons an unanswered prompt.
            await self._prompts.discard(thread_key)
            await self._invoke(
                thread_key, owner_id, text, attachments, files, message_id, apply_policy,
            )

    def dispatch(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        text: str,
        attachments: list[Attachment] | None = None,
        *,
        files: list[InboundFile] | None = None,
        message_id: str | None = None,
    ) -> asyncio.Task:
        """Schedule ``submit`` in the background and track the task."""
        return self.track(
            self.submit(
                thread_key, owner_id, text, attachments, files=files, message_id=message_id,
            )
        )

    def track(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    # ── invocation ──

    async def _invoke(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        text: str,
        attachments: list[Attachment] | None,
        files: list[InboundFile] | None,
        message_id: str | None,
        apply_policy: bool,
    ) -> None:
        team_channel: ChannelConfig | None = None
        category = ""
        if apply_policy:
            allowed, team_channel, category = await self._check_channel_policy(thread_key, text)
            if not allowed:
                return

        session, is_new = await self._registry.resolve(thread_key, owner_id)
        logger.info(
            "Thread %s session %s (%s) owner=%s",
            thread_key, session.session_id, "new" if is_new else "existing", owner_id,
        )

        if is_new:
            desk, text = self._bind_desk(session, text)
        else:
            desk = self._desk_context(session)
        if team_channel is not None:
            text = build_guardrailed_prompt(team_channel, category, owner_id, text)
        system_prompt = build_system_prompt(
            session.session_id,
            desk=desk,
            api_enabled=self._config.api_enabled,
            api_host=self._config.api_host,
            api_port=self._config.api_port,
            api_secret=self._config.api_secret,
        )

        delivery = OutputDelivery(
            self._platform,
            thread_key,
            min_interval=self._config.edit_interval_seconds,
            max_length=self._config.max_message_length,
        )
        try:
            await delivery.start()
        except PlatformError as e:
            logger.error("Could not start reply in %s: %s", thread_key, e)
            return
        await self._add_reaction(thread_key, message_id, REACTION_WORKING)

        skipped: list[str] = []
        if files:
            downloaded, skipped = await fetch_attachments(
                self._platform, files, self._attachments_dir(session),
            )
            attachments = [*(attachments or []), *downloaded]
        prompt = compose_prompt(text, attachments, skipped)

        processor = StreamEventProcessor(
            thread_key, delivery, self._prompts, session_id=session.session_id,
        )
        outcome = REACTION_FAILED
        try:
            await self._run_provider(processor, prompt, session, is_new, system_prompt)
        except asyncio.TimeoutError:
            timeout = self._config.invocation_timeout_seconds
            logger.warning("Invocation in %s timed out after %.0fs", thread_key, timeout)
            await delivery.fail(f"Claude did not finish within {timeout:.0f}s")
        except BridgeError as e:
            logger.error("Invocation in %s failed: %s", thread_key, e)
            await delivery.fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error in thread %s", thread_key)
            await delivery.fail(str(e) or type(e).__name__)
        else:
            if processor.failed:
                await delivery.fail(processor.error_text or "Claude reported an error")
            elif processor.awaiting_input:
                await delivery.await_input(processor.final_text)
                outcome = REACTION_WAITING
            else:
                await delivery.finalize(processor.final_text)
                outcome = REACTION_DONE
        finally:
            await delivery.close()
            self._registry.touch(thread_key)

        await self._remove_reaction(thread_key, message_id, REACTION_WORKING)
        await self._add_reaction(thread_key, message_id, outcome)

    async def _run_provider(
        self,
        processor: StreamEventProcessor,
        prompt: str,
        session: ThreadSession,
        is_new: bool,
        system_prompt: str,
    ) -> None:
        events = self._provider.run(
            prompt,
            session_id=session.session_id,
            resume=not is_new,
            system_prompt=system_prompt,
            cwd=self._config.default_cwd,
        )
        async with aclosing(events):
            timeout = self._config.invocation_timeout_seconds
            if timeout and timeout > 0:
                await asyncio.wait_for(processor.consume(events), timeout)
            else:
                await processor.consume(events)

    # ── team mode ──

    async def _check_channel_policy(
        self, thread_key: ThreadKey, text: str,
    ) -> tuple[bool, ChannelConfig | None, str]:
        """Apply the channel's team-mode checks to an inbound request.

        Returns ``(allowed, channel, category)``; ``channel`` is None when
        the channel is not in team mode. Rejected requests get a reply.
        """
        if self._channels is None:
            return True, None, ""
        channel = self._channels.get(thread_key.conversation_id)
        if not channel.enabled:
            return True, None, ""

        classification = classify_request(text)
        allowed, reason = is_request_allowed(classification, channel.capabilities)
        if allowed:
            blocked = validate_message(text, channel.blocked_patterns)
            if blocked:
                allowed, reason = False, f"Request contains blocked patterns: {', '.join(blocked)}"
        if not allowed:
            logger.info(
                "Rejected %s request in %s (%s): %s",
                classification.category, thread_key, channel.channel_name, reason,
            )
            await self.post(thread_key, build_rejection_message(reason or "Request not allowed"))
            return False, channel, classification.category

        logger.debug(
            "Team-mode request in %s classified as %s (%.2f)",
            thread_key, classification.category, classification.confidence,
        )
        return True, channel, classification.category

    def _attachments_dir(self, session: ThreadSession) -> Path:
        return self._config.resolved_attachments_dir / session.session_id

    # ── desks ──

    def _bind_desk(self, session: ThreadSession, text: str) -> tuple[DeskResolution | None, str]:
        """Resolve and record the desk for a brand-new session."""
        if self._desks is None:
            return None, text
        resolution, cleaned = self._desks.resolve_for_message(
            text, channel=session.thread_key.conversation_id,
        )
        if resolution is None:
            return None, text

        slug = resolution.desk.slug
        self._registry.set_desk(session.thread_key, slug)
        logger.info("Thread %s bound to desk %s", session.thread_key, slug)
        if self._manifests is not None:
            try:
                self._manifests.create(session.session_id, slug, resolution.boundaries)
            except (OSError, ValueError):
                logger.exception("Failed to write manifest for session %s", session.session_id)
        return resolution, cleaned or text

    def _desk_context(self, session: ThreadSession) -> DeskResolution | None:
        """Rebuild the bound desk's context; boundaries come from the manifest."""
        if not session.desk_slug or self._desks is None:
            return None
        resolution = self._desks.context_for(session.desk_slug)
        if resolution is None or self._manifests is None:
            return resolution
        manifest = self._manifests.load(session.session_id)
        if manifest is not None:
            resolution.boundaries = manifest.boundaries
        return resolution

    # ── buttons ──

    async def handle_button(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        value: str,
        *,
        message_id: str | None = None,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        """Route a button click: prompt choice, prompt submit, or plain value."""
        decoded = decode_value(value)
        if isinstance(decoded, ChoiceValue):
            await self.select_choice(
                thread_key, owner_id, message_id,
                decoded.question_index, decoded.label, decoded.question_count,
                blocks=blocks,
            )
        elif isinstance(decoded, SubmitValue):
            await self.submit_answers(thread_key, owner_id, message_id=message_id)
        else:
            # Buttons sent through the bridge API carry their reply as the value.
            selected_id = await self.post(thread_key, f":white_check_mark: Selected: *{value}*")
            await self.submit(
                thread_key, owner_id, value, message_id=selected_id, apply_policy=False,
            )

    async def select_choice(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        message_id: str | None,
        question_index: int,
        label: str,
        question_count: int,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        selection = await self._prompts.select(
            thread_key, question_index, label, question_count, message_id=message_id,
        )
        if selection.ignored:
            return

        if message_id is not None:
            if selection.rendered is not None:
                await self._update_blocks(
                    thread_key, message_id, selection.rendered.text, selection.rendered.blocks,
                )
            elif blocks:
                await self._update_blocks(
                    thread_key, message_id, "", highlight_blocks(blocks, question_index, label),
                )

        if selection.complete:
            selected_id = await self.post(thread_key, f":white_check_mark: Selected: *{label}*")
            await self.submit(
                thread_key, owner_id, selection.answers,
                message_id=selected_id, apply_policy=False,
            )

    async def submit_answers(
        self,
        thread_key: ThreadKey,
        owner_id: str,
        *,
        message_id: str | None = None,
    ) -> None:
        answers = await self._prompts.submit(thread_key, message_id)
        if answers is None:
            return
        submitted_id = await self.post(
            thread_key, f":white_check_mark: *Answers submitted:*\n{answers}",
        )
        await self.submit(
            thread_key, owner_id, answers, message_id=submitted_id, apply_policy=False,
        )

    # ── sweeping ──

    async def sweep_once(self) -> int:
        """Evict idle sessions with their prompts and manifests."""
        max_idle = timedelta(hours=self._config.session_max_idle_hours)
        evicted = self._registry.sweep(max_idle)
        for session in evicted:
            self._prompts.forget(session.thread_key)
            remove_attachments(self._attachments_dir(session))
            if self._manifests is not None:
                self._manifests.delete(session.session_id)
        if evicted:
            logger.info("Cleaned up %d old sessions", len(evicted))
        return len(evicted)

    async def run_sweeper(self, interval: float | None = None) -> None:
        """Sweep periodically until cancelled."""
        interval = interval or self._config.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Session sweep failed")

    async def close(self) -> None:
        """Cancel in-flight background invocations."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── platform helpers ──

    async def post(self, thread_key: ThreadKey, text: str) -> str | None:
        try:
            return await self._platform.post_message(thread_key, text)
        except PlatformError as e:
            logger.error("Post failed in %s: %s", thread_key, e)
            return None

    async def _update_blocks(
        self,
        thread_key: ThreadKey,
        message_id: str,
        text: str,
        blocks: list[dict[str, Any]],
    ) -> None:
        try:
            await self._platform.update_blocks(thread_key, message_id, text, blocks)
        except PlatformError as e:
            logger.error("Failed to update button highlight in %s: %s", thread_key, e)

    async def _add_reaction(self, thread_key: ThreadKey, message_id: str | None, marker: str) -> None:
        if message_id is None:
            return
        try:
            await self._platform.add_reaction(thread_key, message_id, marker)
        except PlatformError as e:
            logger.warning("Reaction %s failed in %s: %s", marker, thread_key, e)

    async def _remove_reaction(self, thread_key: ThreadKey, message_id: str | None, marker: str) -> None:
        if message_id is None:
            return
        try:
            await self._platform.remove_reaction(thread_key, message_id, marker)
        except PlatformError as e:
            logger.warning("Removing reaction %s failed in %s: %s", marker, thread_key, e)
