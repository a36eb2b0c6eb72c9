"""Tests for deskbridge.engine.delivery - live-message debounce, splitting, fallbacks."""

from __future__ import annotations

import asyncio
import random

import pytest

from deskbridge.engine.delivery import (
    NO_RESPONSE_TEXT,
    PROCESSING_TEXT,
    WAITING_TEXT,
    OutputDelivery,
    split_message,
)
from deskbridge.engine.prompt_manager import RenderedPrompt
from deskbridge.shared.formatters.mrkdwn import TRUNCATION_MARKER


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ── split_message ──


class TestSplitMessage:
    def test_short_text_single_chunk(self):
        assert split_message("hello", 10) == ["hello"]

    def test_empty_text(self):
        assert split_message("", 10) == []

    def test_prefers_paragraph_break(self):
        text = "first paragraph\n\nsecond paragraph here"
        assert split_message(text, 20) == ["first paragraph", "second paragraph", "here"]

    def test_falls_back_to_line_break(self):
        assert split_message("line one\nline two", 12) == ["line one", "line two"]

    def test_early_break_is_skipped(self):
        words = "word " * 1000
        chunks = split_message("Title\n\n" + words, 3500)
        assert len(chunks[0]) > 1750
        assert chunks[0].startswith("Title\n\nword")
        assert all(len(c) <= 3500 for c in chunks)

    def test_early_paragraph_falls_back_to_line_break(self):
        text = "ab\n\ncdefghij\nklmnop"
        assert split_message(text, 14) == ["ab\n\ncdefghij", "klmnop"]

    def test_hard_cut_without_separators(self):
        assert split_message("a" * 25, 10) == ["a" * 10, "a" * 10, "a" * 5]

    def test_separator_exactly_at_limit(self):
        assert split_message("abcde fghij", 5) == ["abcde", "fghij"]

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            split_message("text", 0)

    def test_chunks_never_exceed_limit(self):
        rng = random.Random(7)
        alphabet = "abc  \n"
        for _ in range(200):
            text = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 300)))
            limit = rng.randint(1, 40)
            chunks = split_message(text, limit)
            assert all(0 < len(c) <= limit for c in chunks)
            # Only separator characters are ever dropped.
            assert "".join(chunks).replace(" ", "").replace("\n", "") == \
                text.replace(" ", "").replace("\n", "")


# ── live updates ──


@pytest.mark.asyncio
async def test_start_posts_placeholder(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    message_id = await delivery.start()
    assert delivery.message_id == message_id
    assert platform.posts == [PROCESSING_TEXT]


@pytest.mark.asyncio
async def test_burst_of_updates_coalesces_into_one_edit(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0.05)
    await delivery.start()

    await delivery.update("a")
    await delivery.update("ab")
    await delivery.update("abc")
    assert platform.edits == []

    await asyncio.sleep(0.2)
    assert platform.edits == ["abc"]
    await delivery.close()


@pytest.mark.asyncio
async def test_update_after_interval_edits_immediately(platform, thread_key) -> None:
    clock = _Clock()
    delivery = OutputDelivery(platform, thread_key, min_interval=0.5, clock=clock)
    await delivery.start()

    clock.now = 1.0
    await delivery.update("first")
    assert platform.edits == ["first"]

    clock.now = 1.1
    await delivery.update("second")  # inside the interval: scheduled
    assert platform.edits == ["first"]

    await delivery.flush("third")  # cancels the trailing flush
    assert platform.edits == ["first", "third"]
    await asyncio.sleep(0)
    assert platform.edits == ["first", "third"]
    await delivery.close()


@pytest.mark.asyncio
async def test_identical_text_is_not_re_edited(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0)
    await delivery.start()
    await delivery.flush("same")
    await delivery.flush("same")
    assert platform.edits == ["same"]


@pytest.mark.asyncio
async def test_blank_text_is_not_sent(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0)
    await delivery.start()
    await delivery.flush("   ")
    assert platform.edits == []


@pytest.mark.asyncio
async def test_long_preview_is_truncated(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0, max_length=50)
    await delivery.start()
    await delivery.flush("x" * 200)
    assert len(platform.edits[0]) == 50
    assert platform.edits[0].endswith(TRUNCATION_MARKER)


# ── terminal states ──


@pytest.mark.asyncio
async def test_finalize_skips_edit_when_preview_already_shown(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0)
    await delivery.start()
    await delivery.flush("Hi there")
    await delivery.finalize("Hi there")
    assert platform.edits == ["Hi there"]
    assert delivery.finished


@pytest.mark.asyncio
async def test_finalize_formats_markdown(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    await delivery.finalize("**done**")
    assert platform.edits == ["*done*"]


@pytest.mark.asyncio
async def test_finalize_empty_reports_no_response(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    await delivery.finalize("")
    assert platform.edits == [NO_RESPONSE_TEXT]


@pytest.mark.asyncio
async def test_finalize_splits_long_answer(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, max_length=20)
    await delivery.start()
    await delivery.finalize("first paragraph\n\nsecond paragraph here")
    assert platform.edits == ["first paragraph"]
    assert platform.posts == [PROCESSING_TEXT, "second paragraph", "here"]


@pytest.mark.asyncio
async def test_finalize_too_long_falls_back_to_truncation(platform, thread_key) -> None:
    platform.max_length = 100
    delivery = OutputDelivery(platform, thread_key, max_length=180)
    await delivery.start()
    await delivery.finalize("y" * 150)

    assert len(platform.edits) == 1
    assert len(platform.edits[0]) <= 90
    assert platform.edits[0].endswith(TRUNCATION_MARKER)


@pytest.mark.asyncio
async def test_finalize_edit_failure_posts_error(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    platform.fail_ops.add("edit")
    await delivery.finalize("answer")
    assert platform.posts[-1] == ":x: Failed to deliver the response"


@pytest.mark.asyncio
async def test_updates_after_finish_are_ignored(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key, min_interval=0)
    await delivery.start()
    await delivery.finalize("final")
    await delivery.update("late")
    await delivery.flush("later")
    assert platform.edits == ["final"]


@pytest.mark.asyncio
async def test_fail_edits_error_marker(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    await delivery.fail("Claude exited with code 1")
    assert platform.edits == [":x: Error: Claude exited with code 1"]


@pytest.mark.asyncio
async def test_fail_posts_when_edit_fails(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    platform.fail_ops.add("edit")
    await delivery.fail("timeout")
    assert platform.posts[-1] == ":x: Error: timeout"


@pytest.mark.asyncio
async def test_await_input_appends_waiting_marker(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    await delivery.await_input("Let me ask.")
    assert platform.edits == [f"Let me ask.\n\n{WAITING_TEXT}"]


# ── discrete messages ──


@pytest.mark.asyncio
async def test_post_notice_failure_returns_none(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    platform.fail_ops.add("post")
    assert await delivery.post_notice(":eyes: Reading `a.py`") is None


@pytest.mark.asyncio
async def test_post_prompt_failure_reports_error(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    await delivery.start()
    platform.fail_ops.add("post_blocks")
    rendered = RenderedPrompt(text="Pick", blocks=[])
    assert await delivery.post_prompt(rendered) is None
    assert platform.posts[-1] == ":x: Could not show the question: boom"


@pytest.mark.asyncio
async def test_react_targets_live_message(platform, thread_key) -> None:
    delivery = OutputDelivery(platform, thread_key)
    message_id = await delivery.start()
    await delivery.react("eyes")
    assert platform.reactions[message_id] == {"eyes"}
