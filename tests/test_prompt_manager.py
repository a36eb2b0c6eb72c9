"""Tests for deskbridge.engine.prompt_manager - choice prompts and button values."""

from __future__ import annotations

import asyncio
import json

import pytest

from deskbridge.engine.prompt_manager import (
    NO_SELECTIONS,
    SELECTED_PREFIX,
    SUBMIT_VALUE,
    ChoiceValue,
    PromptManager,
    PromptOption,
    PromptQuestion,
    SubmitValue,
    decode_value,
    encode_value,
    format_answers,
    highlight_blocks,
    is_choice_prompt_tool,
    parse_questions,
    prompt_fingerprint,
    render,
)


def _two_questions() -> list[PromptQuestion]:
    return [
        PromptQuestion(text="Which DB?", options=[PromptOption("Postgres"), PromptOption("SQLite")]),
        PromptQuestion(text="Deploy?", options=[PromptOption("Yes"), PromptOption("No")]),
    ]


def _buttons(blocks: list[dict]) -> list[dict]:
    return [
        element
        for block in blocks if block["type"] == "actions"
        for element in block["elements"]
    ]


# ── tool input ──


class TestToolInput:
    def test_choice_prompt_tool_names(self):
        assert is_choice_prompt_tool("AskUserQuestion")
        assert is_choice_prompt_tool("mcp__bridge__ask_user")
        assert not is_choice_prompt_tool("Read")

    def test_fingerprint_ignores_key_order(self):
        a = {"questions": [{"question": "Q", "options": ["a"]}], "x": 1}
        b = {"x": 1, "questions": [{"options": ["a"], "question": "Q"}]}
        assert prompt_fingerprint(a) == prompt_fingerprint(b)
        assert prompt_fingerprint(a) != prompt_fingerprint({"x": 2})

    def test_parse_questions_list(self):
        questions = parse_questions({"questions": [
            {
                "question": "Which DB?",
                "header": "Database",
                "options": [
                    {"label": "Postgres", "description": "Server"},
                    {"value": "SQLite"},
                    {"label": ""},
                ],
            },
            {"question": "No options", "options": []},
        ]})
        assert len(questions) == 1
        assert questions[0].header == "Database"
        assert [o.label for o in questions[0].options] == ["Postgres", "SQLite"]
        assert questions[0].options[0].description == "Server"

    def test_parse_single_question(self):
        questions = parse_questions({"question": "Continue?", "options": ["Yes", "No"]})
        assert [q.text for q in questions] == ["Continue?"]
        assert [o.label for o in questions[0].options] == ["Yes", "No"]

    def test_parse_garbage(self):
        assert parse_questions({"questions": "nope"}) == []
        assert parse_questions({}) == []


# ── button values ──


class TestButtonValues:
    def test_encode_is_compact_json(self):
        value = encode_value(1, 2, "SQLite")
        assert value == '{"q":1,"n":2,"a":"SQLite"}'
        assert decode_value(value) == ChoiceValue(1, 2, "SQLite")

    def test_submit_value(self):
        assert decode_value(SUBMIT_VALUE) == SubmitValue()

    def test_unknown_values(self):
        assert decode_value("plain answer") is None
        assert decode_value("{broken") is None
        assert decode_value(json.dumps({"q": 3, "n": 2, "a": "x"})) is None
        assert decode_value(json.dumps({"q": "0", "n": 1, "a": "x"})) is None
        assert decode_value("") is None


# ── rendering ──


class TestRender:
    def test_single_question_has_no_submit(self):
        rendered = render([PromptQuestion(text="Continue?", options=[PromptOption("Yes")])])
        assert rendered.text == "Continue?"
        assert [b["block_id"] for b in rendered.blocks] == ["question_0", "choices_0"]

    def test_multi_question_layout(self):
        rendered = render(_two_questions())
        assert rendered.text == "Claude has 2 questions for you"
        assert [b["block_id"] for b in rendered.blocks] == [
            "question_0", "choices_0", "question_1", "choices_1", "choices_submit",
        ]
        buttons = _buttons(rendered.blocks)
        assert buttons[0]["action_id"] == "choice_0_0"
        assert buttons[-1]["value"] == SUBMIT_VALUE
        assert "*Question 2*" in rendered.blocks[2]["text"]["text"]

    def test_selected_option_highlighted(self):
        rendered = render(_two_questions(), {0: "SQLite"})
        first_row = rendered.blocks[1]["elements"]
        assert first_row[0]["text"]["text"] == "Postgres"
        assert "style" not in first_row[0]
        assert first_row[1]["text"]["text"] == f"{SELECTED_PREFIX}SQLite"
        assert first_row[1]["style"] == "primary"

    def test_long_labels_are_clipped(self):
        label = "x" * 100
        rendered = render([PromptQuestion(text="Q", options=[PromptOption(label)])])
        button = _buttons(rendered.blocks)[0]
        assert len(button["text"]["text"]) == 75
        assert json.loads(button["value"])["a"] == label

    def test_highlight_blocks_moves_selection(self):
        blocks = render(_two_questions(), {0: "Postgres"}).blocks
        updated = highlight_blocks(blocks, 0, "SQLite")

        first_row = updated[1]["elements"]
        assert first_row[0]["text"]["text"] == "Postgres"
        assert "style" not in first_row[0]
        assert first_row[1]["text"]["text"] == f"{SELECTED_PREFIX}SQLite"
        # Original untouched, other question untouched.
        assert blocks[1]["elements"][0]["style"] == "primary"
        assert updated[3] == blocks[3]

    def test_format_answers(self):
        assert format_answers({1: "No", 0: "SQLite"}) == "Q1: SQLite\nQ2: No"
        assert format_answers({}) == NO_SELECTIONS


# ── PromptManager ──


@pytest.mark.asyncio
async def test_single_question_completes_on_click(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, [PromptQuestion(text="Continue?", options=[PromptOption("Yes")])])

    selection = await prompts.select(thread_key, 0, "Yes", 1)

    assert selection.complete
    assert selection.answers == "Q1: Yes"
    assert not prompts.has_pending(thread_key)


@pytest.mark.asyncio
async def test_multi_question_collects_until_submit(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())

    first = await prompts.select(thread_key, 0, "Postgres", 2)
    assert not first.complete
    assert first.rendered is not None
    await prompts.select(thread_key, 0, "SQLite", 2)  # overwrite
    await prompts.select(thread_key, 1, "Yes", 2)

    assert await prompts.submit(thread_key) == "Q1: SQLite\nQ2: Yes"
    assert not prompts.has_pending(thread_key)
    assert await prompts.submit(thread_key) is None


@pytest.mark.asyncio
async def test_concurrent_selections_are_all_recorded(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    await asyncio.gather(
        prompts.select(thread_key, 0, "Postgres", 2),
        prompts.select(thread_key, 1, "No", 2),
    )
    assert prompts.get(thread_key).selections == {0: "Postgres", 1: "No"}


@pytest.mark.asyncio
async def test_selection_without_state_is_rebuilt(thread_key) -> None:
    prompts = PromptManager()
    selection = await prompts.select(thread_key, 1, "No", 2)
    assert not selection.complete
    assert selection.rendered is None
    assert prompts.get(thread_key).selections == {1: "No"}


@pytest.mark.asyncio
async def test_out_of_range_selection_is_ignored(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    await prompts.select(thread_key, 5, "X", 2)
    assert prompts.get(thread_key).selections == {}


@pytest.mark.asyncio
async def test_open_replaces_stale_prompt(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    await prompts.select(thread_key, 0, "Postgres", 2)
    await prompts.open(thread_key, [PromptQuestion(text="New?", options=[PromptOption("A")])])
    pending = prompts.get(thread_key)
    assert pending.question_count == 1
    assert pending.selections == {}


@pytest.mark.asyncio
async def test_discard(thread_key) -> None:
    prompts = PromptManager()
    assert await prompts.discard(thread_key) is False
    await prompts.open(thread_key, _two_questions())
    assert await prompts.discard(thread_key) is True
    assert not prompts.has_pending(thread_key)


@pytest.mark.asyncio
async def test_answered_prompt_stays_closed(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, [PromptQuestion(text="Continue?", options=[PromptOption("A"), PromptOption("B")])])
    prompts.attach(thread_key, "p1")

    first = await prompts.select(thread_key, 0, "A", 1, message_id="p1")
    second = await prompts.select(thread_key, 0, "B", 1, message_id="p1")

    assert first.answers == "Q1: A"
    assert second.ignored
    assert not second.complete
    assert not prompts.has_pending(thread_key)
    assert prompts.is_closed(thread_key, "p1")


@pytest.mark.asyncio
async def test_submit_only_matches_the_open_prompt(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    prompts.attach(thread_key, "p2")
    await prompts.select(thread_key, 0, "Postgres", 2, message_id="p2")

    assert await prompts.submit(thread_key, "p-old") is None
    assert prompts.has_pending(thread_key)
    assert await prompts.submit(thread_key, "p2") == "Q1: Postgres"
    assert await prompts.submit(thread_key, "p2") is None


@pytest.mark.asyncio
async def test_click_on_superseded_prompt_is_ignored(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    prompts.attach(thread_key, "p1")
    await prompts.open(thread_key, _two_questions())
    prompts.attach(thread_key, "p2")

    assert (await prompts.select(thread_key, 0, "SQLite", 2, message_id="p1")).ignored
    assert (await prompts.select(thread_key, 0, "SQLite", 2, message_id="p-unknown")).ignored
    assert prompts.get(thread_key).selections == {}


@pytest.mark.asyncio
async def test_abandoned_prompt_buttons_do_nothing(thread_key) -> None:
    prompts = PromptManager()
    await prompts.open(thread_key, _two_questions())
    prompts.attach(thread_key, "p1")
    await prompts.discard(thread_key)

    assert (await prompts.select(thread_key, 0, "SQLite", 2, message_id="p1")).ignored
    assert not prompts.has_pending(thread_key)


@pytest.mark.asyncio
async def test_rebuilt_prompt_closes_after_completion(thread_key) -> None:
    prompts = PromptManager()
    first = await prompts.select(thread_key, 0, "Yes", 1, message_id="p9")
    again = await prompts.select(thread_key, 0, "No", 1, message_id="p9")

    assert first.answers == "Q1: Yes"
    assert again.ignored


@pytest.mark.asyncio
async def test_forget_clears_closed_prompts(thread_key) -> None:
    prompts = PromptManager()
    await prompts.select(thread_key, 0, "Yes", 1, message_id="p1")
    prompts.forget(thread_key)
    assert not prompts.is_closed(thread_key, "p1")
