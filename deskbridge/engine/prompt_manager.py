"""Interactive choice prompts rendered as chat buttons.

When Claude calls a choice-prompt tool (``AskUserQuestion`` and
friends), the question set is rendered as one button row per question.
Clicks are recorded per thread until the user submits, then the answers
are folded into a single text message and fed back into the
conversation.

Button values are compact JSON so a click can be decoded even after a
restart has wiped the in-memory state::

    {"q": 0, "n": 2, "a": "Option label"}   # question index, count, answer
    "__deskbridge_submit__"                 # the submit button

State machine per thread::

    Idle → Rendered → (Selecting)* → Submitted → Idle

A pending prompt is abandoned when any other message arrives in the
thread; nothing expires on its own. Answered and abandoned prompt
messages stay closed, so their buttons do nothing.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from deskbridge.engine.locks import KeyedLock
from deskbridge.engine.models import ThreadKey

logger = logging.getLogger(__name__)

SUBMIT_VALUE = "__deskbridge_submit__"
SELECTED_PREFIX = "✅ "
NO_SELECTIONS = "No selections made"

_CHOICE_PROMPT_TOOLS = frozenset({
    "askuserquestion",
    "ask_user",
    "request_user_input",
})

# Slack caps button text at 75 characters.
_MAX_BUTTON_TEXT = 75


@dataclass
class PromptOption:
    label: str
    description: str = ""


@dataclass
class PromptQuestion:
    text: str
    options: list[PromptOption] = field(default_factory=list)
    header: str = ""


@dataclass(frozen=True)
class ChoiceValue:
    """Decoded value of an option button."""
    question_index: int
    question_count: int
    label: str


@dataclass(frozen=True)
class SubmitValue:
    """Decoded value of the submit button."""


DecodedValue = Union[ChoiceValue, SubmitValue]


@dataclass
class RenderedPrompt:
    """Notification fallback text plus Block Kit blocks."""
    text: str
    blocks: list[dict[str, Any]]


@dataclass
class PendingPrompt:
    thread_key: ThreadKey
    questions: list[PromptQuestion]
    question_count: int
    selections: dict[int, str] = field(default_factory=dict)
    message_id: str | None = None


@dataclass
class Selection:
    """Outcome of recording one click.

    ``answers`` is set when the click completed the prompt (single
    question). ``rendered`` is the refreshed prompt when the questions are
    still known; None means the caller should patch the platform's copy
    with :func:`highlight_blocks`. ``ignored`` marks a click on a prompt
    that is no longer open.
    """
    answers: str | None = None
    rendered: RenderedPrompt | None = None
    ignored: bool = False

    @property
    def complete(self) -> bool:
        return self.answers is not None


# ── Tool input handling ──


def is_choice_prompt_tool(name: str) -> bool:
    """True for choice-prompt tools, including MCP-prefixed names."""
    if name.startswith("mcp__") and name.count("__") >= 2:
        name = name.split("__", 2)[2]
    return name.lower() in _CHOICE_PROMPT_TOOLS


def prompt_fingerprint(tool_input: dict[str, Any]) -> str:
    """Stable identity of a choice-prompt invocation's input."""
    canonical = json.dumps(tool_input, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_option(raw: Any) -> PromptOption | None:
    if isinstance(raw, str):
        return PromptOption(label=raw) if raw.strip() else None
    if isinstance(raw, dict):
        label = raw.get("label") or raw.get("value") or raw.get("text")
        if isinstance(label, str) and label.strip():
            description = raw.get("description")
            return PromptOption(
                label=label,
                description=description if isinstance(description, str) else "",
            )
    return None


def _parse_question(raw: Any) -> PromptQuestion | None:
    if not isinstance(raw, dict):
        return None
    text = raw.get("question") or raw.get("prompt") or ""
    raw_options = raw.get("options")
    options = [
        opt for opt in (_parse_option(o) for o in raw_options or [])
        if opt is not None
    ] if isinstance(raw_options, list) else []
    if not options:
        return None
    header = raw.get("header")
    return PromptQuestion(
        text=str(text),
        options=options,
        header=header if isinstance(header, str) else "",
    )


def parse_questions(tool_input: dict[str, Any]) -> list[PromptQuestion]:
    """Extract the question set from a choice-prompt tool input.

    Accepts ``{"questions": [...]}`` as well as a bare single question
    ``{"question": ..., "options": [...]}``. Questions without options
    cannot be answered with buttons and are dropped.
    """
    if not isinstance(tool_input, dict):
        return []
    raw_questions = tool_input.get("questions")
    if isinstance(raw_questions, list):
        candidates = raw_questions
    else:
        candidates = [tool_input]
    questions = [q for q in (_parse_question(c) for c in candidates) if q is not None]
    if not questions:
        logger.warning("Choice prompt input has no answerable questions: %.200s", tool_input)
    return questions


# ── Button values ──


def encode_value(question_index: int, question_count: int, label: str) -> str:
    return json.dumps(
        {"q": question_index, "n": question_count, "a": label},
        separators=(",", ":"),
        ensure_ascii=False,
    )


def decode_value(value: str) -> DecodedValue | None:
    """Decode a button value; None for values this module did not produce."""
    if value == SUBMIT_VALUE:
        return SubmitValue()
    if not value or not value.startswith("{"):
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    index, count, label = data.get("q"), data.get("n"), data.get("a")
    if (
        not isinstance(index, int) or not isinstance(count, int)
        or not isinstance(label, str) or not 0 <= index < count
    ):
        return None
    return ChoiceValue(question_index=index, question_count=count, label=label)


# ── Rendering ──


def _button_text(label: str, selected: bool) -> str:
    text = f"{SELECTED_PREFIX}{label}" if selected else label
    if len(text) > _MAX_BUTTON_TEXT:
        text = text[: _MAX_BUTTON_TEXT - 3] + "..."
    return text


def _button(
    question_index: int,
    question_count: int,
    option_index: int,
    label: str,
    selected: bool,
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": "button",
        "action_id": f"choice_{question_index}_{option_index}",
        "text": {"type": "plain_text", "text": _button_text(label, selected), "emoji": True},
        "value": encode_value(question_index, question_count, label),
    }
    if selected:
        button["style"] = "primary"
    return button


def _question_text(question: PromptQuestion, index: int, count: int) -> str:
    lines = []
    title = question.header or (f"Question {index + 1}" if count > 1 else "")
    if title:
        lines.append(f"*{title}*")
    if question.text:
        lines.append(question.text)
    for option in question.options:
        if option.description:
            lines.append(f"• *{option.label}*: {option.description}")
    return "\n".join(lines) or "Choose an option:"


def render(
    questions: list[PromptQuestion],
    selections: dict[int, str] | None = None,
) -> RenderedPrompt:
    """Render questions as section + actions blocks, one pair per question."""
    selections = selections or {}
    count = len(questions)
    blocks: list[dict[str, Any]] = []
    for qi, question in enumerate(questions):
        blocks.append({
            "type": "section",
            "block_id": f"question_{qi}",
            "text": {"type": "mrkdwn", "text": _question_text(question, qi, count)},
        })
        blocks.append({
            "type": "actions",
            "block_id": f"choices_{qi}",
            "elements": [
                _button(qi, count, oi, option.label, selections.get(qi) == option.label)
                for oi, option in enumerate(question.options)
            ],
        })
    if count > 1:
        blocks.append({
            "type": "actions",
            "block_id": "choices_submit",
            "elements": [{
                "type": "button",
                "action_id": "choice_submit",
                "text": {"type": "plain_text", "text": "Submit answers"},
                "style": "primary",
                "value": SUBMIT_VALUE,
            }],
        })

    fallback = questions[0].text if count == 1 and questions[0].text else (
        f"Claude has {count} questions for you" if count > 1 else "Claude has a question for you"
    )
    return RenderedPrompt(text=fallback, blocks=blocks)


def highlight_blocks(
    blocks: list[dict[str, Any]],
    question_index: int,
    label: str,
) -> list[dict[str, Any]]:
    """Mark ``label`` as chosen for one question in an existing block list.

    Used when the prompt's questions are no longer in memory: the
    platform's copy of the message is patched in place of a re-render.
    """
    updated = copy.deepcopy(blocks)
    for block in updated:
        if block.get("type") != "actions":
            continue
        for element in block.get("elements") or []:
            decoded = decode_value(element.get("value") or "")
            if not isinstance(decoded, ChoiceValue) or decoded.question_index != question_index:
                continue
            selected = decoded.label == label
            text = element.setdefault("text", {"type": "plain_text"})
            text["text"] = _button_text(decoded.label, selected)
            if selected:
                element["style"] = "primary"
            else:
                element.pop("style", None)
    return updated


def format_answers(selections: dict[int, str]) -> str:
    """``Q1: X`` lines in question order."""
    if not selections:
        return NO_SELECTIONS
    return "\n".join(f"Q{index + 1}: {selections[index]}" for index in sorted(selections))


# ── Per-thread state ──


class PromptManager:
    """Pending choice prompts keyed by thread.

    Each pending prompt remembers the message it was posted as. Clicks on
    any other prompt message in the thread, or on a prompt that was
    already answered or abandoned, are ignored.
    """

    def __init__(self) -> None:
        self._pending: dict[ThreadKey, PendingPrompt] = {}
        self._closed: dict[ThreadKey, set[str]] = {}
        self._locks = KeyedLock()

    def has_pending(self, thread_key: ThreadKey) -> bool:
        return thread_key in self._pending

    def get(self, thread_key: ThreadKey) -> PendingPrompt | None:
        return self._pending.get(thread_key)

    def is_closed(self, thread_key: ThreadKey, message_id: str) -> bool:
        return message_id in self._closed.get(thread_key, ())

    async def open(
        self,
        thread_key: ThreadKey,
        questions: list[PromptQuestion],
    ) -> RenderedPrompt:
        """Register a new pending prompt, replacing any stale one."""
        async with self._locks.hold(thread_key):
            stale = self._pending.get(thread_key)
            if stale is not None:
                logger.info("Replacing stale pending prompt for thread %s", thread_key)
                self._close(stale)
            self._pending[thread_key] = PendingPrompt(
                thread_key=thread_key,
                questions=list(questions),
                question_count=len(questions),
            )
            return render(questions)

    def attach(self, thread_key: ThreadKey, message_id: str) -> None:
        """Record the message the thread's pending prompt was posted as."""
        pending = self._pending.get(thread_key)
        if pending is not None:
            pending.message_id = message_id

    async def select(
        self,
        thread_key: ThreadKey,
        question_index: int,
        label: str,
        question_count: int,
        message_id: str | None = None,
    ) -> Selection:
        """Record (or overwrite) the answer for one question."""
        async with self._locks.hold(thread_key):
            if message_id is not None and self.is_closed(thread_key, message_id):
                logger.info("Ignoring click on answered prompt %s in thread %s", message_id, thread_key)
                return Selection(ignored=True)

            pending = self._pending.get(thread_key)
            if pending is None:
                # Lost across a restart; rebuild from what the button carries.
                pending = PendingPrompt(
                    thread_key=thread_key,
                    questions=[],
                    question_count=question_count,
                    message_id=message_id,
                )
                self._pending[thread_key] = pending
            elif not self._targets(pending, message_id):
                logger.info(
                    "Ignoring click on superseded prompt %s in thread %s", message_id, thread_key,
                )
                return Selection(ignored=True)

            if not 0 <= question_index < pending.question_count:
                logger.warning(
                    "Ignoring selection for question %d of %d in thread %s",
                    question_index, pending.question_count, thread_key,
                )
                return Selection(rendered=self._render(pending))

            pending.selections[question_index] = label
            logger.debug("Thread %s Q%d -> %r", thread_key, question_index + 1, label)

            if pending.question_count == 1:
                del self._pending[thread_key]
                self._close(pending)
                return Selection(answers=format_answers(pending.selections))
            return Selection(rendered=self._render(pending))

    async def submit(self, thread_key: ThreadKey, message_id: str | None = None) -> str | None:
        """Synthesize the answers and clear the pending prompt.

        Returns None when there is nothing to submit: no prompt is pending,
        or the submit button belongs to another prompt message.
        """
        async with self._locks.hold(thread_key):
            pending = self._pending.get(thread_key)
            if pending is None or not self._targets(pending, message_id):
                logger.info("Submit with no matching pending prompt in thread %s", thread_key)
                return None
            del self._pending[thread_key]
            self._close(pending)
            return format_answers(pending.selections)

    async def discard(self, thread_key: ThreadKey) -> bool:
        """Abandon the thread's pending prompt; True if there was one."""
        async with self._locks.hold(thread_key):
            pending = self._pending.pop(thread_key, None)
            if pending is not None:
                logger.info("Abandoned pending prompt in thread %s", thread_key)
                self._close(pending)
            return pending is not None

    def forget(self, thread_key: ThreadKey) -> None:
        """Drop every trace of the thread, answered prompts included."""
        self._pending.pop(thread_key, None)
        self._closed.pop(thread_key, None)

    def _close(self, pending: PendingPrompt) -> None:
        if pending.message_id is not None:
            self._closed.setdefault(pending.thread_key, set()).add(pending.message_id)

    @staticmethod
    def _targets(pending: PendingPrompt, message_id: str | None) -> bool:
        return message_id is None or pending.message_id in (None, message_id)

    @staticmethod
    def _render(pending: PendingPrompt) -> RenderedPrompt | None:
        if not pending.questions:
            return None
        return render(pending.questions, pending.selections)
