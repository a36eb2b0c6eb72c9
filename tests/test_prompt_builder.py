"""Tests for deskbridge.shared.services.prompt_builder."""

from __future__ import annotations

from deskbridge.engine.models import DeskBoundaries
from deskbridge.shared.services.desks import DeskDefinition, DeskResolution
from deskbridge.shared.services.channels import ChannelConfig, TaskCapability
from deskbridge.shared.services.prompt_builder import (
    build_guardrailed_prompt,
    build_rejection_message,
    build_system_prompt,
    desk_context,
    validate_message,
)


def _resolution(**kwargs) -> DeskResolution:
    desk = DeskDefinition(
        name="Backend Desk",
        slug="backend",
        description="Owns the API services.",
        mentions=["@backend"],
        system_prompt_suffix="Prefer small changes.",
    )
    return DeskResolution(
        desk=desk,
        matched_mention="@backend",
        boundaries=kwargs.get("boundaries", DeskBoundaries(writable=["/src/api/**"])),
        knowledge_text=kwargs.get("knowledge_text", ""),
    )


def test_prompt_includes_session_and_api_calls() -> None:
    prompt = build_system_prompt("sess-42", api_port=4000, api_secret="s3cret")

    assert "SLACK RESPONSE FORMAT" in prompt
    assert "Your session ID is sess-42" in prompt
    assert "http://127.0.0.1:4000/send-file" in prompt
    assert "http://127.0.0.1:4000/send-message" in prompt
    assert '"sessionId": "sess-42"' in prompt
    assert 'Authorization: Bearer s3cret' in prompt


def test_prompt_without_secret_has_no_auth_header() -> None:
    prompt = build_system_prompt("sess-42", api_secret="")
    assert "Authorization" not in prompt


def test_prompt_without_api_keeps_attachment_guidance() -> None:
    prompt = build_system_prompt("sess-42", api_enabled=False)
    assert "BRIDGE API" not in prompt
    assert "[Attached: /path/to/file]" in prompt


def test_desk_context_lists_boundaries_and_knowledge() -> None:
    context = desk_context(_resolution(knowledge_text="--- notes.md ---\nport 8080"))

    assert context.startswith("--- DESK CONTEXT ---")
    assert 'You are the "Backend Desk" (backend).' in context
    assert "- Writable paths: /src/api/**" in context
    assert "- Blocked paths: none" in context
    assert "Prefer small changes." in context
    assert "--- LOADED KNOWLEDGE ---\n--- notes.md ---\nport 8080" in context
    assert context.endswith("--- END DESK CONTEXT ---")


def test_desk_section_appended_last() -> None:
    prompt = build_system_prompt("sess-1", desk=_resolution())
    assert prompt.rstrip().endswith("--- END DESK CONTEXT ---")


# ── team mode ──


def test_validate_message_matches_patterns_case_insensitively() -> None:
    patterns = ["rm -rf", r"\bpassword\b", "DROP TABLE"]
    assert validate_message("please drop table users", patterns) == ["DROP TABLE"]
    assert validate_message("what is the Password?", patterns) == [r"\bpassword\b"]
    assert validate_message("all good", patterns) == []


def test_validate_message_invalid_regex_matched_literally() -> None:
    assert validate_message("call foo(bar", ["foo(bar"]) == ["foo(bar"]
    assert validate_message("call foo bar", ["foo(bar"]) == []


def test_guardrailed_prompt_sections_in_order() -> None:
    channel = ChannelConfig(
        channel_id="C1",
        channel_name="marketing",
        enabled=True,
        capabilities=[TaskCapability(name="copy", system_prompt_addition="Use the style guide.")],
        system_prompt_prefix="Brand voice: plain.",
        system_prompt_suffix="Sign off as the team.",
        blocked_patterns=["password"],
    )
    prompt = build_guardrailed_prompt(channel, "copy", "U1", "draft an email")

    markers = [
        "## Context",
        "## Core Guardrails",
        "## Channel Instructions\nBrand voice: plain.",
        "## copy Guidelines\nFor copy tasks:",
        "Use the style guide.",
        "## Restrictions",
        "- password",
        "Sign off as the team.",
        "---\n\n## User Request\ndraft an email",
    ]
    positions = [prompt.index(m) for m in markers]
    assert positions == sorted(positions)
    assert "Task Category: copy\nUser: U1" in prompt


def test_guardrailed_prompt_omits_empty_sections() -> None:
    channel = ChannelConfig(channel_id="C1", channel_name="random", enabled=True)
    prompt = build_guardrailed_prompt(channel, "general", "U1", "hi")

    assert "## Channel Instructions" not in prompt
    assert "## general Guidelines\nFor general tasks:" in prompt
    assert "## Restrictions" not in prompt
    assert prompt.endswith("## User Request\nhi")


def test_rejection_message() -> None:
    assert build_rejection_message("Not here.") == ":no_entry: Not here."
