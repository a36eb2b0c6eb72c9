"""Tests for deskbridge.shared.formatters.mrkdwn - markdown to Slack mrkdwn."""

import pytest

from deskbridge.shared.formatters.mrkdwn import (
    TRUNCATION_MARKER,
    format_for_slack,
    markdown_to_mrkdwn,
    strip_system_reminders,
    truncate,
)


class TestMarkdownToMrkdwn:
    @pytest.mark.parametrize("source, expected", [
        ("**bold**", "*bold*"),
        ("__bold__", "*bold*"),
        ("*italic*", "_italic_"),
        ("~~gone~~", "~gone~"),
        ("[docs](https://example.com)", "<https://example.com|docs>"),
        ("## Heading", "*Heading*"),
        ("plain text", "plain text"),
    ])
    def test_conversions(self, source, expected):
        assert markdown_to_mrkdwn(source) == expected

    def test_bold_and_italic_together(self):
        assert markdown_to_mrkdwn("**a** and *b*") == "*a* and _b_"

    def test_code_is_left_alone(self):
        text = "Run `**not bold**` then\n```\n# not a header\n**x**\n```"
        assert markdown_to_mrkdwn(text) == text

    def test_header_with_inline_code(self):
        assert markdown_to_mrkdwn("# Using `x`") == "*Using `x`*"


def test_strip_system_reminders():
    text = "Answer<system-reminder>internal\nnote</system-reminder>"
    assert strip_system_reminders(text) == "Answer"


def test_format_for_slack_combines_both():
    assert format_for_slack("**Done**<system-reminder>x</system-reminder>") == "*Done*"


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("abc", 10) == "abc"

    def test_long_text_fits_with_marker(self):
        result = truncate("x" * 100, 40)
        assert len(result) == 40
        assert result.endswith(TRUNCATION_MARKER)
