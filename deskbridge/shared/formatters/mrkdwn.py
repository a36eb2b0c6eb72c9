"""GitHub-flavored markdown → Slack mrkdwn.

Conversions:
    **bold** / __bold__   → *bold*
    *italic*              → _italic_
    ~~strike~~            → ~strike~
    [text](url)           → <url|text>
    # Header              → *Header*

Fenced code blocks and inline code pass through untouched.
"""
from __future__ import annotations

import re

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_BOLD_STAR_RE = re.compile(r"\*\*([^*]+)\*\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__([^_]+)__")
_ITALIC_RE = re.compile(r"(?<!\*)\*([^*\n]+)\*(?!\*)")
_STRIKE_RE = re.compile(r"~~([^~]+)~~")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_HEADER_RE = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)
_SYSTEM_REMINDER_RE = re.compile(r"<system-reminder>[\s\S]*?</system-reminder>")
_PLACEHOLDER_RE = re.compile("\x00(\\d+)\x00")

TRUNCATION_MARKER = "\n\n... _(truncated)_"


def markdown_to_mrkdwn(text: str) -> str:
    """Convert markdown to Slack mrkdwn, leaving code spans verbatim."""
    protected: list[str] = []

    def _protect(value: str) -> str:
        protected.append(value)
        return f"\x00{len(protected) - 1}\x00"

    text = _CODE_BLOCK_RE.sub(lambda m: _protect(m.group(0)), text)
    text = _INLINE_CODE_RE.sub(lambda m: _protect(m.group(0)), text)

    # Bold goes through a placeholder so the italic pass can't rewrite it.
    text = _BOLD_STAR_RE.sub(lambda m: _protect(f"*{m.group(1)}*"), text)
    text = _BOLD_UNDERSCORE_RE.sub(lambda m: _protect(f"*{m.group(1)}*"), text)
    text = _ITALIC_RE.sub(r"_\1_", text)
    text = _STRIKE_RE.sub(r"~\1~", text)
    text = _LINK_RE.sub(r"<\2|\1>", text)
    text = _HEADER_RE.sub(lambda m: _protect(f"*{m.group(1)}*"), text)

    # Placeholders can nest (a header containing inline code).
    while _PLACEHOLDER_RE.search(text):
        text = _PLACEHOLDER_RE.sub(lambda m: protected[int(m.group(1))], text)
    return text


def strip_system_reminders(text: str) -> str:
    return _SYSTEM_REMINDER_RE.sub("", text).strip()


def truncate(text: str, max_length: int, marker: str = TRUNCATION_MARKER) -> str:
    """Hard-cut text so that text + marker fits in max_length."""
    if len(text) <= max_length:
        return text
    keep = max(0, max_length - len(marker))
    return text[:keep] + marker


def format_for_slack(text: str) -> str:
    return markdown_to_mrkdwn(strip_system_reminders(text))
