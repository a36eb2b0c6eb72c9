"""Tests for deskbridge.shared.services.classifier."""

from __future__ import annotations

import pytest

from deskbridge.shared.services.channels import TaskCapability
from deskbridge.shared.services.classifier import (
    GENERAL,
    Classification,
    category_display_name,
    classify_request,
    is_request_allowed,
)


@pytest.mark.parametrize("text, category", [
    ("Write a catchy headline for the launch", "copy"),
    ("Put together a campaign brief and roadmap", "briefs"),
    ("Make an infographic of our onboarding flow", "visuals"),
    ("Please research our competitors", "research"),
    ("hello there", GENERAL),
])
def test_classify_request(text, category) -> None:
    assert classify_request(text).category == category


def test_classification_details() -> None:
    result = classify_request("Write a catchy headline for the launch")
    assert result.keywords == ["write", "headline"]
    assert result.suggested_skills == ["ContentAssets"]
    assert 0 < result.confidence < 1


def test_unmatched_text_is_general() -> None:
    result = classify_request("hello there")
    assert result == Classification()
    assert result.confidence == 0.0


def test_tie_keeps_earlier_category() -> None:
    # "draft" scores copy and "plan" scores briefs equally.
    assert classify_request("draft a plan").category == "copy"


class TestIsRequestAllowed:
    capabilities = [
        TaskCapability(name="copy"),
        TaskCapability(name="visuals", enabled=False),
    ]

    def test_general_always_allowed(self):
        assert is_request_allowed(Classification(), []) == (True, None)

    def test_enabled_capability(self):
        assert is_request_allowed(Classification(category="copy"), self.capabilities) == (True, None)

    def test_disabled_capability(self):
        allowed, reason = is_request_allowed(Classification(category="visuals"), self.capabilities)
        assert allowed is False
        assert reason == "visuals requests are disabled in this channel."

    def test_missing_capability_lists_enabled_ones(self):
        allowed, reason = is_request_allowed(Classification(category="research"), self.capabilities)
        assert allowed is False
        assert reason == "This channel is not configured for research requests. Available: copy."

    def test_no_capabilities(self):
        _, reason = is_request_allowed(Classification(category="briefs"), [])
        assert reason.endswith("Available: none.")


def test_category_display_name() -> None:
    assert category_display_name("briefs") == "Content Briefs"
    assert category_display_name("legal") == "Legal"
