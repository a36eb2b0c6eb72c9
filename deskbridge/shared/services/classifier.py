"""Keyword classification of inbound requests into task categories.

Used by channels in team mode: the category decides whether the request
is allowed in the channel and which guidance is added to the prompt.
Pattern hits weigh 2, keyword hits 1; the best-scoring category wins and
anything without a hit is ``general``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deskbridge.shared.services.channels import TaskCapability

logger = logging.getLogger(__name__)

GENERAL = "general"


@dataclass(frozen=True)
class _CategoryRules:
    patterns: tuple[re.Pattern[str], ...]
    keywords: tuple[str, ...]
    skills: tuple[str, ...]

    @property
    def max_score(self) -> int:
        return len(self.patterns) * 2 + len(self.keywords)


def _rules(patterns: list[str], keywords: list[str], skills: list[str]) -> _CategoryRules:
    return _CategoryRules(
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        keywords=tuple(keywords),
        skills=tuple(skills),
    )


CATEGORY_RULES: dict[str, _CategoryRules] = {
    "copy": _rules(
        [
            r"\b(write|draft|copy|text|headline|tagline|email|subject line|cta|call to action)\b",
            r"\b(rewrite|edit|revise|polish|refine)\b.*\b(copy|text|content)\b",
            r"\b(blog post|article|press release|newsletter|ad copy|social media post)\b",
            r"\b(caption|description|bio|about us|slogan)\b",
        ],
        ["write", "draft", "copy", "text", "headline", "tagline", "email", "cta",
         "blog", "article", "newsletter"],
        ["ContentAssets"],
    ),
    "briefs": _rules(
        [
            r"\b(brief|outline|plan|strategy|framework|structure)\b",
            r"\b(content brief|creative brief|project brief|campaign brief)\b",
            r"\b(topic brief|synthesis|summarize topic)\b",
            r"\b(planning|roadmap|proposal)\b",
        ],
        ["brief", "outline", "plan", "strategy", "framework", "synthesis", "proposal", "roadmap"],
        ["ContentAssets", "KnowledgeBase"],
    ),
    "visuals": _rules(
        [
            r"\b(infographic|diagram|visual|image|illustration|graphic)\b",
            r"\b(create|generate|make)\b.*\b(image|visual|diagram|infographic)\b",
            r"\b(lead magnet|pdf|multi-page)\b",
            r"\b(chalkboard|whiteboard|pencil sketch|colored pencil)\b.*\bstyle\b",
            r"\b(chart|flowchart|process diagram|architecture diagram)\b",
        ],
        ["infographic", "diagram", "visual", "image", "illustration", "graphic",
         "lead magnet", "chart", "flowchart"],
        ["Art"],
    ),
    "research": _rules(
        [
            r"\b(research|find|search|look up|investigate)\b",
            r"\b(kb search|knowledge base|find related|similar)\b",
            r"\b(what do we know about|summarize|analyze)\b",
            r"\b(competitor|market|industry)\b.*\b(analysis|research|intel)\b",
            r"\b(find out|discover|explore)\b",
        ],
        ["research", "find", "search", "investigate", "analyze", "summarize",
         "discover", "explore", "analysis"],
        ["KnowledgeBase"],
    ),
}

CATEGORY_NAMES = {
    "copy": "Copywriting",
    "briefs": "Content Briefs",
    "visuals": "Visual Content",
    "research": "Research",
    GENERAL: "General",
}


@dataclass
class Classification:
    category: str = GENERAL
    confidence: float = 0.0
    keywords: list[str] = field(default_factory=list)
    suggested_skills: list[str] = field(default_factory=list)


def classify_request(text: str) -> Classification:
    """Pick the best-scoring category for the request text."""
    normalized = text.lower()
    best: tuple[int, str, list[str]] | None = None
    for category, rules in CATEGORY_RULES.items():
        score = sum(2 for p in rules.patterns if p.search(normalized))
        matched = [k for k in rules.keywords if k in normalized]
        score += len(matched)
        # Ties keep the earlier category.
        if score > 0 and (best is None or score > best[0]):
            best = (score, category, matched)

    if best is None:
        return Classification()
    score, category, matched = best
    rules = CATEGORY_RULES[category]
    return Classification(
        category=category,
        confidence=min(score / rules.max_score, 1.0),
        keywords=matched,
        suggested_skills=list(rules.skills),
    )


def is_request_allowed(
    classification: Classification,
    capabilities: list[TaskCapability],
) -> tuple[bool, str | None]:
    """Check a classified request against a channel's capabilities.

    Returns ``(allowed, reason)``; ``general`` requests are always allowed.
    """
    category = classification.category
    if category == GENERAL:
        return True, None
    capability = next((c for c in capabilities if c.name == category), None)
    if capability is None:
        available = ", ".join(c.name for c in capabilities if c.enabled) or "none"
        return False, (
            f"This channel is not configured for {category} requests. Available: {available}."
        )
    if not capability.enabled:
        return False, f"{category} requests are disabled in this channel."
    return True, None


def category_display_name(category: str) -> str:
    return CATEGORY_NAMES.get(category, category.title())
