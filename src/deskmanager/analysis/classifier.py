"""Keyword-based content classification for ticket text.

Deliberately crude pattern matching, not NLP: every rule is a
case-insensitive substring test against fixed keyword tables.  Each issue
or tag category contributes at most once no matter how many of its
keywords appear.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from deskmanager.domain.types import Sentiment

NEGATIVE_WORDS: tuple[str, ...] = (
    "angry",
    "frustrated",
    "disappointed",
    "upset",
    "terrible",
    "horrible",
    "worst",
    "unacceptable",
)

POSITIVE_WORDS: tuple[str, ...] = (
    "thank",
    "appreciate",
    "great",
    "excellent",
    "good",
    "happy",
    "satisfied",
)

# Keyword -> issue label.  Several keywords may map to the same issue.
ISSUE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("not working", "functionality issue"),
    ("error", "error encountered"),
    ("can't", "unable to perform action"),
    ("cannot", "unable to perform action"),
    ("broken", "broken feature"),
    ("bug", "bug report"),
    ("slow", "performance issue"),
    ("crash", "application crash"),
    ("login", "authentication issue"),
    ("payment", "payment issue"),
    ("refund", "refund request"),
    ("cancel", "cancellation request"),
)

TAG_PATTERNS: dict[str, tuple[str, ...]] = {
    "billing": ("payment", "invoice", "billing", "refund", "charge"),
    "technical": ("error", "bug", "not working", "broken", "crash"),
    "account": ("login", "password", "access", "signin", "account"),
    "feature-request": ("feature", "enhancement", "suggestion", "improve"),
    "question": ("how to", "how do", "what is", "explain", "help with"),
}

TEMPLATE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("password", "login", "signin", "sign in", "access"), "password_reset"),
    (("download", "file", "zip", "install"), "download_issue"),
    (("license", "expired", "activation", "activate"), "license_expired"),
    (("refund", "money back", "return"), "refund_approved"),
    (("bug", "error", "not working", "broken", "crash"), "technical_escalation"),
    (("thank", "hi", "hello", "help"), "first_response"),
)


class ContentClassification(BaseModel):
    """Result of classifying a piece of ticket text."""

    model_config = ConfigDict(frozen=True)

    sentiment: Sentiment = Sentiment.NEUTRAL
    issues: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()


def _any_in(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def detect_sentiment(text: str) -> Sentiment:
    """Compare negative and positive keyword hits; ties are neutral."""
    lowered = text.lower()
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    if negative > positive:
        return Sentiment.NEGATIVE
    if positive > negative:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def extract_issues(text: str) -> list[str]:
    """Issue labels matched in *text*, in table order, without duplicates."""
    lowered = text.lower()
    issues: list[str] = []
    for keyword, issue in ISSUE_PATTERNS:
        if keyword in lowered and issue not in issues:
            issues.append(issue)
    return issues


def extract_tags(text: str) -> list[str]:
    """Tag categories matched in *text*, in table order."""
    lowered = text.lower()
    return [tag for tag, keywords in TAG_PATTERNS.items() if _any_in(lowered, keywords)]


def classify(text: str) -> ContentClassification:
    """Classify *text* by sentiment, issues and tags.

    Pure: the same input always yields the same result.
    """
    return ContentClassification(
        sentiment=detect_sentiment(text),
        issues=frozenset(extract_issues(text)),
        tags=frozenset(extract_tags(text)),
    )


def suggest_templates(text: str) -> list[str]:
    """Response template keys whose keywords appear in *text*."""
    lowered = text.lower()
    return [template for keywords, template in TEMPLATE_KEYWORDS if _any_in(lowered, keywords)]
