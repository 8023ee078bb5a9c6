"""Keyword classification and automatic tagging of ticket content."""

from deskmanager.analysis.classifier import (
    ContentClassification,
    classify,
    detect_sentiment,
    extract_issues,
    extract_tags,
    suggest_templates,
)
from deskmanager.analysis.tagging import auto_tag_ticket, suggest_ticket_tags

__all__ = [
    "ContentClassification",
    "auto_tag_ticket",
    "classify",
    "detect_sentiment",
    "extract_issues",
    "extract_tags",
    "suggest_templates",
    "suggest_ticket_tags",
]
