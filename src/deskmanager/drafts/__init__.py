"""Draft reply lifecycle: context, prompts, generators and local storage."""

from deskmanager.drafts.context import build_draft_context, follow_up_suggestions
from deskmanager.drafts.generators import (
    BrowserPromptGenerator,
    ClaudeGenerator,
    DraftGenerator,
    GeminiGenerator,
    OpenAIGenerator,
    SubscriptionGenerator,
    append_signature,
    generate_draft,
    select_generator,
)
from deskmanager.drafts.models import (
    Draft,
    DraftContext,
    DraftMeta,
    DraftOptions,
    GenerationResult,
)
from deskmanager.drafts.prompts import Prompt, build_prompt
from deskmanager.drafts.store import DraftStore, send_draft

__all__ = [
    "BrowserPromptGenerator",
    "ClaudeGenerator",
    "Draft",
    "DraftContext",
    "DraftGenerator",
    "DraftMeta",
    "DraftOptions",
    "DraftStore",
    "GeminiGenerator",
    "GenerationResult",
    "OpenAIGenerator",
    "Prompt",
    "SubscriptionGenerator",
    "append_signature",
    "build_draft_context",
    "build_prompt",
    "follow_up_suggestions",
    "generate_draft",
    "select_generator",
    "send_draft",
]
