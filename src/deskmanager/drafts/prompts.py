"""Prompt templates and prompt assembly for draft generation.

Templates use Python string placeholders ({variable_name}).  A custom
system prompt from settings may use ``{ticket_subject}``,
``{ticket_description}``, ``{customer_name}``, ``{tone}`` and
``{response_type}``; any other braces in it are left alone.
"""

from __future__ import annotations

from pydantic import BaseModel

from deskmanager.domain.types import ResponseType, Tone
from deskmanager.drafts.models import DraftContext, DraftOptions

DEFAULT_SYSTEM_PROMPT = (
    "You are a professional customer support agent helping to draft responses for "
    "support tickets. Your responses should be {tone}, helpful, and focused on solving "
    "the customer's issue. Use the context provided to create a personalized and "
    "relevant response."
)

KNOWLEDGE_BASE_SECTION = "\n\nCompany Knowledge Base:\n{knowledge_base}"

USER_PROMPT_HEADER = """Please draft a response for the following support ticket:

**Ticket Subject:** {ticket_subject}
**Customer Name:** {customer_name}
**Priority:** {priority}
"""

RESPONSE_TYPE_INSTRUCTIONS: dict[ResponseType, str] = {
    ResponseType.SOLUTION: (
        "Provide a detailed solution to address the customer's issue. "
        "Include step-by-step instructions if applicable."
    ),
    ResponseType.FOLLOW_UP: (
        "Draft a follow-up message to check on the customer's progress "
        "and offer additional assistance."
    ),
    ResponseType.CLARIFICATION: (
        "Ask for specific clarification needed to better understand and resolve the issue."
    ),
    ResponseType.ESCALATION: (
        "Draft a message explaining that the issue is being escalated to a "
        "senior team member or specialist."
    ),
    ResponseType.CLOSING: (
        "Draft a closing message confirming the issue has been resolved "
        "and thanking the customer."
    ),
}

TONE_INSTRUCTIONS: dict[Tone, str] = {
    Tone.FRIENDLY: "Use a warm, friendly tone while maintaining professionalism.",
    Tone.FORMAL: "Use a formal, business-appropriate tone.",
    Tone.TECHNICAL: "Provide technical details and be precise in your explanations.",
    Tone.EMPATHETIC: "Show understanding and empathy for the customer's frustration or concerns.",
}

PERSONALIZATION_REMINDER = (
    "IMPORTANT: Address the customer by name and personalize the response "
    "based on their specific issue."
)

SUMMARY_PREVIEW_CHARS = 200


class Prompt(BaseModel):
    """A system/user prompt pair."""

    system: str
    user: str

    def combined(self) -> str:
        """Single block of text for pasting into a chat UI."""
        return f"{self.system}\n\n{self.user}"


def _system_prompt(context: DraftContext, options: DraftOptions, tone: Tone, custom: str) -> str:
    if custom:
        system = custom
        for placeholder, value in (
            ("{ticket_subject}", context.ticket_subject),
            ("{ticket_description}", context.description),
            ("{customer_name}", context.customer_name),
            ("{tone}", tone.value),
            ("{response_type}", options.response_type.value),
        ):
            system = system.replace(placeholder, value)
    else:
        system = DEFAULT_SYSTEM_PROMPT.format(tone=tone.value)

    if context.knowledge_base:
        system += KNOWLEDGE_BASE_SECTION.format(knowledge_base=context.knowledge_base)
    return system


def _conversation_block(context: DraftContext) -> str:
    lines = ["", "**Complete Conversation History:**", "-" * 35]
    for entry in context.conversation:
        stamp = f" [{entry.created_at:%Y-%m-%d %H:%M}]" if entry.created_at else ""
        lines.append("")
        lines.append(f"{entry.author_label} ({entry.author_name}){stamp}:")
        lines.append(entry.content)
        lines.append("---")
    lines.append("-" * 35)
    return "\n".join(lines) + "\n"


def _customer_summary_block(context: DraftContext) -> str:
    lines = ["", "**Summary of All Customer Messages:**"]
    for index, message in enumerate(context.customer_messages, start=1):
        preview = message[:SUMMARY_PREVIEW_CHARS]
        if len(message) > SUMMARY_PREVIEW_CHARS:
            preview += "..."
        lines.append(f"Message {index}: {preview}")
    return "\n".join(lines) + "\n"


def build_prompt(
    context: DraftContext,
    options: DraftOptions | None = None,
    custom_system_prompt: str = "",
) -> Prompt:
    """Assemble the system and user prompts for a draft.

    Args:
        context: Ticket context from ``build_draft_context``.
        options: Response type and tone; tone defaults to the context's
            configured response style.
        custom_system_prompt: Replaces the default system prompt when set.

    Returns:
        The ``Prompt`` to send to a generator.
    """
    options = options or DraftOptions()
    tone = options.tone or context.response_style

    user = USER_PROMPT_HEADER.format(
        ticket_subject=context.ticket_subject,
        customer_name=context.customer_name,
        priority=context.priority,
    )
    if context.description:
        user += f"\n**Initial Issue Description:**\n{context.description}\n"

    if context.include_full_conversation and context.conversation:
        user += _conversation_block(context)
    elif not context.include_full_conversation:
        if context.last_customer_message:
            user += f"\n**Customer's Latest Message:**\n{context.last_customer_message}\n\n"
        if len(context.customer_messages) > 1:
            user += _customer_summary_block(context)

    if context.customer_messages:
        user += f"\n**Detected Customer Sentiment:** {context.sentiment.value}\n"
    if context.key_issues:
        user += f"**Key Issues Identified:** {', '.join(context.key_issues)}\n"

    user += "\n" + RESPONSE_TYPE_INSTRUCTIONS[options.response_type]
    if tone in TONE_INSTRUCTIONS:
        user += "\n\n" + TONE_INSTRUCTIONS[tone]
    user += "\n\n" + PERSONALIZATION_REMINDER

    return Prompt(
        system=_system_prompt(context, options, tone, custom_system_prompt),
        user=user,
    )
