"""Prompt text and canned copy used by the chat session."""

from __future__ import annotations

BASE_INSTRUCTIONS = (
    "You are a helpful AI assistant for a summer camp. Your role is to help parents find answers to "
    "their questions about the camp by searching through the camp's documentation. Be friendly, "
    "informative, and concise. Focus on providing accurate information from the documentation. If a "
    "question cannot be answered from the available documents, politely let the parent know. Respond "
    "only to the question asked and do not offer any follow up actions."
)

GENERIC_WELCOME = "Hi! I can help answer questions about your selected camp. What would you like to know?"

PERSONALIZED_WELCOME = (
    "Hi! I see you have {names} registered. I can help answer questions specific to their camp "
    "experience. What would you like to know?"
)

PERSONALIZATION_TEMPLATE = (
    "You are assisting a parent who has {count} camper{plural} enrolled: {campers}. When answering "
    "questions, use first names naturally ({first_names}) and never full or last names, and tailor "
    "your responses to their specific sessions and age groups. Search the documentation for "
    "information that is relevant to their particular enrollment details."
)

CUSTOM_INSTRUCTIONS_HEADER = "Camp-specific instructions (highest priority):"

CONNECTION_ERROR_MESSAGE = (
    "Sorry, I encountered an error connecting to the service. Please try again in a moment."
)

GENERIC_FAILURE_MESSAGE = "Sorry, I encountered an error. Please try again."

NO_TENANT_MESSAGE = "Please select a camp from the dropdown in the registration area first."

THINKING_PHRASES: tuple[str, ...] = (
    "Pondering deeply...",
    "Consulting archives...",
    "Diving in...",
    "Retrieving wisdom...",
    "Thinking thoughts...",
    "Scanning memory...",
    "Processing vibes...",
    "Brain crunching...",
    "Summoning knowledge...",
    "Connecting dots...",
    "Mining data...",
    "Cooking up answer...",
    "Searching scrolls...",
    "Computing magic...",
    "Assembling thoughts...",
    "Fetching intel...",
    "Reading libraries...",
    "Brewing response...",
    "Gathering context...",
    "Synthesizing ideas...",
)


def compose_instructions(base: str, custom: str = "", personalization: str = "") -> str:
    """Assemble the instruction block sent with a chat request.

    Custom instructions lead the block and the personalization sentence
    closes it.
    """

    sections: list[str] = []
    custom_text = (custom or "").strip()
    if custom_text:
        sections.append(f"{CUSTOM_INSTRUCTIONS_HEADER}\n{custom_text}")
    if base and base.strip():
        sections.append(base.strip())
    if personalization and personalization.strip():
        sections.append(personalization.strip())
    return "\n\n".join(sections)


__all__ = [
    "BASE_INSTRUCTIONS",
    "GENERIC_WELCOME",
    "PERSONALIZED_WELCOME",
    "PERSONALIZATION_TEMPLATE",
    "CUSTOM_INSTRUCTIONS_HEADER",
    "CONNECTION_ERROR_MESSAGE",
    "GENERIC_FAILURE_MESSAGE",
    "NO_TENANT_MESSAGE",
    "THINKING_PHRASES",
    "compose_instructions",
]
