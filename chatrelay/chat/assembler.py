"""Prompt context assembly for one turn."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatrelay.llm.prompt import build_persona_prompt

if TYPE_CHECKING:
    from chatrelay.models import CustomizationProfile, Message

SUMMARY_PREFIX = "Conversation summary so far: "


def assemble_context(
    *,
    prompt: str,
    summary: str | None,
    recent: list[Message],
    custom: CustomizationProfile | None,
) -> list[dict[str, str]]:
    """Build the ordered upstream message list.

    ``[persona, summary?, *recent (ascending), new user prompt]``. The
    summary goes in its own system message directly after the persona.
    """
    messages = [{"role": "system", "content": build_persona_prompt(custom)}]

    if summary and summary.strip():
        messages.append({"role": "system", "content": f"{SUMMARY_PREFIX}{summary}"})

    for msg in recent:
        messages.append({"role": msg.api_role, "content": msg.response})

    messages.append({"role": "user", "content": prompt})
    return messages
