"""Convert chat history into provider message turns."""

from __future__ import annotations

from flowbot.storage.models import ChatHistoryEntry


def build_turns(history: list[ChatHistoryEntry], current_message: str) -> list[dict[str, str]]:
    """Alternating user/assistant turns for *history*, then the current message.

    Entries without a stored response contribute only the user turn.
    """
    turns: list[dict[str, str]] = []
    for entry in history:
        turns.append({"role": "user", "content": entry.message})
        if entry.response:
            turns.append({"role": "assistant", "content": entry.response})
    turns.append({"role": "user", "content": current_message})
    return turns


def build_system_prompts(
    behavior: str, knowledge: list[str], voice_instruction: str | None = None
) -> list[str]:
    """Behavior first, then the joined knowledge base, then voice guidance."""
    prompts = [behavior]
    joined = "\n\n".join(k for k in knowledge if k and k.strip())
    if joined:
        prompts.append(joined)
    if voice_instruction:
        prompts.append(voice_instruction)
    return prompts
