"""System-instruction and user-prompt assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from mnemo.attachments import Attachment

DEFAULT_BASE_PROMPT = (
    "You are a helpful assistant. "
    "Your responses should be formatted in Markdown. Be concise and direct."
)


def build_system_instruction(
    base: str = DEFAULT_BASE_PROMPT,
    *,
    user_context: str = "",
    response_style: str = "",
    memories: Sequence[str] = (),
) -> str:
    """Base prompt plus optional user context, style and numbered memories."""
    parts = [base.strip() or DEFAULT_BASE_PROMPT]
    if user_context.strip():
        parts.append(f"USER CONTEXT:\n{user_context.strip()}")
    if response_style.strip():
        parts.append(f"RESPONSE STYLE GUIDELINES:\n{response_style.strip()}")
    if memories:
        numbered = "\n".join(f"{i}. {m}" for i, m in enumerate(memories, 1))
        parts.append(f"RELEVANT USER FACTS (MEMORIES):\n{numbered}")
    return "\n\n".join(parts)


def build_user_prompt(message: str, attachments: Sequence[Attachment] = ()) -> str:
    """Fold attached file contents in front of the user's question."""
    if not attachments:
        return message
    files = "\n\n---\n\n".join(f"FILE: {a.name}\nCONTENT:\n{a.content}" for a in attachments)
    return (
        f"I have attached the following files for context:\n\n{files}"
        f"\n\nUser Question: {message}"
    )
