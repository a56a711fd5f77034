"""Memory tools: user-facing operations over the memory store.

Each tool returns a display string, so the CLI (or any other front end) can
print results directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from mnemo.memory.store import MemoryStore


def get_memory_tools(store: MemoryStore) -> dict[str, Callable[..., str]]:
    """Return a dict of tool_name -> callable for memory operations."""

    def list_memories() -> str:
        """Numbered list of all saved memories, oldest first."""
        memories = store.list()
        if not memories:
            return "(no memories saved yet)"
        return "\n".join(f"{i}. {m}" for i, m in enumerate(memories, 1))

    def remember(fact: str) -> str:
        """Save a new fact about the user."""
        try:
            saved = store.add(fact)
        except ValueError:
            return "Nothing to remember: the memory is empty."
        return f"Remembered: {saved}"

    def forget(position: int | str) -> str:
        """Delete the memory at a 1-based position (as shown by list_memories)."""
        try:
            index = int(position) - 1
        except (TypeError, ValueError):
            return f"Not a memory number: {position!r}"
        if index < 0:
            return f"No memory #{position}"
        try:
            removed = store.remove(index)
        except IndexError:
            return f"No memory #{position}"
        return f"Forgot: {removed}"

    def recall(query: str, limit: int = 5) -> str:
        """Show which memories would be injected for ``query``."""
        memories = store.relevant(query, limit)
        if not memories:
            return "(no memories saved yet)"
        return "\n".join(f"{i}. {m}" for i, m in enumerate(memories, 1))

    def clear_memories() -> str:
        count = store.clear()
        return f"Cleared {count} memories"

    return {
        "list_memories": list_memories,
        "remember": remember,
        "forget": forget,
        "recall": recall,
        "clear_memories": clear_memories,
    }
