"""Persisted memory list: one markdown file, newest fact last.

Layout:
    ~/.mnemo/
    ├── memories.md        # YAML frontmatter + one "- fact" bullet per memory
    └── .versions/         # Timestamped backups (10 kept)
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

import frontmatter

from mnemo.memory.ranker import DEFAULT_LIMIT, rank_memories

logger = logging.getLogger(__name__)

MEMORY_FILENAME = "memories.md"
MAX_VERSIONS = 10


class MemoryStore:
    """Read/write access to the user's saved memories."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.path = root / MEMORY_FILENAME
        self._memories: list[str] = []
        self._ensure_initialized()
        self._memories = self._load()

    # ── Initialization ────────────────────────────────────────

    def _ensure_initialized(self) -> None:
        """Ensure the data directory and memory file exist. Idempotent."""
        (self.root / ".versions").mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write([])

    # ── File format ───────────────────────────────────────────

    def _load(self) -> list[str]:
        """Parse bullets out of memories.md."""
        try:
            post = frontmatter.load(str(self.path))
        except Exception as e:
            logger.warning("Could not parse %s: %s", self.path, e)
            return []
        memories = []
        for line in post.content.splitlines():
            line = line.strip()
            if line.startswith("- ") and line[2:].strip():
                memories.append(line[2:].strip())
        return memories

    def _write(self, memories: list[str]) -> None:
        body = "# Memories\n\n" + "".join(f"- {m}\n" for m in memories)
        post = frontmatter.Post(
            body,
            updated=datetime.now().isoformat(timespec="seconds"),
            count=len(memories),
        )
        self.path.write_text(frontmatter.dumps(post) + "\n", encoding="utf-8")

    def _backup(self) -> None:
        """Backup to .versions/, keep at most MAX_VERSIONS copies."""
        if not self.path.exists():
            return
        versions_dir = self.root / ".versions"
        versions_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        (versions_dir / f"memories-{ts}.md").write_text(
            self.path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        old = sorted(versions_dir.glob("memories-*.md"))
        for f in old[:-MAX_VERSIONS]:
            f.unlink()

    def _save(self) -> None:
        self._backup()
        self._write(self._memories)

    @staticmethod
    def _normalize(fact: str) -> str:
        # One bullet per memory: collapse internal line breaks.
        return " ".join(fact.split())

    # ── Public API ────────────────────────────────────────────

    def list(self) -> list[str]:
        """All memories, oldest first."""
        return list(self._memories)

    def __len__(self) -> int:
        return len(self._memories)

    def add(self, fact: str) -> str:
        """Append a memory. Duplicates are kept."""
        fact = self._normalize(fact)
        if not fact:
            raise ValueError("memory must not be empty")
        self._memories.append(fact)
        self._save()
        logger.info("Memory added (%d total)", len(self._memories))
        return fact

    def remove(self, index: int) -> str:
        """Remove the memory at 0-based ``index`` and return it."""
        if not 0 <= index < len(self._memories):
            raise IndexError(f"no memory at position {index}")
        fact = self._memories.pop(index)
        self._save()
        return fact

    def clear(self) -> int:
        count = len(self._memories)
        self._memories = []
        self._save()
        return count

    def replace(self, memories: Iterable[str]) -> None:
        """Overwrite the whole list (used by import)."""
        cleaned = [self._normalize(m) for m in memories if isinstance(m, str)]
        self._memories = [m for m in cleaned if m]
        self._save()

    def relevant(self, query: str, limit: int = DEFAULT_LIMIT) -> list[str]:
        """Memories worth injecting for ``query``."""
        return rank_memories(query, self._memories, limit)
