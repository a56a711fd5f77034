"""Lexical relevance ranking for stored memories.

Scores each memory against the user's message by token overlap, adds a small
recency bias, and keeps the top results. Pure and stateless.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "have", "what",
    "where", "when", "how", "who", "your", "mine", "about", "some", "they", "them",
})

DEFAULT_LIMIT = 5
MIN_TOKEN_LENGTH = 3
SCORE_THRESHOLD = 5
RECENCY_WEIGHT = 5
DENSITY_STEP = 0.2
FALLBACK_COUNT = 3

_NON_WORD = re.compile(r"[^A-Za-z0-9_\s]")


def _strip(text: str) -> str:
    return _NON_WORD.sub("", text.lower())


def tokenize_query(text: str) -> list[str]:
    """Lowercase, drop punctuation, and discard short words and stop words."""
    return [
        w for w in _strip(text).split()
        if len(w) >= MIN_TOKEN_LENGTH and w not in STOP_WORDS
    ]


def score_memory(tokens: Sequence[str], memory: str, index: int, total: int) -> float:
    """Score one memory: exact token hits, substring hits, density, recency."""
    memory_lower = memory.lower()
    memory_tokens = _strip(memory).split()

    score = 0.0
    matches = 0
    for word in tokens:
        if word in memory_tokens:
            score += len(word) * 2
            matches += 1
        elif word in memory_lower:
            score += len(word)
            matches += 1

    if matches > 1:
        score *= 1 + matches * DENSITY_STEP

    return score + (index / total) * RECENCY_WEIGHT


def rank_memories(query: str, memories: Sequence[str], limit: int = DEFAULT_LIMIT) -> list[str]:
    """Return the memories most relevant to ``query``, best first.

    With no usable query tokens the most recent ``limit`` memories are
    returned in stored order. When nothing clears the score threshold the
    last three memories are returned regardless of ``limit``.
    """
    if not memories:
        return []

    limit = max(limit, 0)
    tokens = tokenize_query(query)
    if not tokens:
        return list(memories[max(len(memories) - limit, 0):]) if limit else []

    total = len(memories)
    scored = [
        (memory, score_memory(tokens, memory, i, total))
        for i, memory in enumerate(memories)
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)

    relevant = [memory for memory, score in scored if score > SCORE_THRESHOLD]
    if relevant:
        return relevant[:limit]

    logger.debug("No memory above threshold for %d tokens, using recent", len(tokens))
    return list(memories[-FALLBACK_COUNT:])
