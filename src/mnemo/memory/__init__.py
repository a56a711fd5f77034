"""User memories: short facts injected into the model's instructions.

Layout:
    ~/.mnemo/memories.md          # Markdown list with YAML frontmatter
    ~/.mnemo/.versions/           # Backups taken before every write

`ranker.rank_memories` picks which facts accompany a given message;
`context.build_system_instruction` renders them into the system prompt.
"""
