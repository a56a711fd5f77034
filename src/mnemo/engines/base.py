"""Engine protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Literal, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from mnemo.attachments import Attachment
    from mnemo.config import GenerationConfig

Role = Literal["user", "model"]


@dataclass
class ChatMessage:
    """One turn of a chat session."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    is_error: bool = False
    feedback: Literal["positive", "negative"] | None = None
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class AgentResponse:
    """Response from an AI engine."""

    text: str
    model: str | None = None
    cost_usd: float | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    is_error: bool = False
    metadata: dict = field(default_factory=dict)


@runtime_checkable
class Engine(Protocol):
    """Protocol that all engine backends must implement."""

    @property
    def name(self) -> str: ...

    async def send(
        self,
        message: str,
        *,
        system_prompt: str | None = None,
        history: Sequence[ChatMessage] = (),
        generation: GenerationConfig | None = None,
    ) -> AgentResponse:
        """Send a message with prior history and return the response."""
        ...

    async def health_check(self) -> bool:
        """Check if the engine is available. Returns True if healthy."""
        ...
