"""Anthropic API engine: plain conversation, no tools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from mnemo.engines.base import AgentResponse

if TYPE_CHECKING:
    from mnemo.config import GenerationConfig
    from mnemo.engines.base import ChatMessage

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 15

_ROLE_MAP = {"user": "user", "model": "assistant"}


def build_messages(message: str, history: Sequence[ChatMessage]) -> list[dict]:
    """Map chat history to API messages, merging consecutive same-role turns."""
    messages: list[dict] = []
    for msg in list(history)[-HISTORY_WINDOW:]:
        if msg.is_error or not msg.content:
            continue
        role = _ROLE_MAP[msg.role]
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + msg.content
        else:
            messages.append({"role": role, "content": msg.content})
    # The API requires the conversation to open with a user turn.
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] += "\n\n" + message
    else:
        messages.append({"role": "user", "content": message})
    return messages


@dataclass
class AnthropicAPIEngine:
    """Direct Anthropic API via the `anthropic` SDK."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 4096
    timeout: int = 120

    def __post_init__(self) -> None:
        try:
            import anthropic

            self._client = anthropic.Anthropic(timeout=self.timeout)
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install 'mnemo[api]'"
            )

    @property
    def name(self) -> str:
        return "anthropic_api"

    async def send(
        self,
        message: str,
        *,
        system_prompt: str | None = None,
        history: Sequence[ChatMessage] = (),
        generation: GenerationConfig | None = None,
    ) -> AgentResponse:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": build_messages(message, history),
        }
        if generation is not None:
            kwargs["model"] = generation.model or self.model
            kwargs["max_tokens"] = generation.max_output_tokens or self.max_tokens
            kwargs["temperature"] = generation.temperature
            if generation.top_p is not None:
                kwargs["top_p"] = generation.top_p
            kwargs["top_k"] = generation.top_k
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await asyncio.to_thread(self._client.messages.create, **kwargs)
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            return AgentResponse(text=f"[Anthropic API error: {e}]", is_error=True)

        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        cost = input_tokens = output_tokens = None
        if response.usage:
            input_tokens = response.usage.input_tokens
            output_tokens = response.usage.output_tokens
            # Approximate cost (Sonnet pricing)
            cost = (input_tokens * 3 + output_tokens * 15) / 1e6

        return AgentResponse(
            text=text,
            model=response.model,
            cost_usd=cost,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def health_check(self) -> bool:
        try:
            response = await asyncio.to_thread(
                self._client.messages.create,
                model=self.model,
                max_tokens=10,
                messages=[{"role": "user", "content": "ping"}],
            )
            return bool(response.content)
        except Exception:
            return False
