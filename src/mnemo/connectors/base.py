"""Message type shared by the connectors and the core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Coroutine

if TYPE_CHECKING:
    from mnemo.attachments import Attachment
    from mnemo.engines.base import AgentResponse


@dataclass
class IncomingMessage:
    """A line of user input, with any files attached to it."""

    text: str
    chat_id: str
    sender: str = ""
    connector_name: str = ""
    attachments: list[Attachment] = field(default_factory=list)


# Callback type: core.Mnemo.handle_message
MessageHandler = Callable[[IncomingMessage], Coroutine[None, None, "AgentResponse"]]
