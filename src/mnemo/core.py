"""mnemo orchestrator: sessions, memory injection, engine calls.

Responsibilities:
1. Receive messages from any connector (IncomingMessage)
2. Lane Queue: one in-flight request per chat_id
3. Session management: chat_id → ChatSession (in-process only)
4. Memory injection: rank stored memories against the message
5. Engine call: system instruction + history + generation settings
6. Error turns: an apology message that the next turn or a retry replaces
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Literal

from mnemo.config import MnemoConfig, apply_settings, parse_setting, save_settings
from mnemo.connectors.base import IncomingMessage
from mnemo.engines.base import AgentResponse, ChatMessage
from mnemo.memory.context import build_system_instruction, build_user_prompt
from mnemo.memory.store import MemoryStore

if TYPE_CHECKING:
    from mnemo.attachments import Attachment
    from mnemo.connectors.cli import CLIConnector
    from mnemo.engines.base import Engine

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 30

ERROR_REPLY = (
    "I'm sorry, I encountered an error while processing your request. "
    "This could be due to a temporary connection issue or rate limiting."
)

# Export field names -> editable setting keys
_IMPORT_FIELDS = {
    "customInstructions": {
        "userContext": "user_context",
        "responseStyle": "response_style",
    },
    "appSettings": {
        "model": "model",
        "temperature": "temperature",
        "topP": "top_p",
        "topK": "top_k",
        "maxOutputTokens": "max_tokens",
        "userName": "user_name",
    },
}


@dataclass
class ChatSession:
    """A conversation kept in memory for the lifetime of the process."""

    id: str
    title: str = DEFAULT_TITLE
    messages: list[ChatMessage] = field(default_factory=list)
    updated_at: datetime = field(default_factory=datetime.now)


def make_title(text: str, attachments: list[Attachment]) -> str:
    text = text.strip()
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "..."
    if text:
        return text
    if attachments:
        return attachments[0].name
    return DEFAULT_TITLE


class Mnemo:
    """Core orchestrator: routes messages between connectors and the engine."""

    def __init__(self, config: MnemoConfig, engine: Engine | None = None) -> None:
        self.config = config
        self.memory = MemoryStore(config.data_dir)
        self.engine = engine
        self._connectors: list[CLIConnector] = []
        self._sessions: dict[str, ChatSession] = {}
        self._lane_locks: dict[str, asyncio.Lock] = {}  # per-chat serialization

    # ── Engine / connector management ────────────────────────

    def set_engine(self, engine: Engine) -> None:
        self.engine = engine
        logger.info("Using engine: %s", engine.name)

    def _get_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("No engine configured. Call set_engine() first.")
        return self.engine

    def add_connector(self, connector: CLIConnector) -> None:
        self._connectors.append(connector)
        logger.info("Registered connector: %s", connector.name)

    # ── Sessions ─────────────────────────────────────────────

    def session(self, chat_id: str) -> ChatSession:
        """Return the session for ``chat_id``, creating it if needed."""
        if chat_id not in self._sessions:
            self._sessions[chat_id] = ChatSession(id=chat_id)
        return self._sessions[chat_id]

    @property
    def sessions(self) -> list[ChatSession]:
        """All sessions, most recently updated first."""
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def new_chat(self) -> str:
        chat_id = uuid.uuid4().hex[:7]
        self.session(chat_id)
        return chat_id

    def delete_chat(self, chat_id: str) -> None:
        self._sessions.pop(chat_id, None)
        self._lane_locks.pop(chat_id, None)

    def clear_chat(self, chat_id: str) -> None:
        session = self.session(chat_id)
        session.messages = []
        session.updated_at = datetime.now()

    def search_sessions(self, query: str) -> list[ChatSession]:
        """Sessions whose title or any message contains ``query`` (case-insensitive)."""
        if not query.strip():
            return self.sessions
        q = query.lower()
        return [
            s for s in self.sessions
            if q in s.title.lower() or any(q in m.content.lower() for m in s.messages)
        ]

    def set_feedback(
        self, chat_id: str, index: int, feedback: Literal["positive", "negative"]
    ) -> None:
        """Toggle feedback on a message; repeating the same value clears it."""
        message = self.session(chat_id).messages[index]
        message.feedback = None if message.feedback == feedback else feedback

    # ── Lane Queue (per-chat serialization) ──────────────────

    def _get_lane_lock(self, chat_id: str) -> asyncio.Lock:
        if chat_id not in self._lane_locks:
            self._lane_locks[chat_id] = asyncio.Lock()
        return self._lane_locks[chat_id]

    # ── Message handling (the core loop) ─────────────────────

    async def handle_message(self, msg: IncomingMessage) -> AgentResponse:
        """Process an incoming message: the main entry point for all connectors."""
        if not msg.text.strip() and not msg.attachments:
            return AgentResponse(text="")

        lock = self._get_lane_lock(msg.chat_id)
        async with lock:
            session = self.session(msg.chat_id)
            session.messages = [m for m in session.messages if not m.is_error]
            if not session.messages:
                session.title = make_title(msg.text, msg.attachments)
            session.messages.append(
                ChatMessage(role="user", content=msg.text, attachments=list(msg.attachments))
            )
            session.updated_at = datetime.now()
            return await self._process(session)

    async def retry(self, chat_id: str) -> AgentResponse | None:
        """Re-send the last user message, discarding any reply that followed it."""
        lock = self._get_lane_lock(chat_id)
        async with lock:
            session = self.session(chat_id)
            last_user = next(
                (i for i in range(len(session.messages) - 1, -1, -1)
                 if session.messages[i].role == "user"),
                None,
            )
            if last_user is None:
                return None
            del session.messages[last_user + 1:]
            return await self._process(session)

    def system_instruction(self, query: str) -> str:
        """Build the system prompt for a message, injecting relevant memories."""
        memories: list[str] = []
        if self.config.memory.enabled:
            memories = self.memory.relevant(query, self.config.memory.limit)
        instructions = self.config.instructions
        return build_system_instruction(
            instructions.base_prompt,
            user_context=instructions.user_context,
            response_style=instructions.response_style,
            memories=memories,
        )

    async def _process(self, session: ChatSession) -> AgentResponse:
        engine = self._get_engine()
        current = session.messages[-1]
        history = session.messages[:-1]

        # 1. Rank memories against the raw text, not the attachment-expanded prompt
        system_prompt = self.system_instruction(current.content)

        # 2. Call the engine
        prompt = build_user_prompt(current.content, current.attachments)
        try:
            response = await engine.send(
                prompt,
                system_prompt=system_prompt,
                history=history,
                generation=self.config.generation,
            )
        except Exception as e:
            logger.exception("Engine %s failed", engine.name)
            response = AgentResponse(text=f"[Engine error: {e}]", is_error=True)

        # 3. Record the reply (or the apology that a retry will replace)
        if response.is_error:
            logger.warning("Chat %s: %s", session.id, response.text)
            session.messages.append(ChatMessage(role="model", content=ERROR_REPLY, is_error=True))
            response = AgentResponse(
                text=ERROR_REPLY, is_error=True, metadata={"detail": response.text}
            )
        else:
            session.messages.append(ChatMessage(role="model", content=response.text))
        session.updated_at = datetime.now()
        return response

    # ── Export / import ──────────────────────────────────────

    def export_data(self) -> dict:
        """Memories, custom instructions and settings as a JSON-ready dict."""
        gen = self.config.generation
        return {
            "memories": self.memory.list(),
            "customInstructions": {
                "userContext": self.config.instructions.user_context,
                "responseStyle": self.config.instructions.response_style,
            },
            "appSettings": {
                "model": gen.model,
                "temperature": gen.temperature,
                "topP": gen.top_p,
                "topK": gen.top_k,
                "maxOutputTokens": gen.max_output_tokens,
                "userName": self.config.profile.user_name,
            },
            "exportDate": datetime.now().isoformat(),
        }

    def import_data(self, data: dict) -> None:
        """Apply an export; any subset of its sections is accepted.

        Every section is validated before anything is written, so a bad
        field leaves memories and settings untouched.
        """
        if not isinstance(data, dict):
            raise ValueError("Invalid import data: expected a JSON object")

        memories = data.get("memories")
        if memories is not None and not isinstance(memories, list):
            raise ValueError("Invalid import data: 'memories' must be a list")

        updates: dict = {}
        for section, fields in _IMPORT_FIELDS.items():
            values = data.get(section)
            if not isinstance(values, dict):
                continue
            for name, key in fields.items():
                if name in values:
                    try:
                        updates[key] = parse_setting(key, values[name])
                    except ValueError as e:
                        raise ValueError(f"Invalid import data: {e}") from e

        if memories is not None:
            self.memory.replace(memories)
        if updates:
            self.update_settings(updates)
        logger.info("Imported data: %s", ", ".join(k for k in data if k != "exportDate"))

    def update_settings(self, updates: dict) -> None:
        """Apply parsed settings (see ``config.parse_setting``) and persist them."""
        apply_settings(self.config, updates)
        path = save_settings(self.config)
        logger.info("Saved %s to %s", ", ".join(updates), path)

    def set_setting(self, key: str, value) -> None:
        """Parse, apply and persist a single editable setting."""
        self.update_settings({key: parse_setting(key, value)})

    def settings_snapshot(self) -> dict:
        return {
            "generation": asdict(self.config.generation),
            "memory": asdict(self.config.memory),
            "profile": asdict(self.config.profile),
            "instructions": {
                "user_context": self.config.instructions.user_context,
                "response_style": self.config.instructions.response_style,
            },
        }

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start all connectors (each listens for messages)."""
        if self.engine is None:
            raise RuntimeError("No engine configured. Call set_engine() first.")

        tasks = [connector.start(self.handle_message) for connector in self._connectors]
        if tasks:
            await asyncio.gather(*tasks)

    async def stop(self) -> None:
        """Gracefully stop all connectors and the engine."""
        for connector in self._connectors:
            await connector.stop()

        close = getattr(self.engine, "close", None)
        if close and callable(close):
            await close()
