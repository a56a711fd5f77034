"""Tests for the mnemo core orchestrator."""

import asyncio
import json
import pytest
from pathlib import Path

from mnemo.attachments import Attachment
from mnemo.config import MemoryConfig, MnemoConfig, load_config
from mnemo.connectors.base import IncomingMessage
from mnemo.core import ERROR_REPLY, Mnemo
from mnemo.engines.base import AgentResponse


class MockEngine:
    def __init__(self, response_text: str = "Mock response"):
        self._response_text = response_text
        self.calls: list[dict] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "mock"

    async def send(self, message, *, system_prompt=None, history=(), generation=None) -> AgentResponse:
        self.calls.append({
            "message": message,
            "system_prompt": system_prompt,
            "history": [(m.role, m.content) for m in history],
            "generation": generation,
        })
        return AgentResponse(text=self._response_text, model="mock-1")

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


class FlakyEngine(MockEngine):
    """Fails the first call, succeeds afterwards."""

    def __init__(self, raise_error: bool = False):
        super().__init__("Recovered")
        self.raise_error = raise_error

    async def send(self, message, **kwargs) -> AgentResponse:
        if not self.calls:
            self.calls.append({"message": message, "failed": True})
            if self.raise_error:
                raise ConnectionError("socket closed")
            return AgentResponse(text="[Anthropic API error: 529]", is_error=True)
        return await super().send(message, **kwargs)


def _msg(text: str, chat_id: str = "test-1", **kwargs) -> IncomingMessage:
    return IncomingMessage(text=text, chat_id=chat_id, sender="user", connector_name="cli", **kwargs)


@pytest.fixture
def config(tmp_path: Path) -> MnemoConfig:
    return MnemoConfig(data_dir=tmp_path / "data")


@pytest.fixture
def engine() -> MockEngine:
    return MockEngine()


@pytest.fixture
def app(config: MnemoConfig, engine: MockEngine) -> Mnemo:
    return Mnemo(config, engine=engine)


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_reply(self, app: Mnemo):
        response = await app.handle_message(_msg("Hello"))
        assert response.text == "Mock response"
        roles = [m.role for m in app.session("test-1").messages]
        assert roles == ["user", "model"]

    @pytest.mark.asyncio
    async def test_blank_message_ignored(self, app: Mnemo, engine: MockEngine):
        response = await app.handle_message(_msg("   "))
        assert response.text == ""
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_history_excludes_current_message(self, app: Mnemo, engine: MockEngine):
        await app.handle_message(_msg("first question"))
        await app.handle_message(_msg("second question"))
        assert engine.calls[1]["message"] == "second question"
        assert engine.calls[1]["history"] == [
            ("user", "first question"),
            ("model", "Mock response"),
        ]

    @pytest.mark.asyncio
    async def test_generation_settings_passed(self, app: Mnemo, engine: MockEngine):
        await app.handle_message(_msg("Hello"))
        assert engine.calls[0]["generation"] is app.config.generation

    @pytest.mark.asyncio
    async def test_title_truncated(self, app: Mnemo):
        await app.handle_message(_msg("x" * 40))
        assert app.session("test-1").title == "x" * 30 + "..."

    @pytest.mark.asyncio
    async def test_title_short_message(self, app: Mnemo):
        await app.handle_message(_msg("Hi there"))
        await app.handle_message(_msg("Later message"))
        assert app.session("test-1").title == "Hi there"

    @pytest.mark.asyncio
    async def test_title_from_attachment(self, app: Mnemo):
        await app.handle_message(_msg("", attachments=[Attachment("plan.md", "steps")]))
        assert app.session("test-1").title == "plan.md"

    @pytest.mark.asyncio
    async def test_attachments_folded_into_prompt(self, app: Mnemo, engine: MockEngine):
        await app.handle_message(_msg("Summarize", attachments=[Attachment("a.txt", "alpha")]))
        prompt = engine.calls[0]["message"]
        assert "FILE: a.txt\nCONTENT:\nalpha" in prompt
        assert prompt.endswith("User Question: Summarize")


class TestMemoryInjection:
    @pytest.mark.asyncio
    async def test_relevant_memories_in_system_prompt(self, app: Mnemo, engine: MockEngine):
        app.memory.add("User likes coffee")
        app.memory.add("User lives in Paris")
        await app.handle_message(_msg("Recommend a coffee roaster"))
        system_prompt = engine.calls[0]["system_prompt"]
        assert "RELEVANT USER FACTS (MEMORIES):\n1. User likes coffee" in system_prompt

    @pytest.mark.asyncio
    async def test_ranked_on_raw_text_not_attachments(self, app: Mnemo, engine: MockEngine):
        app.memory.add("User grows tomatoes")
        app.memory.add("User likes coffee")
        app.memory.add("User owns bicycles")
        app.memory.add("User reads poetry")
        await app.handle_message(
            _msg("coffee?", attachments=[Attachment("t.txt", "tomatoes tomatoes")])
        )
        system_prompt = engine.calls[0]["system_prompt"]
        assert "1. User likes coffee" in system_prompt
        assert "tomatoes" not in system_prompt

    @pytest.mark.asyncio
    async def test_memory_limit_from_config(self, config: MnemoConfig, engine: MockEngine):
        config.memory = MemoryConfig(limit=1)
        app = Mnemo(config, engine=engine)
        app.memory.add("User likes green tea")
        app.memory.add("User likes black tea")
        await app.handle_message(_msg("tea"))
        system_prompt = engine.calls[0]["system_prompt"]
        assert "1. User likes black tea" in system_prompt
        assert "2." not in system_prompt

    @pytest.mark.asyncio
    async def test_memory_disabled(self, config: MnemoConfig, engine: MockEngine):
        config.memory = MemoryConfig(enabled=False)
        app = Mnemo(config, engine=engine)
        app.memory.add("User likes coffee")
        await app.handle_message(_msg("coffee"))
        assert "MEMORIES" not in engine.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_custom_instructions(self, app: Mnemo, engine: MockEngine):
        app.config.instructions.user_context = "I am a nurse."
        app.config.instructions.response_style = "Be brief."
        await app.handle_message(_msg("Hello"))
        system_prompt = engine.calls[0]["system_prompt"]
        assert "USER CONTEXT:\nI am a nurse." in system_prompt
        assert "RESPONSE STYLE GUIDELINES:\nBe brief." in system_prompt


class TestErrors:
    @pytest.mark.asyncio
    async def test_error_reply(self, config: MnemoConfig):
        app = Mnemo(config, engine=FlakyEngine())
        response = await app.handle_message(_msg("Hello"))
        assert response.is_error
        assert response.text == ERROR_REPLY
        assert "529" in response.metadata["detail"]
        assert app.session("test-1").messages[-1].is_error

    @pytest.mark.asyncio
    async def test_engine_exception_becomes_error_reply(self, config: MnemoConfig):
        app = Mnemo(config, engine=FlakyEngine(raise_error=True))
        response = await app.handle_message(_msg("Hello"))
        assert response.is_error
        assert "socket closed" in response.metadata["detail"]

    @pytest.mark.asyncio
    async def test_error_dropped_on_next_turn(self, config: MnemoConfig):
        engine = FlakyEngine()
        app = Mnemo(config, engine=engine)
        await app.handle_message(_msg("Hello"))
        await app.handle_message(_msg("Again"))
        messages = app.session("test-1").messages
        assert not any(m.is_error for m in messages)
        assert engine.calls[1]["history"] == [("user", "Hello")]

    @pytest.mark.asyncio
    async def test_retry_after_error(self, config: MnemoConfig):
        engine = FlakyEngine()
        app = Mnemo(config, engine=engine)
        await app.handle_message(_msg("Hello"))
        response = await app.retry("test-1")
        assert response.text == "Recovered"
        messages = app.session("test-1").messages
        assert [(m.role, m.content) for m in messages] == [("user", "Hello"), ("model", "Recovered")]
        assert engine.calls[1]["message"] == "Hello"

    @pytest.mark.asyncio
    async def test_retry_empty_chat(self, app: Mnemo):
        assert await app.retry("nothing-here") is None

    @pytest.mark.asyncio
    async def test_no_engine_raises(self, config: MnemoConfig):
        app = Mnemo(config)
        with pytest.raises(RuntimeError, match="No engine configured"):
            await app.start()
        with pytest.raises(RuntimeError, match="No engine configured"):
            await app.handle_message(_msg("Hello"))


class TestSessions:
    @pytest.mark.asyncio
    async def test_lane_serialization(self, app: Mnemo):
        await asyncio.gather(
            app.handle_message(_msg("First")),
            app.handle_message(_msg("Second")),
        )
        roles = [m.role for m in app.session("test-1").messages]
        assert roles == ["user", "model", "user", "model"]

    @pytest.mark.asyncio
    async def test_chats_are_independent(self, app: Mnemo, engine: MockEngine):
        await app.handle_message(_msg("one", chat_id="a"))
        await app.handle_message(_msg("two", chat_id="b"))
        assert engine.calls[1]["history"] == []

    def test_new_chat(self, app: Mnemo):
        chat_id = app.new_chat()
        assert app.session(chat_id).title == "New Chat"
        assert app.new_chat() != chat_id

    @pytest.mark.asyncio
    async def test_clear_and_delete(self, app: Mnemo):
        await app.handle_message(_msg("Hello"))
        app.clear_chat("test-1")
        assert app.session("test-1").messages == []
        app.delete_chat("test-1")
        assert app.sessions == []

    @pytest.mark.asyncio
    async def test_search_sessions(self, app: Mnemo):
        await app.handle_message(_msg("Planning a trip to Lisbon", chat_id="trip"))
        await app.handle_message(_msg("Fix my regex", chat_id="code"))
        assert [s.id for s in app.search_sessions("LISBON")] == ["trip"]
        assert {s.id for s in app.search_sessions("mock response")} == {"code", "trip"}
        assert len(app.search_sessions("  ")) == 2

    @pytest.mark.asyncio
    async def test_feedback_toggles(self, app: Mnemo):
        await app.handle_message(_msg("Hello"))
        app.set_feedback("test-1", 1, "positive")
        assert app.session("test-1").messages[1].feedback == "positive"
        app.set_feedback("test-1", 1, "negative")
        assert app.session("test-1").messages[1].feedback == "negative"
        app.set_feedback("test-1", 1, "negative")
        assert app.session("test-1").messages[1].feedback is None


class TestExportImport:
    def test_export(self, app: Mnemo):
        app.memory.add("User likes coffee")
        app.config.instructions.user_context = "ctx"
        data = app.export_data()
        assert data["memories"] == ["User likes coffee"]
        assert data["customInstructions"] == {"userContext": "ctx", "responseStyle": ""}
        assert data["appSettings"]["topK"] == 40
        assert "exportDate" in data
        json.dumps(data)

    def test_import_full(self, app: Mnemo, tmp_path: Path, monkeypatch):
        app.import_data({
            "memories": ["fact one", "fact two"],
            "customInstructions": {"userContext": "I teach.", "responseStyle": "Formal."},
            "appSettings": {"temperature": 0.3, "topK": 10, "userName": "Robin"},
            "exportDate": "2026-01-01T00:00:00",
        })
        assert app.memory.list() == ["fact one", "fact two"]
        assert app.config.instructions.user_context == "I teach."
        assert app.config.generation.temperature == 0.3
        assert app.config.generation.top_k == 10
        assert app.config.profile.user_name == "Robin"

        monkeypatch.setenv("MNEMO_DATA_DIR", str(app.config.data_dir))
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("MNEMO_TEMPERATURE", raising=False)
        reloaded = load_config()
        assert reloaded.generation.temperature == 0.3
        assert reloaded.instructions.response_style == "Formal."

    def test_import_partial(self, app: Mnemo):
        app.memory.add("keep me")
        app.import_data({"customInstructions": {"responseStyle": "Terse."}})
        assert app.memory.list() == ["keep me"]
        assert app.config.instructions.response_style == "Terse."

    @pytest.mark.parametrize("data", [[1, 2], "text", {"memories": "not a list"}])
    def test_import_invalid(self, app: Mnemo, data):
        with pytest.raises(ValueError):
            app.import_data(data)

    @pytest.mark.parametrize("settings", [
        {"temperature": None},
        {"topK": [40]},
        {"maxOutputTokens": "lots"},
        {"model": None},
    ])
    def test_import_bad_setting_type_is_value_error(self, app: Mnemo, settings):
        with pytest.raises(ValueError, match="Invalid import data"):
            app.import_data({"appSettings": settings})

    def test_failed_import_changes_nothing(self, app: Mnemo):
        app.memory.add("keep me")
        model = app.config.generation.model
        with pytest.raises(ValueError):
            app.import_data({
                "memories": ["new"],
                "customInstructions": {"userContext": "replaced"},
                "appSettings": {"model": "gemini-x", "temperature": "hot"},
            })
        assert app.memory.list() == ["keep me"]
        assert app.config.generation.model == model
        assert app.config.instructions.user_context == ""
        assert not (app.config.data_dir / "settings.json").exists()

    def test_import_exported_top_p_none(self, app: Mnemo):
        app.import_data(app.export_data())
        assert app.config.generation.top_p is None


class TestSettings:
    def test_set_setting_persists(self, app: Mnemo, tmp_path: Path, monkeypatch):
        app.set_setting("temperature", "0.2")
        app.set_setting("max_tokens", "1024")
        app.set_setting("user_context", "I run a bakery.")
        assert app.config.generation.temperature == 0.2
        assert app.config.generation.max_output_tokens == 1024

        monkeypatch.setenv("MNEMO_DATA_DIR", str(app.config.data_dir))
        monkeypatch.chdir(tmp_path)
        for key in ("MNEMO_TEMPERATURE", "MNEMO_MAX_TOKENS"):
            monkeypatch.delenv(key, raising=False)
        reloaded = load_config()
        assert reloaded.generation.temperature == 0.2
        assert reloaded.generation.max_output_tokens == 1024
        assert reloaded.instructions.user_context == "I run a bakery."

    def test_top_p_can_be_unset(self, app: Mnemo):
        app.set_setting("top_p", "0.9")
        assert app.config.generation.top_p == 0.9
        app.set_setting("top_p", "none")
        assert app.config.generation.top_p is None

    def test_unknown_key(self, app: Mnemo):
        with pytest.raises(ValueError, match="Unknown setting"):
            app.set_setting("colour", "blue")

    def test_bad_value_leaves_config(self, app: Mnemo):
        with pytest.raises(ValueError, match="Invalid value for top_k"):
            app.set_setting("top_k", "many")
        assert app.config.generation.top_k == 40

    def test_snapshot_includes_editable_sections(self, app: Mnemo):
        app.set_setting("user_name", "Robin")
        snapshot = app.settings_snapshot()
        assert snapshot["profile"]["user_name"] == "Robin"
        assert snapshot["instructions"]["response_style"] == ""


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_closes_engine(self, app: Mnemo, engine: MockEngine):
        await app.stop()
        assert engine.closed is True

    @pytest.mark.asyncio
    async def test_stop_without_close(self, config: MnemoConfig):
        class NoClose:
            name = "plain"

        app = Mnemo(config, engine=NoClose())
        await app.stop()
