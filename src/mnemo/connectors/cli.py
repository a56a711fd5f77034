"""Local CLI REPL connector."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from mnemo.attachments import Attachment, UnsupportedAttachmentError, load_attachment
from mnemo.connectors.base import IncomingMessage
from mnemo.tools.memory_tools import get_memory_tools

if TYPE_CHECKING:
    from mnemo.connectors.base import MessageHandler
    from mnemo.core import Mnemo
    from mnemo.engines.base import AgentResponse

logger = logging.getLogger(__name__)

_CLI_SENDER = "user"
_INSTRUCTION_KEYS = {"context": "user_context", "style": "response_style"}

HELP_TEXT = """\
/remember <fact>   save a memory
/forget <n>        delete memory number n
/memories          list saved memories
/recall <query>    show memories that would be used for a message
/forget-all        delete every memory
/attach <path>     attach a text file to the next message
/new               start a new chat
/chats [query]     list (or search) chats
/clear             clear the current chat
/delete [id]       delete a chat (default: the current one)
/retry             re-send the last message
/settings          show current settings
/set <key> <value> change a setting (model, temperature, top_p, top_k,
                   max_tokens, user_name)
/instructions [context|style] [text]
                   show or change custom instructions
/export <path>     write memories and settings to a JSON file
/import <path>     load memories and settings from a JSON file
/help              this text
exit | quit        leave"""


class CLIConnector:
    """Interactive REPL connector: reads from stdin, writes to stdout."""

    def __init__(self, app: Mnemo, chat_id: str = "cli") -> None:
        self.app = app
        self.chat_id = chat_id
        self.pending: list[Attachment] = []
        self.tools = get_memory_tools(app.memory)
        self._running = False

    @property
    def name(self) -> str:
        return "cli"

    async def start(self, handler: MessageHandler) -> None:
        self._running = True
        loop = asyncio.get_event_loop()

        print("mnemo (type /help for commands, 'exit' or Ctrl+C to quit)")
        print("-" * 48)

        while self._running:
            try:
                line = await loop.run_in_executor(None, self._read_input)
            except (EOFError, KeyboardInterrupt):
                print("\nBye!")
                break

            if line is None or line.strip().lower() in ("exit", "quit"):
                print("Bye!")
                break

            text = line.strip()
            if not text:
                continue

            if text.startswith("/"):
                output = await self.run_command(text)
                if output:
                    print(output)
                continue

            msg = IncomingMessage(
                text=text,
                chat_id=self.chat_id,
                sender=_CLI_SENDER,
                connector_name=self.name,
                attachments=self.pending,
            )
            self.pending = []

            response = await handler(msg)
            await self.reply(self.chat_id, response)

    def _read_input(self) -> str | None:
        try:
            prompt = f"\n{self.app.config.profile.user_name}"
            if self.pending:
                prompt += f" [{len(self.pending)} file(s)]"
            sys.stdout.write(prompt + ": ")
            sys.stdout.flush()
            raw = sys.stdin.buffer.readline()
            if not raw:
                return None
            return raw.decode("utf-8", errors="replace").rstrip("\n")
        except EOFError:
            return None

    async def run_command(self, line: str) -> str:
        """Execute a slash command and return what to print."""
        cmd, _, arg = line[1:].partition(" ")
        cmd = cmd.lower()
        arg = arg.strip()

        if cmd == "help":
            return HELP_TEXT
        if cmd == "remember":
            return self.tools["remember"](arg)
        if cmd == "forget":
            return self.tools["forget"](arg)
        if cmd == "forget-all":
            return self.tools["clear_memories"]()
        if cmd == "memories":
            return self.tools["list_memories"]()
        if cmd == "recall":
            return self.tools["recall"](arg, self.app.config.memory.limit)
        if cmd == "attach":
            return self._attach(arg)
        if cmd == "new":
            self.chat_id = self.app.new_chat()
            self.pending = []
            return f"Started chat {self.chat_id}"
        if cmd == "chats":
            return self._list_chats(arg)
        if cmd == "delete":
            return self._delete(arg)
        if cmd == "clear":
            self.app.clear_chat(self.chat_id)
            return "Chat cleared."
        if cmd == "retry":
            response = await self.app.retry(self.chat_id)
            if response is None:
                return "Nothing to retry."
            await self.reply(self.chat_id, response)
            return ""
        if cmd == "settings":
            return json.dumps(self.app.settings_snapshot(), indent=2)
        if cmd == "set":
            return self._set(arg)
        if cmd == "instructions":
            return self._instructions(arg)
        if cmd == "export":
            return self._export(arg)
        if cmd == "import":
            return self._import(arg)
        return f"Unknown command: /{cmd} (try /help)"

    def _attach(self, arg: str) -> str:
        if not arg:
            return "Usage: /attach <path>"
        try:
            attachment = load_attachment(arg)
        except UnsupportedAttachmentError as e:
            return f"Could not attach: {e}"
        self.pending.append(attachment)
        return f"Attached {attachment.name} ({attachment.size} bytes)"

    def _list_chats(self, query: str) -> str:
        sessions = self.app.search_sessions(query)
        if not sessions:
            return "(no chats)"
        lines = []
        for s in sessions:
            marker = "*" if s.id == self.chat_id else " "
            lines.append(f"{marker} {s.id}  {s.title}  ({len(s.messages)} messages)")
        return "\n".join(lines)

    def _delete(self, arg: str) -> str:
        chat_id = arg or self.chat_id
        if arg and all(s.id != chat_id for s in self.app.sessions):
            return f"No chat with id {chat_id}"
        self.app.delete_chat(chat_id)
        if chat_id != self.chat_id:
            return f"Deleted chat {chat_id}"
        self.chat_id = self.app.new_chat()
        self.pending = []
        return f"Deleted chat {chat_id}, started chat {self.chat_id}"

    def _set(self, arg: str) -> str:
        key, _, value = arg.partition(" ")
        value = value.strip()
        if not key or not value:
            return "Usage: /set <key> <value>"
        try:
            self.app.set_setting(key.lower(), value)
        except ValueError as e:
            return str(e)
        except OSError as e:
            return f"Failed to save settings: {e}"
        return f"{key.lower()} = {value}"

    def _instructions(self, arg: str) -> str:
        instructions = self.app.config.instructions
        if not arg:
            return (
                f"User context: {instructions.user_context or '(none)'}\n"
                f"Response style: {instructions.response_style or '(none)'}"
            )
        which, _, text = arg.partition(" ")
        key = _INSTRUCTION_KEYS.get(which.lower())
        if key is None:
            return "Usage: /instructions [context|style] [text]"
        try:
            self.app.set_setting(key, text.strip())
        except OSError as e:
            return f"Failed to save settings: {e}"
        return "Custom instructions updated." if text.strip() else "Custom instructions cleared."

    def _export(self, arg: str) -> str:
        if not arg:
            return "Usage: /export <path>"
        path = Path(arg).expanduser()
        try:
            path.write_text(
                json.dumps(self.app.export_data(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            return f"Failed to export: {e}"
        return f"Exported to {path}"

    def _import(self, arg: str) -> str:
        if not arg:
            return "Usage: /import <path>"
        try:
            data = json.loads(Path(arg).expanduser().read_text(encoding="utf-8"))
            self.app.import_data(data)
        except (OSError, ValueError) as e:
            return f"Failed to import data: {e}"
        return "Data imported successfully."

    async def stop(self) -> None:
        self._running = False

    async def reply(self, chat_id: str, response: AgentResponse) -> None:
        print(f"\nmnemo: {response.text}")
        if response.cost_usd is not None:
            parts = [f"cost: ${response.cost_usd:.4f}"]
            if response.input_tokens is not None:
                parts.append(f"input: {response.input_tokens} tokens")
            if response.output_tokens is not None:
                parts.append(f"output: {response.output_tokens} tokens")
            print(f"  [{' | '.join(parts)}]", file=sys.stderr)
