from __future__ import annotations

from pathlib import Path

from loguru import logger

from agno_chat.agents import AgentDirectory
from agno_chat.commands.router import CommandRouter
from agno_chat.controller import ChatController
from agno_chat.errors import ChatEngineError
from agno_chat.models import Message
from agno_chat.services.session_view import SessionView


class ChatShell:
    """Interactive front end over a ``ChatController``: slash commands plus live streaming output."""

    _LINE_PREFIX = "assistant> "

    def __init__(self, controller: ChatController, agents: AgentDirectory, *, user_name: str = "User"):
        self._controller = controller
        self._agents = agents
        self._user_name = user_name
        self._view = SessionView(line_prefix=self._LINE_PREFIX)
        self._printed: dict[str, str] = {}
        self._controller.set_message_observer(self._on_message_changed)
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_session=self._handle_session_command,
            on_agent=self._handle_agent_command,
            on_message=self._handle_message_command,
            on_run=self._handle_run_command,
            on_export=self._handle_export_command,
            on_unknown=self._on_unknown_command,
        )

    async def handle(self, user_input: str) -> None:
        if await self._command_router.try_handle(user_input):
            return
        handle = self._controller.send(user_input)
        if handle is None:
            print(f"{self._LINE_PREFIX}A reply is still streaming; use /cancel to stop it.")
            return
        print(self._LINE_PREFIX, end="", flush=True)
        await handle.wait()
        print()

    def _on_message_changed(self, session_id: str, message: Message) -> None:
        if session_id != self._controller.registry.selected_id:
            return
        shown = self._printed.get(message.id, "")
        if message.text.startswith(shown):
            print(message.text[len(shown):], end="", flush=True)
        else:
            # The completion text replaced what was streamed so far.
            print(f"\n{self._LINE_PREFIX}{message.text}", end="", flush=True)
        if message.is_streaming:
            self._printed[message.id] = message.text
        else:
            self._printed.pop(message.id, None)

    async def _on_help(self) -> None:
        lines = [
            "Commands:",
            "/session | /session list | /session new | /session select <id> | /session delete <id> | /session name <title>",
            "/agent | /agent list | /agent use <id>",
            "/messages | /edit <id> <text> | /delete <id> | /feedback <id> up|down | /clear",
            "/cancel | /trace",
            "/export [path]",
        ]
        for line in lines:
            print(f"{self._LINE_PREFIX}{line}")

    async def _handle_session_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        action = parts[1] if len(parts) > 1 else ""
        registry = self._controller.registry

        if action in ("", "list"):
            for session in self._controller.sessions():
                print(self._view.format_session_entry(session, selected_id=registry.selected_id))
            return
        if action == "new":
            self._controller.new_chat()
            print(f"{self._LINE_PREFIX}Started a new chat.")
            return
        if len(parts) < 3:
            print(f"{self._LINE_PREFIX}Usage: /session {action} <argument>")
            return

        argument = parts[2].strip()
        try:
            if action == "select":
                session = self._controller.select_session(self._resolve_session_id(argument))
                print(f"{self._LINE_PREFIX}Selected {session.title} ({session.agent_id})")
            elif action == "delete":
                self._controller.delete_session(self._resolve_session_id(argument))
                print(f"{self._LINE_PREFIX}Session deleted.")
            elif action == "name":
                current = self._controller.current_session()
                if current is None:
                    print(f"{self._LINE_PREFIX}No session selected.")
                    return
                session = self._controller.rename_session(current.id, argument)
                print(f"{self._LINE_PREFIX}Renamed to {session.title}")
            else:
                self._on_unknown_command(command)
        except (ChatEngineError, ValueError) as ex:
            print(f"{self._LINE_PREFIX}{ex}")

    async def _handle_agent_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        action = parts[1] if len(parts) > 1 else ""
        active = self._controller.registry.active_agent_id
        if action in ("", "list"):
            for agent in self._agents.list():
                marker = "*" if agent.id == active else " "
                print(f"{self._LINE_PREFIX}{marker} {agent.name} [{agent.id}] ({agent.model}) {agent.description}")
            return
        if action == "use" and len(parts) == 3:
            session = self._controller.set_active_agent(parts[2].strip())
            print(f"{self._LINE_PREFIX}Active agent {parts[2].strip()}; session {session.title}")
            return
        print(f"{self._LINE_PREFIX}Usage: /agent list | /agent use <id>")

    async def _handle_message_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        name = parts[0]
        try:
            if name != "/messages":
                self._controller.ensure_idle()
            if name == "/messages":
                for message in self._controller.messages():
                    print(self._view.format_message_entry(message))
            elif name == "/clear":
                if self._controller.clear_chat():
                    print(f"{self._LINE_PREFIX}Chat cleared.")
            elif name == "/delete" and len(parts) >= 2:
                removed = self._controller.delete_message(self._resolve_message_id(parts[1]))
                print(f"{self._LINE_PREFIX}Removed {removed} message(s).")
            elif name == "/feedback" and len(parts) == 3:
                self._controller.set_feedback(self._resolve_message_id(parts[1]), parts[2].strip())
            elif name == "/edit" and len(parts) == 3:
                handle = self._controller.edit_and_regenerate(self._resolve_message_id(parts[1]), parts[2])
                if handle is not None:
                    print(self._LINE_PREFIX, end="", flush=True)
                    await handle.wait()
                    print()
            else:
                print(f"{self._LINE_PREFIX}Usage: /edit <id> <text> | /delete <id> | /feedback <id> up|down")
        except (ChatEngineError, ValueError) as ex:
            print(f"{self._LINE_PREFIX}{ex}")

    async def _handle_run_command(self, command: str) -> None:
        if command.startswith("/cancel"):
            if not self._controller.cancel():
                print(f"{self._LINE_PREFIX}Nothing is streaming.")
            return
        trace = self._controller.live_trace()
        if not trace:
            print(f"{self._LINE_PREFIX}No trace entries for the last run.")
        for entry in trace:
            print(self._view.format_trace_entry(entry))

    async def _handle_export_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        content = self._controller.export_markdown(user_name=self._user_name)
        if len(parts) == 1:
            print(content)
            return
        path = Path(parts[1].strip())
        path.write_text(content, encoding="utf-8")
        logger.info(f"Exported session to {path}")
        print(f"{self._LINE_PREFIX}Exported to {path}")

    def _on_unknown_command(self, command: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown command: {command}. Type /help.")

    def _resolve_message_id(self, prefix: str) -> str:
        prefix = prefix.strip()
        matches = [m.id for m in self._controller.messages() if m.id.startswith(prefix)]
        if len(matches) != 1:
            raise ValueError(f"Message id {prefix!r} matches {len(matches)} messages")
        return matches[0]

    def _resolve_session_id(self, prefix: str) -> str:
        matches = [s.id for s in self._controller.registry.list_all() if s.id.startswith(prefix)]
        if len(matches) != 1:
            raise ValueError(f"Session id {prefix!r} matches {len(matches)} sessions")
        return matches[0]
