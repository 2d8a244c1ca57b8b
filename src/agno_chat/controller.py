from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from agno_chat import message_store
from agno_chat.agents import AgentDirectory
from agno_chat.errors import ConcurrencyViolation, EditTargetInvalid
from agno_chat.models import (
    Attachment,
    LogEntry,
    Message,
    Role,
    RunState,
    Session,
    new_id,
    now_ms,
)
from agno_chat.run_client import RunClient, RunHandle
from agno_chat.session_registry import SessionRegistry

TITLE_LENGTH = 30
_FEEDBACK_VALUES = {"up", "down", None}


def derive_title(text: str, length: int = TITLE_LENGTH) -> str:
    title = text[:length]
    if len(text) > length:
        title += "..."
    return title


@dataclass
class _SessionRun:
    state: RunState = RunState.IDLE
    handle: RunHandle | None = None
    placeholder_id: str | None = None
    live_trace: list[LogEntry] = field(default_factory=list)
    last_error: str | None = None


class ChatController:
    """Applies user actions and run output to the session log.

    Each session has its own Idle/Streaming flag and its own run handle, so
    several sessions may stream at once without touching each other.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        run_client: RunClient,
        agents: AgentDirectory,
        documents: Callable[[], Sequence[dict[str, Any]]] | None = None,
        on_message_changed: Callable[[str, Message], None] | None = None,
    ):
        self._registry = registry
        self._run_client = run_client
        self._agents = agents
        self._documents = documents
        self._on_message_changed = on_message_changed
        self._runs: dict[str, _SessionRun] = {}

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def set_message_observer(self, callback: Callable[[str, Message], None] | None) -> None:
        self._on_message_changed = callback

    # -- read side ---------------------------------------------------------

    def sessions(self) -> list[Session]:
        return self._registry.list_for_agent(self._registry.active_agent_id)

    def current_session(self) -> Session | None:
        return self._registry.selected()

    def messages(self, session_id: str | None = None) -> tuple[Message, ...]:
        session = self._resolve(session_id)
        return session.messages if session is not None else ()

    def state(self, session_id: str | None = None) -> RunState:
        sid = session_id or self._registry.selected_id
        run = self._runs.get(sid) if sid else None
        return run.state if run is not None else RunState.IDLE

    def is_streaming(self, session_id: str | None = None) -> bool:
        return self.state(session_id) is RunState.STREAMING

    def live_trace(self, session_id: str | None = None) -> list[LogEntry]:
        sid = session_id or self._registry.selected_id
        run = self._runs.get(sid) if sid else None
        return list(run.live_trace) if run is not None else []

    def last_error(self, session_id: str | None = None) -> str | None:
        sid = session_id or self._registry.selected_id
        run = self._runs.get(sid) if sid else None
        return run.last_error if run is not None else None

    def active_handle(self, session_id: str | None = None) -> RunHandle | None:
        sid = session_id or self._registry.selected_id
        run = self._runs.get(sid) if sid else None
        return run.handle if run is not None else None

    def ensure_idle(self, session_id: str | None = None) -> None:
        """Raise ``ConcurrencyViolation`` if the session has a run in flight."""
        if self.is_streaming(session_id):
            raise ConcurrencyViolation("A reply is still streaming; cancel it first.")

    async def wait_idle(self, session_id: str | None = None) -> None:
        handle = self.active_handle(session_id)
        if handle is not None:
            await handle.wait()

    # -- session selection -------------------------------------------------

    def select_session(self, session_id: str) -> Session:
        return self._registry.select(session_id)

    def set_active_agent(self, agent_id: str) -> Session:
        return self._registry.set_active_agent(agent_id)

    def new_chat(self) -> None:
        """Drop the selection; the next ``send`` creates the session."""
        self._registry.deselect()

    def delete_session(self, session_id: str) -> None:
        self.cancel(session_id)
        self._runs.pop(session_id, None)
        self._registry.delete(session_id)

    def rename_session(self, session_id: str, title: str) -> Session:
        return self._registry.rename(session_id, title)

    # -- mutating operations -----------------------------------------------

    def send(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        *,
        session_id: str | None = None,
    ) -> RunHandle | None:
        """Append the prompt and a streaming placeholder, then start the run.

        Returns None without touching the session when a run is already in flight.
        """
        session = self._resolve(session_id)
        if session is None:
            session = self._registry.create(self._registry.active_agent_id)
        if self._reject_while_streaming(session.id, "send"):
            return None

        prior = session.messages
        title = derive_title(text) if not prior else None
        user_message = Message(
            id=new_id(),
            role=Role.USER,
            text=text,
            timestamp=now_ms(),
            attachments=tuple(attachments),
        )
        self._registry.update_messages(
            session.id,
            lambda messages: message_store.append(messages, user_message),
            title=title,
        )
        return self._start_run(session.id, session.agent_id, prior, user_message)

    def edit_and_regenerate(
        self,
        message_id: str,
        new_text: str,
        *,
        session_id: str | None = None,
    ) -> RunHandle | None:
        """Replace a user prompt, discard everything after it and regenerate the reply."""
        session = self._require(session_id)
        if self._reject_while_streaming(session.id, "edit"):
            return None

        index = message_store.index_of(session.messages, message_id)
        if index < 0:
            raise EditTargetInvalid(f"Message does not exist: {message_id}")
        target = session.messages[index]
        if target.role != Role.USER:
            raise EditTargetInvalid(f"Only user messages can be edited, got {target.role.value}")

        prior = session.messages[:index]
        edited = Message(
            id=new_id(),
            role=Role.USER,
            text=new_text,
            timestamp=now_ms(),
            attachments=target.attachments,
        )
        self._registry.update_messages(
            session.id,
            lambda messages: message_store.insert_at(
                message_store.truncate_from(messages, index), index, edited
            ),
        )
        logger.info(f"Edited message {message_id} in session {session.id}; regenerating from index {index}")
        return self._start_run(session.id, session.agent_id, prior, edited)

    def delete_message(self, message_id: str, *, session_id: str | None = None) -> int:
        """Delete a message with its turn partner. Returns the number of entries removed."""
        session = self._require(session_id)
        if self._reject_while_streaming(session.id, "delete"):
            return 0
        index = message_store.index_of(session.messages, message_id)
        if index < 0:
            return 0
        start, count = message_store.deletion_range(session.messages, index)
        self._registry.update_messages(
            session.id,
            lambda messages: message_store.remove_range(messages, start, count),
        )
        return count

    def cancel(self, session_id: str | None = None) -> bool:
        sid = session_id or self._registry.selected_id
        run = self._runs.get(sid) if sid else None
        if run is None or run.state is not RunState.STREAMING:
            return False
        if run.handle is not None:
            run.handle.cancel()
        placeholder_id = run.placeholder_id
        self._finish(run)
        if placeholder_id is not None:
            self._update_placeholder(
                sid,
                placeholder_id,
                lambda m: dataclasses.replace(m, is_streaming=False),
            )
        logger.info(f"Cancelled run in session {sid}")
        return True

    def set_feedback(self, message_id: str, feedback: str | None, *, session_id: str | None = None) -> None:
        if feedback not in _FEEDBACK_VALUES:
            raise ValueError(f"Feedback must be 'up', 'down' or None, got {feedback!r}")
        session = self._require(session_id)
        self._registry.replace_message(
            session.id,
            message_id,
            lambda m: dataclasses.replace(m, feedback=feedback),
        )

    def clear_chat(self, session_id: str | None = None) -> bool:
        session = self._require(session_id)
        if self._reject_while_streaming(session.id, "clear"):
            return False
        self._registry.update_messages(session.id, lambda _: ())
        return True

    def export_markdown(self, session_id: str | None = None, *, user_name: str = "User") -> str:
        session = self._require(session_id)
        agent = self._agents.get(session.agent_id)
        blocks = []
        for m in session.messages:
            if m.role == Role.USER:
                speaker = user_name
            else:
                speaker = m.agent_name or agent.name
            stamp = datetime.fromtimestamp(m.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
            blocks.append(f"### {speaker} ({stamp})\n\n{m.text}\n")
        return "\n---\n\n".join(blocks)

    # -- run wiring --------------------------------------------------------

    def _start_run(
        self,
        session_id: str,
        agent_id: str,
        prior: Sequence[Message],
        prompt: Message,
    ) -> RunHandle:
        agent = self._agents.get(agent_id)
        placeholder = Message(
            id=new_id(),
            role=Role.ASSISTANT,
            text="",
            timestamp=now_ms(),
            is_streaming=True,
            agent_name=agent.name,
        )
        self._registry.update_messages(
            session_id,
            lambda messages: message_store.append(messages, placeholder),
        )

        run = self._runs.setdefault(session_id, _SessionRun())
        run.state = RunState.STREAMING
        run.placeholder_id = placeholder.id
        run.live_trace = []
        run.last_error = None

        def owns_placeholder() -> bool:
            return run.state is RunState.STREAMING and run.placeholder_id == placeholder.id

        def on_content(text: str) -> None:
            if not owns_placeholder():
                return
            self._update_placeholder(session_id, placeholder.id, lambda m: dataclasses.replace(m, text=text))

        def on_complete(text: str, metrics: dict[str, Any] | None) -> None:
            if not owns_placeholder():
                return
            self._finish(run)
            self._update_placeholder(
                session_id,
                placeholder.id,
                lambda m: dataclasses.replace(m, text=text, is_streaming=False, metrics=metrics),
            )

        def on_error(error: Exception) -> None:
            if not owns_placeholder():
                return
            self._finish(run)
            run.last_error = str(error)
            logger.error(f"Run in session {session_id} failed: {error}")
            self._update_placeholder(
                session_id,
                placeholder.id,
                lambda m: dataclasses.replace(m, text=f"Error: {error}", is_streaming=False),
            )

        def on_trace(entry: LogEntry) -> None:
            if not owns_placeholder():
                return
            run.live_trace.append(entry)
            self._update_placeholder(
                session_id,
                placeholder.id,
                lambda m: dataclasses.replace(m, logs=(*m.logs, entry)),
            )

        try:
            run.handle = self._run_client.start(
                agent,
                prior,
                prompt.text,
                prompt.attachments,
                on_content=on_content,
                on_complete=on_complete,
                on_error=on_error,
                on_trace=on_trace,
                session_id=session_id,
                documents=self._documents() if self._documents is not None else None,
            )
        except Exception as ex:
            # The placeholder must not stay streaming when no run exists.
            on_error(ex)
            raise
        return run.handle

    def _finish(self, run: _SessionRun) -> None:
        run.state = RunState.IDLE
        run.handle = None
        run.placeholder_id = None

    def _update_placeholder(
        self,
        session_id: str,
        message_id: str,
        updater: Callable[[Message], Message],
    ) -> None:
        session = self._registry.replace_message(session_id, message_id, updater)
        if session is None or self._on_message_changed is None:
            return
        message = message_store.find(session.messages, message_id)
        if message is not None:
            self._on_message_changed(session_id, message)

    # -- helpers -----------------------------------------------------------

    def _reject_while_streaming(self, session_id: str, operation: str) -> bool:
        if self.is_streaming(session_id):
            logger.warning(f"Rejected {operation} on session {session_id}: a run is already streaming")
            return True
        return False

    def _resolve(self, session_id: str | None) -> Session | None:
        if session_id is not None:
            return self._registry.get(session_id)
        return self._registry.selected()

    def _require(self, session_id: str | None) -> Session:
        session = self._resolve(session_id)
        if session is None:
            return self._registry.repair_selection()
        return session
