from __future__ import annotations

import dataclasses
import sqlite3
from collections.abc import Callable

from loguru import logger

from agno_chat import message_store
from agno_chat.errors import SessionNotFound
from agno_chat.models import Message, Session, new_id, now_ms
from agno_chat.storage import SessionStorage

DEFAULT_SESSION_TITLE = "New Chat"


class SessionRegistry:
    """Owns every session, the selection, and the persisted snapshot.

    Sessions are immutable values; every mutation swaps in a new ``Session`` and
    writes the whole collection back to storage.
    """

    def __init__(
        self,
        storage: SessionStorage,
        *,
        active_agent_id: str,
        default_title: str = DEFAULT_SESSION_TITLE,
        clock: Callable[[], int] = now_ms,
    ):
        self._storage = storage
        self._default_title = default_title
        self._clock = clock
        self._last_stamp = 0
        self._sessions: dict[str, Session] = {s.id: s for s in self._load()}
        for session in self._sessions.values():
            self._last_stamp = max(self._last_stamp, session.last_modified)
        self._active_agent_id = active_agent_id
        self._selected_id: str | None = None
        self.repair_selection()

    @property
    def active_agent_id(self) -> str:
        return self._active_agent_id

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    def selected(self) -> Session | None:
        if self._selected_id is None:
            return None
        return self._sessions.get(self._selected_id)

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session does not exist: {session_id}")
        return session

    def find(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_all(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.last_modified, reverse=True)

    def list_for_agent(self, agent_id: str) -> list[Session]:
        return [s for s in self.list_all() if s.agent_id == agent_id]

    def create(self, agent_id: str, title: str | None = None, *, select: bool = True) -> Session:
        session = Session(
            id=new_id(),
            agent_id=agent_id,
            title=(title or self._default_title).strip() or self._default_title,
            last_modified=self._next_stamp(),
        )
        self._sessions[session.id] = session
        if select:
            self._selected_id = session.id
        self._persist()
        logger.info(f"Created session {session.id} for agent {agent_id}")
        return session

    def select(self, session_id: str) -> Session:
        session = self.get(session_id)
        self._selected_id = session.id
        self._active_agent_id = session.agent_id
        return session

    def deselect(self) -> None:
        self._selected_id = None

    def set_active_agent(self, agent_id: str) -> Session:
        self._active_agent_id = agent_id
        return self.repair_selection()

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFound(f"Session does not exist: {session_id}")
        logger.info(f"Deleted session {session_id}")
        if self._selected_id == session_id:
            self._selected_id = None
        self._persist()
        self.repair_selection()

    def rename(self, session_id: str, title: str) -> Session:
        session = dataclasses.replace(self.get(session_id), title=title.strip())
        self._sessions[session_id] = session
        self._persist()
        return session

    def update_messages(
        self,
        session_id: str,
        updater: Callable[[tuple[Message, ...]], tuple[Message, ...]],
        *,
        title: str | None = None,
    ) -> Session:
        """Apply ``updater`` to the session's messages and bump ``last_modified``."""
        current = self.get(session_id)
        changes: dict = {"messages": updater(current.messages), "last_modified": self._next_stamp()}
        if title is not None:
            changes["title"] = title
        session = dataclasses.replace(current, **changes)
        self._sessions[session_id] = session
        self._persist()
        return session

    def replace_message(
        self,
        session_id: str,
        message_id: str,
        updater: Callable[[Message], Message],
    ) -> Session | None:
        """``replace_by_id`` on one session; a session deleted mid-run is ignored."""
        if session_id not in self._sessions:
            logger.debug(f"Ignoring update for removed session {session_id}")
            return None
        return self.update_messages(
            session_id,
            lambda messages: message_store.replace_by_id(messages, message_id, updater),
        )

    def repair_selection(self) -> Session:
        """Keep the selection on a session owned by the active agent.

        Falls back to the agent's most recent session, creating one when the
        agent has none.
        """
        selected = self.selected()
        if selected is not None and selected.agent_id == self._active_agent_id:
            return selected
        candidates = self.list_for_agent(self._active_agent_id)
        if candidates:
            self._selected_id = candidates[0].id
            return candidates[0]
        return self.create(self._active_agent_id, self._default_title)

    def snapshot(self) -> list[dict]:
        return [s.to_dict() for s in self.list_all()]

    def _next_stamp(self) -> int:
        self._last_stamp = max(self._clock(), self._last_stamp + 1)
        return self._last_stamp

    def _persist(self) -> None:
        self._storage.save(self.snapshot())

    def _load(self) -> list[Session]:
        try:
            raw = self._storage.load()
        except (OSError, ValueError, sqlite3.Error) as ex:
            logger.warning(f"Stored sessions unreadable, starting empty: {ex}")
            return []
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Stored sessions are not a list, starting empty")
            return []
        try:
            sessions = [Session.from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError) as ex:
            logger.warning(f"Stored sessions corrupt, starting empty: {ex}")
            return []
        # Nothing can still be streaming after a restart.
        return [
            dataclasses.replace(
                s,
                messages=tuple(
                    dataclasses.replace(m, is_streaming=False) if m.is_streaming else m
                    for m in s.messages
                ),
            )
            for s in sessions
        ]
