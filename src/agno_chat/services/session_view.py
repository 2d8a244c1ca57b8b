from __future__ import annotations

from datetime import datetime

from agno_chat.models import LogEntry, Message, Session


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


class SessionView:
    """Plain-text rendering of sessions, messages and trace entries for the REPL."""

    def __init__(self, *, line_prefix: str, short_id_len: int = 8, preview_len: int = 60):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._preview_len = preview_len

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def preview(self, text: str) -> str:
        flat = " ".join(text.split())
        if len(flat) <= self._preview_len:
            return flat
        return flat[: self._preview_len - 3] + "..."

    def format_session_entry(self, session: Session, *, selected_id: str | None) -> str:
        marker = "*" if session.id == selected_id else " "
        return (
            f"{self._line_prefix}{marker} {session.title} [{self.short_id(session.id)}] "
            f"(messages={len(session.messages)}, updated={_format_ms(session.last_modified)})"
        )

    def format_message_entry(self, message: Message) -> str:
        flags = []
        if message.is_streaming:
            flags.append("streaming")
        if message.feedback:
            flags.append(f"feedback={message.feedback}")
        if message.logs:
            flags.append(f"trace={len(message.logs)}")
        suffix = f" ({', '.join(flags)})" if flags else ""
        return (
            f"{self._line_prefix}[{self.short_id(message.id)}] {message.role.value}: "
            f"{self.preview(message.text)}{suffix}"
        )

    def format_trace_entry(self, entry: LogEntry) -> str:
        agent = f" <{entry.agent_name}>" if entry.agent_name else ""
        return f"{self._line_prefix}{_format_ms(entry.timestamp)} [{entry.kind}] {entry.title}{agent}"
