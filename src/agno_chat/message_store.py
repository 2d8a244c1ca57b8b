"""Pure operations over a session's ordered message tuple.

Every function returns a new tuple. Entries that are not touched keep their
identity so observers can compare by reference.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence

from agno_chat.models import Message, Role

Messages = tuple[Message, ...]


def append(messages: Sequence[Message], message: Message) -> Messages:
    return (*messages, message)


def insert_at(messages: Sequence[Message], index: int, message: Message) -> Messages:
    index = max(0, min(index, len(messages)))
    return (*messages[:index], message, *messages[index:])


def replace_by_id(messages: Sequence[Message], message_id: str, updater: Callable[[Message], Message]) -> Messages:
    return tuple(updater(m) if m.id == message_id else m for m in messages)


def remove_range(messages: Sequence[Message], start: int, count: int) -> Messages:
    if start < 0 or count <= 0:
        return tuple(messages)
    return (*messages[:start], *messages[start + count:])


def truncate_from(messages: Sequence[Message], index: int) -> Messages:
    return tuple(messages[: max(0, index)])


def index_of(messages: Sequence[Message], message_id: str) -> int:
    for i, m in enumerate(messages):
        if m.id == message_id:
            return i
    return -1


def find(messages: Sequence[Message], message_id: str) -> Message | None:
    i = index_of(messages, message_id)
    return messages[i] if i >= 0 else None


def deletion_range(messages: Sequence[Message], index: int) -> tuple[int, int]:
    """Return ``(start, count)`` for deleting ``messages[index]`` with its turn partner.

    A user prompt takes the reply that follows it; a reply takes the prompt
    before it. Any other role, or a lone half-turn, goes alone.
    """
    target = messages[index]
    if target.role == Role.USER:
        if index + 1 < len(messages) and messages[index + 1].role == Role.ASSISTANT:
            return index, 2
        return index, 1
    if target.role == Role.ASSISTANT:
        if index > 0 and messages[index - 1].role == Role.USER:
            return index - 1, 2
        return index, 1
    return index, 1
