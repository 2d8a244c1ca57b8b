from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class RunState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


@dataclass(frozen=True)
class Agent:
    id: str
    name: str
    model: str = ""
    instructions: str = ""
    description: str = ""


@dataclass(frozen=True)
class Attachment:
    mime_type: str
    data: str
    name: str | None = None


@dataclass(frozen=True)
class LogEntry:
    id: str
    kind: str
    title: str
    timestamp: int
    agent_name: str | None = None
    detail: dict[str, Any] | None = None


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    text: str
    timestamp: int
    attachments: tuple[Attachment, ...] = ()
    is_streaming: bool = False
    logs: tuple[LogEntry, ...] = ()
    feedback: str | None = None
    metrics: dict[str, Any] | None = None
    agent_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        data["attachments"] = [asdict(a) for a in self.attachments]
        data["logs"] = [asdict(entry) for entry in self.logs]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data["id"]),
            role=Role(data["role"]),
            text=str(data.get("text", "")),
            timestamp=int(data.get("timestamp", 0)),
            attachments=tuple(Attachment(**a) for a in data.get("attachments") or ()),
            is_streaming=bool(data.get("is_streaming", False)),
            logs=tuple(LogEntry(**entry) for entry in data.get("logs") or ()),
            feedback=data.get("feedback"),
            metrics=data.get("metrics"),
            agent_name=data.get("agent_name"),
        )


@dataclass(frozen=True)
class Session:
    id: str
    agent_id: str
    title: str
    last_modified: int
    messages: tuple[Message, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "title": self.title,
            "last_modified": self.last_modified,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            id=str(data["id"]),
            agent_id=str(data["agent_id"]),
            title=str(data.get("title", "")),
            last_modified=int(data.get("last_modified", 0)),
            messages=tuple(Message.from_dict(m) for m in data.get("messages") or ()),
        )
