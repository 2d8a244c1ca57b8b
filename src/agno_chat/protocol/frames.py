from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from agno_chat.models import LogEntry, new_id, now_ms

RUN_CONTENT = "RunContent"
RUN_COMPLETED = "RunCompleted"

# Execution-trace events and the log kind each one maps to.
TRACE_EVENT_KINDS: dict[str, str] = {
    "RunStarted": "step",
    "ReasoningStarted": "step",
    "ReasoningStep": "step",
    "ReasoningCompleted": "step",
    "ToolCallStarted": "tool",
    "ToolCallCompleted": "tool",
    "MemoryUpdateStarted": "rag",
    "MemoryUpdateCompleted": "rag",
    "RunError": "error",
    "RunCancelled": "error",
}


@dataclass(frozen=True)
class ContentDelta:
    content: str


@dataclass(frozen=True)
class RunCompletedFrame:
    content: str = ""
    metrics: dict[str, Any] | None = None


@dataclass(frozen=True)
class TraceFrame:
    event: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_log_entry(self) -> LogEntry:
        return LogEntry(
            id=new_id(),
            kind=TRACE_EVENT_KINDS.get(self.event, "step"),
            title=_trace_title(self.event, self.payload),
            timestamp=now_ms(),
            agent_name=self.payload.get("agent_name"),
            detail=_trace_detail(self.payload),
        )


@dataclass(frozen=True)
class UnknownFrame:
    raw: str


Frame = Union[ContentDelta, RunCompletedFrame, TraceFrame, UnknownFrame]


def parse_frame(payload: str) -> Frame:
    """Map one JSON line onto a frame, keyed by its ``event`` field."""
    try:
        data = json.loads(payload)
    except ValueError:
        return UnknownFrame(payload)
    if not isinstance(data, dict):
        return UnknownFrame(payload)

    event = data.get("event")
    if event == RUN_CONTENT:
        content = data.get("content")
        return ContentDelta(content if isinstance(content, str) else "")
    if event == RUN_COMPLETED:
        content = data.get("content")
        metrics = data.get("metrics")
        return RunCompletedFrame(
            content=content if isinstance(content, str) else "",
            metrics=metrics if isinstance(metrics, dict) else None,
        )
    if event in TRACE_EVENT_KINDS:
        return TraceFrame(event=event, payload=data)
    return UnknownFrame(payload)


def _trace_title(event: str, payload: dict[str, Any]) -> str:
    tool = payload.get("tool")
    if isinstance(tool, dict) and tool.get("tool_name"):
        return f"{event}: {tool['tool_name']}"
    if event in ("RunError", "RunCancelled") and isinstance(payload.get("content"), str):
        return f"{event}: {payload['content']}"
    return event


def _trace_detail(payload: dict[str, Any]) -> dict[str, Any] | None:
    detail = {k: v for k, v in payload.items() if k not in ("event", "agent_name")}
    return detail or None
