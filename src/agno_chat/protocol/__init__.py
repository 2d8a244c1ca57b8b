from agno_chat.protocol.decoder import DONE_SENTINEL, FrameDecoder
from agno_chat.protocol.frames import (
    ContentDelta,
    Frame,
    RunCompletedFrame,
    TraceFrame,
    UnknownFrame,
    parse_frame,
)

__all__ = [
    "DONE_SENTINEL",
    "ContentDelta",
    "Frame",
    "FrameDecoder",
    "RunCompletedFrame",
    "TraceFrame",
    "UnknownFrame",
    "parse_frame",
]
