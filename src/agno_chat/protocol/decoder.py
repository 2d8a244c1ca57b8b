from __future__ import annotations

import codecs

from loguru import logger

from agno_chat.protocol.frames import Frame, UnknownFrame, parse_frame

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"


class FrameDecoder:
    """Line-buffered decoder for a newline-delimited, optionally SSE-prefixed body.

    A frame may be split across two reads, so the trailing partial line is kept
    until the next chunk (or ``flush``) completes it.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped = 0

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> list[Frame]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse_lines([tail])

    def _parse_lines(self, lines: list[str]) -> list[Frame]:
        frames: list[Frame] = []
        for line in lines:
            frame = self._parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _parse_line(self, line: str) -> Frame | None:
        payload = line.strip()
        if not payload or payload == DONE_SENTINEL:
            return None
        if payload.startswith(DATA_PREFIX):
            payload = payload[len(DATA_PREFIX):].strip()
            if not payload or payload == DONE_SENTINEL:
                return None

        frame = parse_frame(payload)
        if isinstance(frame, UnknownFrame):
            self.dropped += 1
            logger.debug(f"Dropping unrecognized stream line: {payload[:200]!r}")
            return None
        return frame
