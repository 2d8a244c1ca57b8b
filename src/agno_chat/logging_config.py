import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

# Every record carries the session and run it belongs to; unbound records show "-".
_DEFAULT_EXTRA = {"session": "-", "run": "-"}

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> "
    "[{extra[session]}] - <level>{message}</level>"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | session={extra[session]} run={extra[run]} | "
    "{name}:{function}:{line} - {message}"
)


def _is_run_record(record: dict[str, Any]) -> bool:
    return record["extra"].get("run", "-") != "-"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """stderr sink; stdout belongs to the streamed replies."""

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = ".agno_chat/agno_chat.log",
        rotation: str = "10 MB",
        retention: int = 3,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


class RunLogConsumer:
    """JSON lines holding only records emitted while a run was streaming."""

    def __init__(self, path: str = ".agno_chat/runs.jsonl", rotation: str = "10 MB", retention: int = 3):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            filter=_is_run_record,
            serialize=True,
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"runs ({self._path}, jsonl, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "runs": RunLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all sinks with the configured consumers. Returns their descriptions."""
    logger.remove()
    logger.configure(extra=_DEFAULT_EXTRA)

    descriptions: list[str] = []
    unknown: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            unknown.append(str(sink_type))
            continue
        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)
        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    # After registration, or the warning has no sink.
    for sink_type in unknown:
        logger.warning(f"Unknown log consumer type: {sink_type!r}")

    return descriptions
