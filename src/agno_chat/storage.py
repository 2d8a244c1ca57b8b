from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

SESSIONS_KEY = "agno_chat_sessions"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@runtime_checkable
class SessionStorage(Protocol):
    def load(self) -> Any | None:
        """Return the last saved snapshot, or None when nothing was stored."""
        ...

    def save(self, snapshot: list[dict[str, Any]]) -> None: ...


class InMemorySessionStorage:
    def __init__(self, snapshot: Any | None = None):
        self.snapshot = snapshot
        self.save_count = 0

    def load(self) -> Any | None:
        return self.snapshot

    def save(self, snapshot: list[dict[str, Any]]) -> None:
        self.snapshot = snapshot
        self.save_count += 1


class JsonFileSessionStorage:
    def __init__(self, path: str):
        self._path = Path(path)

    def load(self) -> Any | None:
        if not self._path.exists():
            return None
        return json.loads(self._path.read_text(encoding="utf-8"))

    def save(self, snapshot: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._path)


class SqliteSessionStorage:
    """Whole-collection snapshots kept as a single key/value row.

    A file that is not a readable SQLite database is renamed to ``<name>.corrupt``
    and replaced by an empty one.
    """

    def __init__(self, db_path: str, *, key: str = SESSIONS_KEY):
        self._key = key
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._open()
        except sqlite3.DatabaseError as ex:
            if db_path == ":memory:":
                raise
            corrupt_path = Path(db_path).with_name(Path(db_path).name + ".corrupt")
            Path(db_path).replace(corrupt_path)
            logger.warning(f"Session database {db_path} unreadable ({ex}); moved to {corrupt_path}")
            self._open()

    def _open(self) -> None:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self._conn = conn
        try:
            self._initialize_schema()
        except sqlite3.DatabaseError:
            conn.close()
            raise

    def close(self) -> None:
        self._conn.close()

    def load(self) -> Any | None:
        try:
            row = self._conn.execute(
                "SELECT value_json FROM snapshots WHERE key = ? LIMIT 1",
                (self._key,),
            ).fetchone()
        except sqlite3.DatabaseError as ex:
            raise ValueError(f"Session database unreadable: {ex}") from ex
        if row is None:
            return None
        return json.loads(row["value_json"])

    def save(self, snapshot: list[dict[str, Any]]) -> None:
        self._conn.execute(
            """
            INSERT INTO snapshots (key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
            """,
            (self._key, json.dumps(snapshot, ensure_ascii=True), utc_now()),
        )
        self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()


def create_storage(backend: str, path: str) -> SessionStorage:
    name = backend.strip().lower()
    if name == "sqlite":
        return SqliteSessionStorage(path)
    if name == "json":
        return JsonFileSessionStorage(path)
    if name == "memory":
        return InMemorySessionStorage()
    raise ValueError(f"Unknown storage backend: {backend!r}. Supported: 'sqlite', 'json', 'memory'")
