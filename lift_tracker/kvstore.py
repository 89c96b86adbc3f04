from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol

from .env import get_env

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_DB_FILENAME = "lift_tracker.db"
LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Durable local storage of opaque byte blobs keyed by name."""

    def get_bytes(self, key: str) -> Optional[bytes]:
        ...

    def set_bytes(self, key: str, value: bytes) -> None:
        ...

    def remove_key(self, key: str) -> None:
        ...


def data_dir() -> Path:
    override = get_env("DATA_DIR")
    base = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base


def database_file() -> Path:
    override = get_env("DB_FILE")
    if override:
        path = Path(override).expanduser()
    else:
        path = data_dir() / DEFAULT_DB_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class MemoryKeyValueStore:
    """Process-local store; survives nothing, which is what most tests want."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._values: Dict[str, bytes] = dict(initial or {})

    def get_bytes(self, key: str) -> Optional[bytes]:
        return self._values.get(key)

    def set_bytes(self, key: str, value: bytes) -> None:
        self._values[key] = bytes(value)

    def remove_key(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._values)


class SQLiteKeyValueStore:
    """
    Key-value blobs in a single SQLite table.

    Every write replaces the whole value for a key inside one transaction, so a
    reader never observes a partially written blob.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else database_file()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS KeyValue (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def get_bytes(self, key: str) -> Optional[bytes]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM KeyValue WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def set_bytes(self, key: str, value: bytes) -> None:
        stamp = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO KeyValue (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, sqlite3.Binary(bytes(value)), stamp),
                )
        LOGGER.debug("Persisted %s bytes under %s", len(value), key)

    def remove_key(self, key: str) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute("DELETE FROM KeyValue WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM KeyValue ORDER BY key").fetchall()
        return [row[0] for row in rows]


def write_json(store: KeyValueStore, key: str, payload: Any) -> None:
    """Serialise `payload` and store it as a single blob."""
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    store.set_bytes(key, encoded)


def read_json(store: KeyValueStore, key: str) -> Any | None:
    """Return the decoded blob, or None when it is missing or unreadable."""
    raw = store.get_bytes(key)
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable blob under %s: %s", key, exc)
        return None
