"""
Key-value state stores.

The learner repository persists everything as JSON strings under namespaced
keys. Any object with get/set/delete/close satisfies the KeyValueStore protocol;
two implementations ship here:

- InMemoryStore: dict-backed, for tests and ephemeral sessions
- SQLiteKeyValueStore: single-table SQLite file, the default on disk

Database location: ~/.lessoncore/state.db
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from loguru import logger

from lessoncore.exceptions import StoreError


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def close(self) -> None:
        ...


class InMemoryStore:
    """Dict-backed store."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def close(self) -> None:
        pass


class SQLiteKeyValueStore:
    """
    SQLite-backed key-value persistence.

    One `kv_state` table; writes are upserts so the last write per key wins.
    """

    DEFAULT_DB_PATH = Path.home() / ".lessoncore" / "state.db"

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Database file, or ":memory:" (defaults to ~/.lessoncore/state.db)
        """
        if db_path == ":memory:":
            self.db_path: Path | str = db_path
        else:
            self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.info("SQLiteKeyValueStore initialized at {}", self.db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialize {self.db_path}: {e}") from e

    def get(self, key: str) -> str | None:
        try:
            row = self.conn.execute(
                "SELECT value FROM kv_state WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Read failed for {key}: {e}") from e
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            self.conn.execute(
                """
                INSERT INTO kv_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Delete failed for {key}: {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            "SELECT key FROM kv_state WHERE key LIKE ? ORDER BY key", (f"{prefix}%",)
        ).fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
