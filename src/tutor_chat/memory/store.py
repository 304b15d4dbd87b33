from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from tutor_chat.errors import StorageQuotaError

DEFAULT_CAPACITY_BYTES = 5 * 1024 * 1024


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStore:
    """String key/value storage in SQLite with a fixed byte capacity.

    Writes that would push the total size of keys and values past the
    capacity raise ``StorageQuotaError`` and leave the table untouched.
    A capacity of zero or less disables the limit.
    """

    def __init__(self, db_path: str, *, capacity_bytes: int = DEFAULT_CAPACITY_BYTES):
        self._capacity_bytes = capacity_bytes
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    @property
    def capacity_bytes(self) -> int:
        return self._capacity_bytes

    def close(self) -> None:
        self._conn.close()

    def get_item(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM kv WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set_item(self, key: str, value: str) -> None:
        if self._capacity_bytes > 0:
            required = self.usage_bytes() - self._existing_size(key) + _entry_size(key, value)
            if required > self._capacity_bytes:
                raise StorageQuotaError(key, required, self._capacity_bytes)
        self._conn.execute(
            """
            INSERT INTO kv (key, value, size_bytes, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                size_bytes = excluded.size_bytes,
                updated_at = excluded.updated_at
            """,
            (key, value, _entry_size(key, value), _utc_now()),
        )
        self._conn.commit()

    def remove_item(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        # GLOB keeps '_' literal, unlike LIKE.
        pattern = prefix.replace("[", "[[]").replace("*", "[*]").replace("?", "[?]") + "*"
        rows = self._conn.execute(
            "SELECT key FROM kv WHERE key GLOB ? ORDER BY key ASC",
            (pattern,),
        ).fetchall()
        return [str(row["key"]) for row in rows]

    def usage_bytes(self) -> int:
        row = self._conn.execute("SELECT COALESCE(SUM(size_bytes), 0) AS total FROM kv").fetchone()
        return int(row["total"])

    def _existing_size(self, key: str) -> int:
        row = self._conn.execute(
            "SELECT size_bytes FROM kv WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        return int(row["size_bytes"]) if row is not None else 0

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()
