"""SQLite-backed JSON key-value store with per-key expiry."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SQLiteKeyValueStore:
    """Persist chapter caches and scene positions across reloads."""

    def __init__(self, db_path: Path, *, clock: Callable[[], datetime] = _utc_now) -> None:
        self._db_path = db_path
        self._clock = clock
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    expires_at_utc TEXT,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_kv_entries_expiry
                ON kv_entries(expires_at_utc)
                """
            )

    def get(self, key: str) -> Any | None:
        """Return the decoded value, or None when absent or expired."""
        with self._connect() as connection:
            row = connection.execute(
                "SELECT value_json, expires_at_utc FROM kv_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            if self._is_expired(row["expires_at_utc"]):
                connection.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                return None
        try:
            return json.loads(str(row["value_json"]))
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        now = self._clock()
        expires_at = (now + timedelta(seconds=ttl_seconds)).isoformat() if ttl_seconds else None
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO kv_entries (key, value_json, expires_at_utc, updated_at_utc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json = excluded.value_json,
                    expires_at_utc = excluded.expires_at_utc,
                    updated_at_utc = excluded.updated_at_utc
                """,
                (key, json.dumps(value, sort_keys=True), expires_at, now.isoformat()),
            )

    def remove(self, key: str) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM kv_entries WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with `prefix`."""
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT key, expires_at_utc FROM kv_entries
                WHERE key LIKE ? ESCAPE '\\'
                ORDER BY key ASC
                """,
                (pattern,),
            ).fetchall()
        return [str(row["key"]) for row in rows if not self._is_expired(row["expires_at_utc"])]

    def purge_expired(self) -> int:
        """Delete expired rows and return how many were removed."""
        now = self._clock().isoformat()
        with self._connect() as connection:
            cursor = connection.execute(
                """
                DELETE FROM kv_entries
                WHERE expires_at_utc IS NOT NULL AND expires_at_utc <= ?
                """,
                (now,),
            )
            return int(cursor.rowcount)

    def _is_expired(self, expires_at_utc: str | None) -> bool:
        if not expires_at_utc:
            return False
        return datetime.fromisoformat(expires_at_utc) <= self._clock()
