"""Key/value backends holding JSON text under named keys."""

import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from pustakam.errors import StorageError, StorageQuotaError
from pustakam.storage.database import get_connection, initialize_database

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal string key/value interface used by the repositories."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryKeyValueStore:
    """In-process store with an optional size quota.

    Args:
        quota_bytes: Maximum UTF-8 size of all keys and values together.
            ``None`` disables the quota.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        total = 0
        for k, v in self._data.items():
            if k == key:
                continue
            total += len(k.encode("utf-8")) + len(v.encode("utf-8"))
        return total + len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            size = self._size_with(key, value)
            if size > self.quota_bytes:
                raise StorageQuotaError(
                    f"Writing {key!r} needs {size} bytes, quota is {self.quota_bytes}",
                    user_message="Storage is full. Delete some books or export a backup.",
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteKeyValueStore:
    """Key/value store backed by a single SQLite table."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        try:
            initialize_database(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open database {self.db_path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read {key!r}: {exc}") from exc
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            if "full" in str(exc).lower():
                raise StorageQuotaError(f"Database full while writing {key!r}: {exc}") from exc
            raise StorageError(f"Failed to write {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete {key!r}: {exc}") from exc

    def keys(self) -> list[str]:
        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list keys: {exc}") from exc
        return [row["key"] for row in rows]
