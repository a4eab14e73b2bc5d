"""
Key/value storage backends for the ACS cache.

DuckDB gives a durable single-file store; the in-memory backend is used
in tests and for throwaway sessions.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import duckdb

from ..utils.errors import CacheError, StorageQuotaExceeded
from .base import KeyValueBackend


logger = logging.getLogger(__name__)


def _entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class InMemoryKeyValueBackend(KeyValueBackend):
    """
    Dict-backed store with an optional byte budget.

    Args:
        max_bytes: Total size (len(key) + len(value) summed) allowed before
            set() raises StorageQuotaExceeded. None means unbounded.
    """

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}
        self._size = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            old = self._data.get(key)
            new_size = self._size + _entry_size(key, value)
            if old is not None:
                new_size -= _entry_size(key, old)
            if self.max_bytes is not None and new_size > self.max_bytes:
                raise StorageQuotaExceeded(
                    f"Write of {_entry_size(key, value)} bytes exceeds quota of {self.max_bytes}"
                )
            self._data[key] = value
            self._size = new_size

    def delete(self, key: str) -> None:
        with self._lock:
            old = self._data.pop(key, None)
            if old is not None:
                self._size -= _entry_size(key, old)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in list(self._data) if k.startswith(prefix)]

    def namespace_bytes(self, prefix: str = "") -> int:
        if not prefix:
            return self._size
        return sum(_entry_size(k, v) for k, v in list(self._data.items()) if k.startswith(prefix))

    @property
    def size_bytes(self) -> int:
        return self._size


class DuckDBKeyValueBackend(KeyValueBackend):
    """
    DuckDB key/value backend.

    One table, `kv_store(kv_key PRIMARY KEY, kv_value)`. The byte budget is
    checked against the whole table before each write. DuckDB failures
    surface as CacheError so callers can treat the cache as best-effort.
    """

    DDL = """
    CREATE TABLE IF NOT EXISTS kv_store (
        kv_key TEXT PRIMARY KEY,
        kv_value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT now()
    );
    """

    def __init__(self, db_path: Path | str, max_bytes: Optional[int] = None):
        """
        Initialize DuckDB storage.

        Args:
            db_path: Path to DuckDB database file (":memory:" for a private in-memory db)
            max_bytes: Optional size budget, see InMemoryKeyValueBackend
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.max_bytes = max_bytes
        self.con: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self.db_path)
        self.con.execute(self.DDL)
        self._lock = threading.Lock()
        logger.info(f"Initialized DuckDB key/value storage: {self.db_path}")

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.con is None:
            raise CacheError("DuckDB backend is closed")
        return self.con

    def _execute(self, sql: str, params: list) -> duckdb.DuckDBPyConnection:
        try:
            return self._connection().execute(sql, params)
        except duckdb.Error as e:
            raise CacheError(f"DuckDB cache operation failed: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._execute("SELECT kv_value FROM kv_store WHERE kv_key = ?", [key]).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if self.max_bytes is not None:
                row = self._execute(
                    "SELECT COALESCE(SUM(length(kv_key) + length(kv_value)), 0) FROM kv_store WHERE kv_key <> ?",
                    [key],
                ).fetchone()
                used = int(row[0]) if row else 0
                if used + _entry_size(key, value) > self.max_bytes:
                    raise StorageQuotaExceeded(
                        f"Write of {_entry_size(key, value)} bytes exceeds quota of {self.max_bytes}"
                    )
            self._execute(
                """
                INSERT INTO kv_store (kv_key, kv_value) VALUES (?, ?)
                ON CONFLICT (kv_key) DO UPDATE SET
                    kv_value = excluded.kv_value,
                    updated_at = now()
                """,
                [key, value],
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._execute("DELETE FROM kv_store WHERE kv_key = ?", [key])

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            rows = self._execute(
                "SELECT kv_key FROM kv_store WHERE starts_with(kv_key, ?) ORDER BY kv_key", [prefix]
            ).fetchall()
        return [r[0] for r in rows]

    def namespace_bytes(self, prefix: str = "") -> int:
        with self._lock:
            row = self._execute(
                "SELECT COALESCE(SUM(length(kv_key) + length(kv_value)), 0) FROM kv_store WHERE starts_with(kv_key, ?)",
                [prefix],
            ).fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close database connection."""
        if self.con is not None:
            self.con.close()
            self.con = None
            logger.info("Closed DuckDB connection")
