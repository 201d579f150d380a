"""
SQLite-backed state store
"""

import os
import sqlite3
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .base import DELETED, StateStore, decode_value, encode_value
from .schema import connection, init_database
from ..errors import StateUnavailableError
from ..logging.config import log_state_operation
from ..observability.metrics import metrics


class SQLiteStateStore(StateStore):
    """
    State store persisted in a SQLite file.

    Expiry uses wall-clock seconds so entries outlive the process that
    wrote them.
    """

    backend = "sqlite"

    def __init__(self, db_path: str, default_ttl: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self.default_ttl = default_ttl
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "commits": 0, "errors": 0}
        try:
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            init_database(db_path)
        except (sqlite3.Error, OSError) as e:
            raise StateUnavailableError(f"cannot open state database {db_path}: {e}")

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        ttl = ttl if ttl is not None else self.default_ttl
        return self._clock() + ttl if ttl is not None else None

    def _fail(self, operation: str, key: Optional[str], error: sqlite3.Error) -> StateUnavailableError:
        self._stats["errors"] += 1
        metrics.record_state_operation(self.backend, operation, "error")
        log_state_operation(operation, key, success=False, error=str(error))
        return StateUnavailableError(f"state database {operation} failed: {error}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT value FROM state_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                    (key, self._clock())
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise self._fail("get", key, e)

        self._stats["hits" if row else "misses"] += 1
        metrics.record_state_operation(self.backend, "get", "hit" if row else "miss")
        return decode_value(row["value"]) if row else None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        text = encode_value(value)
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT OR REPLACE INTO state_entries (key, value, expires_at, updated_at)
                    VALUES (?, ?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                """, (key, text, self._expires_at(ttl)))
        except sqlite3.Error as e:
            raise self._fail("set", key, e)

        self._stats["sets"] += 1
        metrics.record_state_operation(self.backend, "set", "success")
        log_state_operation("set", key, size=len(text))

    async def exists(self, key: str) -> bool:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT 1 FROM state_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                    (key, self._clock())
                )
                return cursor.fetchone() is not None
        except sqlite3.Error as e:
            raise self._fail("exists", key, e)

    async def delete(self, key: str) -> bool:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM state_entries WHERE key = ?", (key,))
                removed = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise self._fail("delete", key, e)

        if removed:
            self._stats["deletes"] += 1
        metrics.record_state_operation(self.backend, "delete", "success")
        return removed

    async def apply_batch(self, writes: Dict[str, Tuple[Any, Optional[float]]]) -> None:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                for key, (text, ttl) in writes.items():
                    if text is DELETED:
                        cursor.execute("DELETE FROM state_entries WHERE key = ?", (key,))
                    else:
                        cursor.execute("""
                            INSERT OR REPLACE INTO state_entries (key, value, expires_at, updated_at)
                            VALUES (?, ?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                        """, (key, text, self._expires_at(ttl)))
        except sqlite3.Error as e:
            raise self._fail("commit", None, e)

        self._stats["commits"] += 1
        metrics.record_state_operation(self.backend, "commit", "success")

    async def is_healthy(self) -> bool:
        try:
            with connection(self.db_path) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    async def cleanup_expired(self) -> int:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "DELETE FROM state_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    (self._clock(),)
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise self._fail("cleanup", None, e)

    async def get_statistics(self) -> Dict[str, Any]:
        try:
            with connection(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS total FROM state_entries")
                entries = cursor.fetchone()["total"]
        except sqlite3.Error as e:
            raise self._fail("statistics", None, e)

        stats = dict(self._stats)
        stats["entries"] = entries
        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = stats["hits"] / lookups if lookups else 0.0
        stats["backend"] = self.backend
        return stats
