"""
In-memory state store
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .base import DELETED, StateStore, decode_value, encode_value
from ..logging.config import log_state_operation
from ..observability.metrics import metrics


@dataclass
class _Entry:
    text: str
    expires_at: Optional[float]


class InMemoryStateStore(StateStore):
    """
    Process-local store keeping values as JSON text.

    Storing the encoded form means callers never share mutable objects
    with the store. Expired entries are dropped lazily on read and by
    ``cleanup_expired``.
    """

    backend = "memory"

    def __init__(self, default_ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "expired": 0, "commits": 0}

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        ttl = ttl if ttl is not None else self.default_ttl
        return self._clock() + ttl if ttl is not None else None

    def _live_entry(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            self._stats["expired"] += 1
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live_entry(key)
            self._stats["hits" if entry else "misses"] += 1
        metrics.record_state_operation(self.backend, "get", "hit" if entry else "miss")
        return decode_value(entry.text) if entry else None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        text = encode_value(value)
        with self._lock:
            self._entries[key] = _Entry(text=text, expires_at=self._expires_at(ttl))
            self._stats["sets"] += 1
        metrics.record_state_operation(self.backend, "set", "success")
        log_state_operation("set", key, size=len(text))

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    async def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats["deletes"] += 1
        metrics.record_state_operation(self.backend, "delete", "success")
        return removed

    async def apply_batch(self, writes: Dict[str, Tuple[Any, Optional[float]]]) -> None:
        with self._lock:
            for key, (text, ttl) in writes.items():
                if text is DELETED:
                    self._entries.pop(key, None)
                else:
                    self._entries[key] = _Entry(text=text, expires_at=self._expires_at(ttl))
            self._stats["commits"] += 1
        metrics.record_state_operation(self.backend, "commit", "success")

    async def is_healthy(self) -> bool:
        return True

    async def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if entry.expires_at is not None and entry.expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
            self._stats["expired"] += len(expired)
        return len(expired)

    async def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats["entries"] = len(self._entries)
        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = stats["hits"] / lookups if lookups else 0.0
        stats["backend"] = self.backend
        return stats
