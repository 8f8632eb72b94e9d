"""Time-boxed LRU cache of recent query results."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    results: list[Any]
    timestamp: float
    access_count: int
    last_access: float


class QueryCache:
    """Results keyed by lowercase-trimmed query and ``top_k``.

    Entries expire ``ttl_minutes`` after insertion. When full, the entry with
    the oldest ``last_access`` is evicted.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_minutes: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max(1, max_size)
        self.ttl = ttl_minutes * 60
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(query: str, top_k: int) -> str:
        return f"{query.lower().strip()}:{top_k}"

    def get(self, query: str, top_k: int) -> list[Any] | None:
        key = self.key(query, top_k)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now - entry.timestamp > self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            entry.access_count += 1
            entry.last_access = now
            self.hits += 1
            return entry.results

    def set(self, query: str, top_k: int, results: list[Any]) -> None:
        key = self.key(query, top_k)
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_lru()
            self._entries[key] = CacheEntry(results, now, 1, now)

    def _evict_lru(self) -> None:
        if self._entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].last_access)
            del self._entries[oldest]

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.timestamp > self.ttl]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def invalidate(self) -> None:
        """Drop every entry; called after each indexing run."""
        if self._entries:
            logger.debug(f"Invalidating {len(self._entries)} cached queries after index update")
        self.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
