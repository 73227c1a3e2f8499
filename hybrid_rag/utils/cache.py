"""Thread-safe bounded LRU cache used for memoizing extraction results."""

from __future__ import annotations

import hashlib
import threading
from collections import OrderedDict
from typing import Any, Dict, Generic, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


def content_hash(text: str) -> str:
    """Return the cache key for a piece of text (MD5 hex digest)."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class BoundedCache(Generic[K, V]):
    """LRU cache with a fixed capacity and hit/miss accounting.

    Entries are evicted least-recently-used first once ``capacity`` is reached.
    All operations hold an internal lock, so a single instance can be shared by
    worker threads.
    """

    def __init__(self, capacity: int = 1024) -> None:
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self.capacity = capacity
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            if key not in self._data:
                self._misses += 1
                return None
            self._data.move_to_end(key)
            self._hits += 1
            return self._data[key]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = value
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)
                self._evictions += 1

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        with self._lock:
            self._data.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with size, capacity, hits, misses, evictions and hit rate
        """
        with self._lock:
            total_requests = self._hits + self._misses
            return {
                "size": len(self._data),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / total_requests if total_requests > 0 else 0.0,
            }
