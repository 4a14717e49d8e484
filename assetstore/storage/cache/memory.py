"""Bounded in-process LRU cache."""

import logging
import threading
import time
from collections import OrderedDict

from ...core.exceptions import ConfigurationError
from .base import CacheBackend, CacheEntry, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100 * 1024 * 1024
DEFAULT_MAX_ITEMS = 10000


class MemoryCache(CacheBackend):
    """
    Least-recently-used byte cache held in process memory.

    Entries are evicted oldest-first once either the byte ceiling
    (``max_size``) or the entry ceiling (``max_items``) would be exceeded.
    Expired entries are dropped lazily on access.

    All bookkeeping happens under one lock; only metadata is touched while
    holding it, never I/O.
    """

    cache_type = "memory"

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, max_items: int = DEFAULT_MAX_ITEMS):
        if max_size <= 0:
            raise ConfigurationError("max_size must be positive", field_name="max_size")
        if max_items <= 0:
            raise ConfigurationError("max_items must be positive", field_name="max_items")

        self.max_size = max_size
        self.max_items = max_items
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._size = 0
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired():
                self._remove(key)
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.data

    def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        size = len(value)
        if size > self.max_size:
            logger.debug("Not caching %s: %d bytes exceeds cache size", key, size)
            return

        with self._lock:
            if key in self._entries:
                self._remove(key)

            while self._entries and (
                self._size + size > self.max_size or len(self._entries) >= self.max_items
            ):
                evicted_key, _ = next(iter(self._entries.items()))
                self._remove(evicted_key)
                logger.debug("Evicted %s from memory cache", evicted_key)

            self._entries[key] = CacheEntry(
                key=key, data=value, size=size, inserted_at=time.monotonic(), ttl=ttl
            )
            self._size += size

    def _remove(self, key: str) -> None:
        # Caller holds the lock
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._size -= entry.size

    def delete(self, key: str) -> None:
        with self._lock:
            self._remove(key)

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            matching = [k for k in self._entries if k.startswith(prefix)]
            for key in matching:
                self._remove(key)
        return len(matching)

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired():
                self._remove(key)
                return False
            return True

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=self._size,
                max_size=self.max_size,
                item_count=len(self._entries),
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size = 0
            self._hits = 0
            self._misses = 0
