"""Cache backend contract and shared cache types."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """One cached object."""

    key: str
    data: bytes
    size: int
    inserted_at: float
    ttl: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.ttl is None or self.ttl <= 0:
            return False
        current = time.monotonic() if now is None else now
        return current - self.inserted_at >= self.ttl


@dataclass
class CacheStats:
    """Hit/miss counters and occupancy of a cache backend."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    max_size: int = 0
    item_count: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "size": self.size,
            "max_size": self.max_size,
            "item_count": self.item_count,
        }


class CacheBackend(ABC):
    """
    Byte cache used by the caching storage decorator.

    Implementations synchronize their own bookkeeping and may be shared
    between threads. Reads return None for absent or expired entries.
    """

    cache_type = "none"

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return cached bytes, counting a hit or a miss."""

    @abstractmethod
    def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        """Store bytes under ``key`` for ``ttl`` seconds (None or 0: no expiry)."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Evict one key."""

    @abstractmethod
    def delete_by_prefix(self, prefix: str) -> int:
        """Evict every key starting with ``prefix``; return how many were removed."""

    @abstractmethod
    def has(self, key: str) -> bool:
        """Whether ``key`` is cached, without touching hit/miss counters."""

    @abstractmethod
    def get_stats(self) -> CacheStats:
        """Return a snapshot of the cache statistics."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry and reset counters."""

    def refresh_stats(self) -> CacheStats:
        """Re-read statistics from the underlying store where that is meaningful."""
        return self.get_stats()

    def close(self) -> None:
        """Release connections held by the cache."""


class NullCache(CacheBackend):
    """Cache that stores nothing. Used when caching is disabled."""

    cache_type = "none"

    def get(self, key: str) -> bytes | None:
        return None

    def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def delete_by_prefix(self, prefix: str) -> int:
        return 0

    def has(self, key: str) -> bool:
        return False

    def get_stats(self) -> CacheStats:
        return CacheStats()

    def clear(self) -> None:
        return None
