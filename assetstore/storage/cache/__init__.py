"""Caching layer for storage backends."""

from .base import CacheBackend, CacheEntry, CacheStats, NullCache
from .caching import CachingStorage, DownloadResult
from .memory import MemoryCache
from .redis import RedisCache

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "NullCache",
    "CachingStorage",
    "DownloadResult",
    "MemoryCache",
    "RedisCache",
]
