"""
Caching decorator for storage backends.

Wraps any ``StorageBackend`` with read-through caching of downloads and
write-then-invalidate semantics for uploads and deletes.

Invalidation race: a reader that misses, fetches from the backend, and then
populates the cache could otherwise store bytes that a concurrent writer has
already replaced. Keys are hashed onto a fixed set of stripes, each holding
a lock and a generation counter. Readers note the generation before the
fetch and only populate if it is unchanged; writers bump it and evict under
the same lock after the backend acknowledges the write. This closes the
window within one process. Across processes sharing Redis the window
remains and is bounded by the entry TTL.
"""

import logging
import threading
import zlib
from dataclasses import dataclass
from typing import Any

from ...core.exceptions import ConfigurationError, InvalidKeyError
from ...core.keys import sanitize_key, sanitize_prefix
from ..backends.base import (
    DEFAULT_URL_TTL,
    DeletePrefixResult,
    FileMetadata,
    StorageBackend,
)
from .base import CacheBackend, CacheStats, NullCache

logger = logging.getLogger(__name__)

DEFAULT_TTL = 86400
DEFAULT_MAX_CACHEABLE_FILE_SIZE = 10 * 1024 * 1024
STRIPE_COUNT = 64


@dataclass
class DownloadResult:
    """Downloaded bytes plus where they came from: memory, redis, miss or none."""

    data: bytes
    cache_hit: str


class _Stripe:
    __slots__ = ("lock", "generation")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.generation = 0


class CachingStorage(StorageBackend):
    """
    Storage backend decorator adding a byte cache in front of downloads.

    Args:
        backend: Authoritative storage backend
        cache: Cache backend (memory, Redis or NullCache)
        enabled: When False every call goes straight to ``backend``
        default_ttl: Seconds a populated entry lives (default: 24 hours)
        max_cacheable_file_size: Objects larger than this are never cached
        ttl_by_mime_type: TTL overrides keyed by MIME type or ``type/*``

    Examples:
        >>> storage = CachingStorage(S3Storage.aws(config), MemoryCache())
        >>> storage.download_with_cache_info("acme/site/commits/abc/index.html").cache_hit
        'miss'
    """

    def __init__(
        self,
        backend: StorageBackend,
        cache: CacheBackend,
        enabled: bool = True,
        default_ttl: int = DEFAULT_TTL,
        max_cacheable_file_size: int = DEFAULT_MAX_CACHEABLE_FILE_SIZE,
        ttl_by_mime_type: dict[str, int] | None = None,
    ):
        self.backend = backend
        self.cache = cache
        self.enabled = enabled
        self.default_ttl = default_ttl
        self.max_cacheable_file_size = max_cacheable_file_size
        self.ttl_by_mime_type = dict(ttl_by_mime_type or {})
        self._stripes = [_Stripe() for _ in range(STRIPE_COUNT)]
        super().__init__({})

    @property
    def backend_type(self) -> str:
        """Return the wrapped backend's type identifier."""
        return self.backend.backend_type

    @property
    def cache_type(self) -> str:
        if not self.enabled or isinstance(self.cache, NullCache):
            return "none"
        return self.cache.cache_type

    def _validate_config(self) -> None:
        if self.default_ttl < 0:
            raise ConfigurationError("default_ttl must not be negative", field_name="default_ttl")
        if self.max_cacheable_file_size < 0:
            raise ConfigurationError(
                "max_cacheable_file_size must not be negative", field_name="max_cacheable_file_size"
            )

    def _stripe(self, cache_key: str) -> _Stripe:
        return self._stripes[zlib.crc32(cache_key.encode("utf-8")) % STRIPE_COUNT]

    def _ttl_for(self, mime_type: str | None) -> int:
        if mime_type and self.ttl_by_mime_type:
            base_type = mime_type.split(";", 1)[0].strip().lower()
            if base_type in self.ttl_by_mime_type:
                return self.ttl_by_mime_type[base_type]
            wildcard = f"{base_type.split('/', 1)[0]}/*"
            if wildcard in self.ttl_by_mime_type:
                return self.ttl_by_mime_type[wildcard]
        return self.default_ttl

    def _invalidate(self, cache_key: str) -> None:
        stripe = self._stripe(cache_key)
        with stripe.lock:
            stripe.generation += 1
            self.cache.delete(cache_key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Evict every cached key under ``prefix``."""
        for stripe in self._stripes:
            with stripe.lock:
                stripe.generation += 1
        return self.cache.delete_by_prefix(sanitize_prefix(prefix))

    def clear_cache(self) -> None:
        for stripe in self._stripes:
            with stripe.lock:
                stripe.generation += 1
        self.cache.clear()

    def download_with_cache_info(self, key: str, mime_type: str | None = None) -> DownloadResult:
        """
        Download ``key`` and report whether the cache served it.

        Args:
            key: Storage key
            mime_type: Optional content type used to pick a TTL override
        """
        if self.cache_type == "none":
            return DownloadResult(self.backend.download(key), "none")

        cache_key = sanitize_key(key)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return DownloadResult(cached, self.cache.cache_type)

        stripe = self._stripe(cache_key)
        with stripe.lock:
            generation = stripe.generation

        data = self.backend.download(key)

        if len(data) <= self.max_cacheable_file_size:
            with stripe.lock:
                if stripe.generation == generation:
                    self.cache.set(cache_key, data, self._ttl_for(mime_type))
                else:
                    logger.debug("Skipping cache fill for %s, written during fetch", cache_key)
        else:
            logger.debug(
                "Not caching %s: %d bytes exceeds max cacheable size %d",
                cache_key, len(data), self.max_cacheable_file_size,
            )

        return DownloadResult(data, "miss")

    def download(self, key: str) -> bytes:
        return self.download_with_cache_info(key).data

    def upload(self, data: bytes, key: str, metadata: dict[str, Any] | None = None) -> str:
        stored_key = self.backend.upload(data, key, metadata)
        self._invalidate(stored_key)
        return stored_key

    def delete(self, key: str) -> None:
        self.backend.delete(key)
        try:
            cache_key = sanitize_key(key)
        except InvalidKeyError:
            return
        self._invalidate(cache_key)

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        result = self.backend.delete_prefix(prefix)
        evicted = self.invalidate_prefix(prefix)
        logger.debug("Evicted %d cached entries under %s", evicted, prefix)
        return result

    def exists(self, key: str) -> bool:
        return self.backend.exists(key)

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        return self.backend.get_url(key, ttl_seconds)

    def list_keys(self, prefix: str | None = None) -> list[str]:
        return self.backend.list_keys(prefix)

    def get_metadata(self, key: str) -> FileMetadata:
        return self.backend.get_metadata(key)

    def supports_presigned_upload_urls(self) -> bool:
        return self.backend.supports_presigned_upload_urls()

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        return self.backend.get_presigned_upload_url(key, ttl_seconds)

    def test_connection(self) -> bool:
        return self.backend.test_connection()

    def health_check(self) -> dict[str, Any]:
        result = self.backend.health_check()
        result["cache"] = {"type": self.cache_type, **self.refresh_stats().to_dict()}
        return result

    def _ensure_container(self) -> None:
        self.backend._ensure_container()

    def _probe_list(self) -> None:
        self.backend._probe_list()

    def _remove(self, full_key: str) -> None:
        self.backend._remove(full_key)

    def get_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def refresh_stats(self) -> CacheStats:
        return self.cache.refresh_stats()

    def close(self) -> None:
        self.backend.close()
        self.cache.close()

    def __repr__(self) -> str:
        return f"CachingStorage(backend={self.backend!r}, cache={self.cache_type})"
