"""
Tests for the caching storage decorator.

A real LocalStorage backs the cache so reads and writes are observable on
disk; the race tests stall the backend download with threading events.
"""

import threading
from unittest.mock import MagicMock

import pytest

from assetstore.core.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    InvalidKeyError,
    NotFoundError,
)
from assetstore.storage.backends.local import LocalStorage
from assetstore.storage.cache.base import NullCache
from assetstore.storage.cache.caching import CachingStorage
from assetstore.storage.cache.memory import MemoryCache
from assetstore.storage.cache.redis import RedisCache


class StallingLocalStorage(LocalStorage):
    """LocalStorage whose downloads pause after reading until released."""

    def __init__(self, base_path):
        super().__init__(base_path)
        self.fetched = threading.Event()
        self.release = threading.Event()
        self.stall = False
        self.download_calls = 0

    def download(self, key):
        self.download_calls += 1
        data = super().download(key)
        if self.stall:
            self.fetched.set()
            assert self.release.wait(timeout=5)
        return data


@pytest.fixture
def backend(storage_root):
    return StallingLocalStorage(str(storage_root))


@pytest.fixture
def cache():
    return MemoryCache(max_size=1024 * 1024, max_items=100)


@pytest.fixture
def storage(backend, cache):
    return CachingStorage(backend, cache)


class TestReadThrough:
    """Test cache population and hits."""

    def test_miss_then_hit(self, storage, backend):
        """Test the first read misses and the second is served from memory."""
        backend.upload(b"hello", "a.txt")

        first = storage.download_with_cache_info("a.txt")
        second = storage.download_with_cache_info("a.txt")

        assert (first.data, first.cache_hit) == (b"hello", "miss")
        assert (second.data, second.cache_hit) == (b"hello", "memory")
        assert backend.download_calls == 1

    def test_download_returns_bytes(self, storage, backend):
        """Test plain download goes through the cache."""
        backend.upload(b"hello", "a.txt")
        assert storage.download("a.txt") == b"hello"
        assert storage.download("/a.txt/") == b"hello"
        assert backend.download_calls == 1

    def test_oversized_objects_not_cached(self, backend, cache):
        """Test objects above the cacheable size always hit the backend."""
        storage = CachingStorage(backend, cache, max_cacheable_file_size=4)
        backend.upload(b"too large", "big.bin")

        storage.download("big.bin")
        result = storage.download_with_cache_info("big.bin")

        assert result.cache_hit == "miss"
        assert backend.download_calls == 2

    def test_not_found_propagates_and_is_not_cached(self, storage, cache):
        """Test missing keys raise and leave the cache empty."""
        with pytest.raises(NotFoundError):
            storage.download("missing.txt")
        assert cache.get_stats().item_count == 0

    def test_invalid_key_rejected(self, storage):
        """Test keys are sanitized before the cache is consulted."""
        with pytest.raises(InvalidKeyError):
            storage.download("../etc/passwd")

    def test_backend_failure_leaves_cache_untouched(self, cache):
        """Test a failing backend read does not populate the cache."""
        failing = MagicMock(spec=LocalStorage)
        failing.download.side_effect = BackendUnavailableError("down", backend_type="local")
        storage = CachingStorage(failing, cache)

        with pytest.raises(BackendUnavailableError):
            storage.download("a.txt")
        assert cache.get_stats().item_count == 0

    def test_ttl_by_mime_type(self, backend):
        """Test TTL overrides by exact type and wildcard."""
        cache = MagicMock()
        cache.cache_type = "memory"
        cache.get.return_value = None
        storage = CachingStorage(
            backend,
            cache,
            default_ttl=100,
            ttl_by_mime_type={"text/html": 60, "image/*": 3600},
        )
        backend.upload(b"x", "index.html")
        backend.upload(b"x", "logo.png")
        backend.upload(b"x", "app.js")

        storage.download_with_cache_info("index.html", mime_type="text/html; charset=utf-8")
        storage.download_with_cache_info("logo.png", mime_type="image/png")
        storage.download_with_cache_info("app.js", mime_type="application/javascript")

        ttls = [c.args[2] for c in cache.set.call_args_list]
        assert ttls == [60, 3600, 100]


class TestDisabledCache:
    """Test pass-through modes."""

    def test_disabled(self, backend, cache):
        """Test enabled=False bypasses the cache."""
        storage = CachingStorage(backend, cache, enabled=False)
        backend.upload(b"x", "a.txt")

        assert storage.download_with_cache_info("a.txt").cache_hit == "none"
        assert storage.download_with_cache_info("a.txt").cache_hit == "none"
        assert cache.get_stats().item_count == 0
        assert storage.cache_type == "none"

    def test_null_cache(self, backend):
        """Test a NullCache reports no caching."""
        storage = CachingStorage(backend, NullCache())
        backend.upload(b"x", "a.txt")

        assert storage.download_with_cache_info("a.txt").cache_hit == "none"
        assert storage.cache_type == "none"

    def test_negative_ttl_rejected(self, backend, cache):
        """Test invalid settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            CachingStorage(backend, cache, default_ttl=-1)


class TestInvalidation:
    """Test writes and deletes evict cached entries."""

    def test_upload_invalidates(self, storage):
        """Test a read after an overwrite sees the new bytes."""
        storage.upload(b"v1", "a.txt")
        assert storage.download("a.txt") == b"v1"

        storage.upload(b"v2", "a.txt")

        result = storage.download_with_cache_info("a.txt")
        assert (result.data, result.cache_hit) == (b"v2", "miss")

    def test_delete_invalidates(self, storage):
        """Test deleted keys are no longer served from cache."""
        storage.upload(b"v1", "a.txt")
        storage.download("a.txt")

        storage.delete("a.txt")

        with pytest.raises(NotFoundError):
            storage.download("a.txt")

    def test_delete_invalid_key_does_not_raise(self, storage):
        """Test delete keeps its never-raises contract for bad keys."""
        storage.delete("../nope")

    def test_delete_prefix_evicts(self, storage, cache, site_files):
        """Test prefix deletion evicts matching entries only."""
        for key, data in site_files.items():
            storage.upload(data, key)
            storage.download(key)

        result = storage.delete_prefix("acme/site/")

        assert result.deleted_count == 4
        assert cache.get_stats().item_count == 1
        assert cache.has("acme/other/commits/abc123/index.html")

    def test_failed_upload_keeps_cache(self, backend, cache):
        """Test nothing is evicted when the backend write fails."""
        failing = MagicMock(spec=LocalStorage)
        failing.upload.side_effect = BackendUnavailableError("down", backend_type="local")
        storage = CachingStorage(failing, cache)
        cache.set("a.txt", b"cached")

        with pytest.raises(BackendUnavailableError):
            storage.upload(b"new", "a.txt")
        assert cache.get("a.txt") == b"cached"

    def test_clear_cache(self, storage):
        """Test clearing the cache forces backend reads."""
        storage.upload(b"v1", "a.txt")
        storage.download("a.txt")
        storage.clear_cache()
        assert storage.download_with_cache_info("a.txt").cache_hit == "miss"


class TestInvalidationRace:
    """Test a write during a slow read never leaves stale bytes cached."""

    def test_write_during_fetch_skips_fill(self, storage, backend, cache):
        """Test a reader that fetched old bytes does not cache them after a write."""
        storage.upload(b"old", "a.txt")
        backend.stall = True
        results = {}

        reader = threading.Thread(
            target=lambda: results.setdefault("read", storage.download_with_cache_info("a.txt"))
        )
        reader.start()
        assert backend.fetched.wait(timeout=5)

        storage.upload(b"new", "a.txt")
        backend.release.set()
        reader.join(timeout=5)

        assert results["read"].data == b"old"
        assert not cache.has("a.txt")
        backend.stall = False
        assert storage.download("a.txt") == b"new"

    def test_delete_prefix_during_fetch_skips_fill(self, storage, backend, cache):
        """Test prefix invalidation also blocks in-flight fills."""
        storage.upload(b"old", "site/a.txt")
        backend.stall = True

        reader = threading.Thread(target=storage.download, args=("site/a.txt",))
        reader.start()
        assert backend.fetched.wait(timeout=5)

        storage.delete_prefix("site/")
        backend.release.set()
        reader.join(timeout=5)

        assert not cache.has("site/a.txt")


class TestDelegation:
    """Test non-cached operations pass through."""

    def test_metadata_and_listing(self, storage, backend):
        """Test listing, exists and metadata reach the backend."""
        storage.upload(b"hello", "a.txt", {"content_type": "text/plain"})

        assert storage.exists("a.txt")
        assert storage.list_keys() == ["a.txt"]
        assert storage.get_metadata("a.txt").size == 5
        assert storage.backend_type == "local"
        assert storage.test_connection() is True

    def test_health_check_includes_cache(self, storage):
        """Test health output carries cache stats."""
        health = storage.health_check()
        assert health["status"] == "healthy"
        assert health["cache"]["type"] == "memory"
        assert "hit_rate" in health["cache"]

    def test_health_check_reads_shared_cache_stats(self, backend):
        """Test health output reports Redis item count and memory, not local zeros."""
        client = MagicMock()
        client.hgetall.return_value = {b"hits": b"4", b"misses": b"1"}
        client.scan_iter.return_value = iter([b"storage:cache:a.txt", b"storage:cache:b.txt"])
        client.info.return_value = {"used_memory": 4096, "maxmemory": 0}

        health = CachingStorage(backend, RedisCache(client=client)).health_check()

        assert health["cache"]["type"] == "redis"
        assert health["cache"]["item_count"] == 2
        assert health["cache"]["size"] == 4096
        assert health["cache"]["hits"] == 4

    def test_close_closes_both(self):
        """Test close reaches backend and cache."""
        backend = MagicMock(spec=LocalStorage)
        cache = MagicMock(spec=MemoryCache)
        CachingStorage(backend, cache).close()
        backend.close.assert_called_once()
        cache.close.assert_called_once()
