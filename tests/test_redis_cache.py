"""Tests for the Redis cache, using a mocked client."""

from unittest.mock import MagicMock, patch

import redis

from assetstore.storage.cache.redis import RedisCache, _escape_glob


class TestRedisCacheConnection:
    """Test client construction."""

    def test_url_takes_precedence(self):
        """Test a URL builds the client via from_url with timeouts."""
        with patch("assetstore.storage.cache.redis.redis.Redis") as mock_redis:
            cache = RedisCache(url="redis://cache:6379/1", host="ignored")

        mock_redis.from_url.assert_called_once_with(
            "redis://cache:6379/1", socket_connect_timeout=10, socket_timeout=10
        )
        assert cache.redis is mock_redis.from_url.return_value

    def test_host_and_port(self):
        """Test host/port settings are used without a URL."""
        with patch("assetstore.storage.cache.redis.redis.Redis") as mock_redis:
            RedisCache(host="cache", port=6380, password="pw", db=2)

        kwargs = mock_redis.call_args.kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["port"] == 6380
        assert kwargs["password"] == "pw"
        assert kwargs["db"] == 2


class TestRedisCache:
    """Test RedisCache operations."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = MagicMock()
        self.cache = RedisCache(client=self.client, namespace="ws1")

    def test_key_layout(self):
        """Test keys are namespaced under the shared prefix."""
        self.client.get.return_value = b"data"

        assert self.cache.get("acme/site/index.html") == b"data"
        self.client.get.assert_called_once_with("storage:cache:ws1/acme/site/index.html")

    def test_key_layout_without_namespace(self):
        """Test keys without a namespace."""
        cache = RedisCache(client=self.client)
        cache.set("a", b"x")
        self.client.set.assert_called_once_with("storage:cache:a", b"x")

    def test_set_with_ttl_uses_setex(self):
        """Test TTLs are delegated to Redis expiry."""
        self.cache.set("a", b"x", ttl=300)
        self.client.setex.assert_called_once_with("storage:cache:ws1/a", 300, b"x")
        self.client.set.assert_not_called()

    def test_hits_and_misses_counted(self):
        """Test counters are kept locally and mirrored to the stats hash."""
        self.client.get.side_effect = [b"x", None]

        self.cache.get("a")
        self.cache.get("b")

        stats = self.cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        self.client.hincrby.assert_any_call("storage:cache:__stats__", "hits", 1)
        self.client.hincrby.assert_any_call("storage:cache:__stats__", "misses", 1)

    def test_get_degrades_to_miss(self):
        """Test Redis failures on read are treated as misses."""
        self.client.get.side_effect = redis.ConnectionError("down")

        assert self.cache.get("a") is None
        assert self.cache.get_stats().misses == 1

    def test_set_failure_swallowed(self):
        """Test Redis failures on write do not raise."""
        self.client.setex.side_effect = redis.TimeoutError("slow")
        self.cache.set("a", b"x", ttl=10)

    def test_delete_uses_unlink(self):
        """Test single key eviction."""
        self.cache.delete("a")
        self.client.unlink.assert_called_once_with("storage:cache:ws1/a")

    def test_delete_failure_swallowed(self):
        """Test eviction failures are logged, not raised."""
        self.client.unlink.side_effect = redis.ConnectionError("down")
        self.cache.delete("a")

    def test_has(self):
        """Test has() uses EXISTS and does not touch counters."""
        self.client.exists.return_value = 1

        assert self.cache.has("a") is True
        self.client.exists.assert_called_once_with("storage:cache:ws1/a")
        assert self.cache.get_stats().hits == 0

    def test_delete_by_prefix_scans_and_unlinks(self):
        """Test prefix eviction scans with an escaped pattern and unlinks matches."""
        self.client.scan_iter.return_value = iter(
            [b"storage:cache:ws1/site/a", b"storage:cache:ws1/site/b"]
        )
        self.client.unlink.return_value = 2

        assert self.cache.delete_by_prefix("site/") == 2
        self.client.scan_iter.assert_called_once_with(
            match="storage:cache:ws1/site/*", count=500
        )
        self.client.unlink.assert_called_once_with(
            b"storage:cache:ws1/site/a", b"storage:cache:ws1/site/b"
        )

    def test_delete_by_prefix_chunks(self):
        """Test large evictions are unlinked in chunks."""
        keys = [f"storage:cache:ws1/p/{i}".encode() for i in range(1200)]
        self.client.scan_iter.return_value = iter(keys)
        self.client.unlink.side_effect = lambda *chunk: len(chunk)

        assert self.cache.delete_by_prefix("p/") == 1200
        assert [len(c.args) for c in self.client.unlink.call_args_list] == [500, 500, 200]

    def test_delete_by_prefix_failure(self):
        """Test scan failures report nothing deleted."""
        self.client.scan_iter.side_effect = redis.ConnectionError("down")
        assert self.cache.delete_by_prefix("p/") == 0

    def test_refresh_stats(self):
        """Test cluster-wide stats are read back from Redis."""
        self.client.hgetall.return_value = {b"hits": b"7", b"misses": b"3"}
        self.client.scan_iter.return_value = iter([b"storage:cache:ws1/a", b"storage:cache:ws1/b"])
        self.client.info.return_value = {"used_memory": 2048, "maxmemory": 4096}

        stats = self.cache.refresh_stats()

        assert stats.hits == 7
        assert stats.misses == 3
        assert stats.item_count == 2
        assert stats.size == 2048
        assert stats.max_size == 4096
        assert stats.hit_rate == 0.7

    def test_refresh_stats_falls_back_to_local(self):
        """Test local counters are returned when Redis is unreachable."""
        self.client.get.return_value = None
        self.cache.get("a")
        self.client.hgetall.side_effect = redis.ConnectionError("down")

        stats = self.cache.refresh_stats()
        assert stats.misses == 1

    def test_clear(self):
        """Test clear removes cached keys and the stats hash, skipping it during scan."""
        self.client.scan_iter.return_value = iter(
            [b"storage:cache:ws1/a", b"storage:cache:__stats__"]
        )
        self.client.get.return_value = b"x"
        self.cache.get("a")

        self.cache.clear()

        self.client.unlink.assert_any_call(b"storage:cache:ws1/a")
        self.client.unlink.assert_any_call("storage:cache:__stats__")
        assert self.cache.get_stats().hits == 0

    def test_close(self):
        """Test close closes the client."""
        self.cache.close()
        self.client.close.assert_called_once()


class TestEscapeGlob:
    """Test glob escaping for SCAN patterns."""

    def test_metacharacters_escaped(self):
        """Test glob metacharacters match literally."""
        assert _escape_glob("a*b?c[d]") == "a\\*b\\?c\\[d\\]"

    def test_plain_text_unchanged(self):
        """Test ordinary keys are untouched."""
        assert _escape_glob("storage:cache:ws1/site/") == "storage:cache:ws1/site/"
