"""Redis-backed shared cache for multi-instance deployments.

Objects are stored under ``{key_prefix}{namespace}/{key}`` with SETEX so
Redis expires them on its own. Hit/miss counters are kept locally and
mirrored to a hash so ``refresh_stats`` can report cluster-wide numbers.
Connection problems degrade to cache misses instead of failing requests.
"""

from __future__ import annotations

import logging
import threading

import redis

from .base import CacheBackend, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "storage:cache:"
DELETE_CHUNK_SIZE = 500
STATS_SUFFIX = "__stats__"


class RedisCache(CacheBackend):
    """Byte cache stored in Redis.

    Args:
        client: Optional Redis client for testing or DI.
        host, port, password, db: Connection settings when no client or url is given.
        url: Redis URL, takes precedence over host/port.
        key_prefix: Prefix shared by every cache key.
        namespace: Workspace namespace, isolates tenants sharing one Redis.
        max_size: Nominal byte ceiling reported in stats.
        connect_timeout: Socket connect timeout in seconds.
    """

    cache_type = "redis"

    def __init__(
        self,
        client: redis.Redis | None = None,
        host: str = "localhost",
        port: int = 6379,
        password: str | None = None,
        db: int = 0,
        url: str | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        namespace: str = "",
        max_size: int = 0,
        connect_timeout: float = 10,
    ) -> None:
        if client is None:
            if url:
                client = redis.Redis.from_url(
                    url, socket_connect_timeout=connect_timeout, socket_timeout=connect_timeout
                )
            else:
                client = redis.Redis(
                    host=host,
                    port=port,
                    password=password,
                    db=db,
                    socket_connect_timeout=connect_timeout,
                    socket_timeout=connect_timeout,
                    socket_keepalive=True,
                )
        self.redis = client
        self.key_prefix = key_prefix
        self.namespace = namespace.strip("/")
        self.max_size = max_size
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    @property
    def _base(self) -> str:
        if self.namespace:
            return f"{self.key_prefix}{self.namespace}/"
        return self.key_prefix

    def _redis_key(self, key: str) -> str:
        return f"{self._base}{key}"

    @property
    def _stats_key(self) -> str:
        return f"{self.key_prefix}{STATS_SUFFIX}"

    def _record(self, field: str) -> None:
        with self._lock:
            if field == "hits":
                self._hits += 1
            else:
                self._misses += 1
        try:
            self.redis.hincrby(self._stats_key, field, 1)
        except redis.RedisError as e:
            logger.debug("Could not persist cache %s counter: %s", field, e)

    def get(self, key: str) -> bytes | None:
        try:
            value = self.redis.get(self._redis_key(key))
        except redis.RedisError as e:
            logger.warning("Cache get unavailable for key %s: %s", key, e)
            self._record("misses")
            return None

        if value is None:
            logger.debug("Cache MISS: %s", key)
            self._record("misses")
            return None

        logger.debug("Cache HIT: %s", key)
        self._record("hits")
        return value

    def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        try:
            if ttl and ttl > 0:
                self.redis.setex(self._redis_key(key), int(ttl), value)
            else:
                self.redis.set(self._redis_key(key), value)
            logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)
        except redis.RedisError as e:
            logger.warning("Cache set unavailable for key %s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self.redis.unlink(self._redis_key(key))
            logger.debug("Cache DELETE: %s", key)
        except redis.RedisError:
            logger.exception("Cache delete error for key %s; entry may remain until its TTL", key)

    def _delete_matching(self, pattern: str) -> int:
        """Delete keys matching a SCAN pattern using batched UNLINK."""
        deleted = 0
        chunk: list[bytes] = []
        for redis_key in self.redis.scan_iter(match=pattern, count=DELETE_CHUNK_SIZE):
            if redis_key.endswith(STATS_SUFFIX.encode()):
                continue
            chunk.append(redis_key)
            if len(chunk) >= DELETE_CHUNK_SIZE:
                deleted += int(self.redis.unlink(*chunk) or 0)
                chunk = []
        if chunk:
            deleted += int(self.redis.unlink(*chunk) or 0)
        return deleted

    def delete_by_prefix(self, prefix: str) -> int:
        pattern = f"{_escape_glob(self._redis_key(prefix))}*"
        try:
            deleted = self._delete_matching(pattern)
        except redis.RedisError:
            logger.exception("Cache delete_by_prefix error for %s", prefix)
            return 0
        if deleted > 0:
            logger.info("Cache INVALIDATE: %s (%s keys)", prefix, deleted)
        return deleted

    def has(self, key: str) -> bool:
        try:
            return bool(self.redis.exists(self._redis_key(key)))
        except redis.RedisError as e:
            logger.warning("Cache exists check unavailable for key %s: %s", key, e)
            return False

    def get_stats(self) -> CacheStats:
        """Hits and misses seen by this process; size and item count need refresh_stats()."""
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, max_size=self.max_size)

    def refresh_stats(self) -> CacheStats:
        """Read cluster-wide counters, item count and memory use from Redis."""
        try:
            counters = self.redis.hgetall(self._stats_key)
            item_count = sum(
                1
                for redis_key in self.redis.scan_iter(
                    match=f"{_escape_glob(self._base)}*", count=DELETE_CHUNK_SIZE
                )
                if not redis_key.endswith(STATS_SUFFIX.encode())
            )
            memory = self.redis.info("memory")
        except redis.RedisError as e:
            logger.warning("Could not refresh cache stats from Redis: %s", e)
            return self.get_stats()

        return CacheStats(
            hits=int(counters.get(b"hits", 0)),
            misses=int(counters.get(b"misses", 0)),
            size=int(memory.get("used_memory", 0)),
            max_size=self.max_size or int(memory.get("maxmemory", 0)),
            item_count=item_count,
        )

    def clear(self) -> None:
        """Delete every key under this cache's prefix and reset counters."""
        try:
            deleted = self._delete_matching(f"{_escape_glob(self._base)}*")
            self.redis.unlink(self._stats_key)
            logger.warning("Cache CLEARED: %s keys deleted", deleted)
        except redis.RedisError:
            logger.exception("Cache clear error")
        with self._lock:
            self._hits = 0
            self._misses = 0

    def close(self) -> None:
        try:
            self.redis.close()
        except redis.RedisError as e:
            logger.debug("Error closing Redis connection: %s", e)


def _escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so prefixes match literally."""
    for char in "\\*?[]":
        value = value.replace(char, f"\\{char}")
    return value
