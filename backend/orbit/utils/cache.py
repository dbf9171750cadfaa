"""
Time-bounded cache with Redis (production) and in-memory fallback (development).

There is no module-level instance: the application builds one cache at
startup and hands it to the code that needs it.

Usage:
    from orbit.utils.cache import HybridCache

    cache = HybridCache(default_ttl=60)
    cache.set("leaderboard:colleges:2026-01", entries)
    entries = cache.get("leaderboard:colleges:2026-01")
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Optional

import redis

logger = logging.getLogger(__name__)


class TTLCache:
    """Thread-safe in-memory cache with TTL support."""

    def __init__(
        self,
        maxsize: int = 1000,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: dict = {}
        self._expiry: dict = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.maxsize = maxsize
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        with self._lock:
            if key in self._cache:
                if self._clock() < self._expiry[key]:
                    return self._cache[key]
                # Expired - clean up
                del self._cache[key]
                del self._expiry[key]
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value in cache with TTL."""
        ttl = ttl or self.default_ttl
        with self._lock:
            if len(self._cache) >= self.maxsize and key not in self._cache:
                self._evict_oldest()

            self._cache[key] = value
            self._expiry[key] = self._clock() + ttl

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                del self._expiry[key]
                return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._expiry.clear()

    def _evict_oldest(self) -> None:
        """Evict the entry closest to expiry."""
        if self._expiry:
            oldest_key = min(self._expiry.items(), key=lambda x: x[1])[0]
            del self._cache[oldest_key]
            del self._expiry[oldest_key]


class RedisCache:
    """Redis-based cache with JSON serialization."""

    def __init__(self, redis_url: Optional[str] = None, default_ttl: int = 300):
        self.default_ttl = default_ttl
        self._client = None

        if redis_url:
            try:
                self._client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                )
                self._client.ping()
                logger.info("Redis cache connected successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed, will use in-memory cache: {e}")
                self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def get(self, key: str) -> Optional[Any]:
        if not self._client:
            return None
        try:
            data = self._client.get(key)
            if data:
                return json.loads(data)
        except redis.RedisError as e:
            logger.warning(f"Redis get error: {e}")
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self._client:
            return False
        try:
            ttl = ttl or self.default_ttl
            self._client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set error: {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self._client:
            return False
        try:
            return self._client.delete(key) > 0
        except redis.RedisError as e:
            logger.warning(f"Redis delete error: {e}")
            return False

    def clear(self, pattern: str = "*") -> None:
        """Clear cache entries matching pattern."""
        if not self._client:
            return
        try:
            keys = self._client.keys(pattern)
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis clear error: {e}")


class HybridCache:
    """
    Uses Redis when a URL is configured and reachable, otherwise an
    in-process TTLCache. Values must be JSON-serializable either way.
    """

    def __init__(self, maxsize: int = 1000, default_ttl: int = 300, redis_url: Optional[str] = None):
        self.default_ttl = default_ttl
        self._redis = RedisCache(redis_url=redis_url, default_ttl=default_ttl)
        self._local = TTLCache(maxsize=maxsize, default_ttl=default_ttl)

    @property
    def backend(self) -> str:
        return "redis" if self._redis.is_connected else "memory"

    def get(self, key: str) -> Optional[Any]:
        if self._redis.is_connected:
            return self._redis.get(key)
        return self._local.get(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = ttl or self.default_ttl
        if self._redis.is_connected:
            self._redis.set(key, value, ttl)
        else:
            self._local.set(key, value, ttl)

    def delete(self, key: str) -> bool:
        if self._redis.is_connected:
            return self._redis.delete(key)
        return self._local.delete(key)

    def clear(self, pattern: str = "*") -> None:
        if self._redis.is_connected:
            self._redis.clear(pattern)
        else:
            self._local.clear()
