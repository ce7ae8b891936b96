"""
PowerLink — Redis-backed auth throttle (Upstash-compatible)
Falls back to an in-memory thread-safe store when Redis is unavailable.
"""

from __future__ import annotations

import threading
import time
from functools import lru_cache
from typing import Dict, Optional, Tuple

from fastapi import Depends, Request

from powerlink.core.exceptions import RateLimitedError
from powerlink.core.logging import get_logger

logger = get_logger(__name__)


class InMemoryRedis:
    """Thread-safe in-memory fallback mirroring the Redis counter API."""

    def __init__(self) -> None:
        self._store: Dict[str, Tuple[int, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> Optional[Tuple[int, Optional[float]]]:
        entry = self._store.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._store[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return None if entry is None else str(entry[0])

    def set(self, key: str, value: int, ex: Optional[int] = None, nx: bool = False) -> bool:
        with self._lock:
            if nx and self._live(key) is not None:
                return False
            expires_at = time.monotonic() + ex if ex is not None else None
            self._store[key] = (int(value), expires_at)
            return True

    def incr(self, key: str) -> int:
        with self._lock:
            value, expires_at = self._live(key) or (0, None)
            value += 1
            self._store[key] = (value, expires_at)
            return value

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._store[key] = (entry[0], time.monotonic() + seconds)
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(0, int(entry[1] - time.monotonic()))

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def ping(self) -> bool:
        return True

    def flush(self) -> None:
        with self._lock:
            self._store.clear()


def build_redis_client(redis_url: Optional[str] = None):
    """
    Build a Redis client from the given URL.
    Returns an InMemoryRedis if the URL is absent or the server is unreachable.

    For production with Upstash: set REDIS_URL=rediss://...@...upstash.io:6379
    """
    if not redis_url or redis_url == "redis://localhost:6379/0":
        return InMemoryRedis()

    import redis as redis_lib

    try:
        client = redis_lib.from_url(redis_url, decode_responses=True)
        client.ping()  # verify connectivity
        return client
    except redis_lib.RedisError as exc:
        logger.warning("Redis unavailable (%s); using in-memory rate limit store", exc)
        return InMemoryRedis()


# Module-level singleton, shared across all requests
_redis_instance: Optional[object] = None


def get_redis_client():
    """
    Returns the shared Redis client.
    Initialises on first call using REDIS_URL from settings.
    """
    global _redis_instance
    if _redis_instance is None:
        from powerlink.config import get_settings

        settings = get_settings()
        _redis_instance = build_redis_client(settings.REDIS_URL)
    return _redis_instance


class FixedWindowRateLimiter:
    """
    Counts hits per key in fixed windows.
    Key format: "ratelimit:{namespace}:{key}" → int counter with TTL = window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        namespace: str = "auth",
        redis_client=None,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.namespace = namespace
        self._redis = redis_client or get_redis_client()

    def _key(self, key: str) -> str:
        return f"ratelimit:{self.namespace}:{key}"

    def hit(self, key: str) -> int:
        """Record one hit; raise RateLimitedError once the limit is exceeded."""
        redis_key = self._key(key)
        # key is created together with its TTL; INCR keeps the TTL
        self._redis.set(redis_key, 0, ex=self.window_seconds, nx=True)
        count = int(self._redis.incr(redis_key))
        if count == 1 and int(self._redis.ttl(redis_key)) == -1:
            # expired between SET and INCR
            self._redis.expire(redis_key, self.window_seconds)
        if count > self.limit:
            retry_after = int(self._redis.ttl(redis_key))
            raise RateLimitedError(retry_after if retry_after > 0 else self.window_seconds)
        return count

    def reset(self, key: str) -> None:
        self._redis.delete(self._key(key))


@lru_cache()
def get_auth_rate_limiter() -> FixedWindowRateLimiter:
    from powerlink.config import get_settings

    settings = get_settings()
    return FixedWindowRateLimiter(
        limit=settings.AUTH_RATE_LIMIT,
        window_seconds=settings.AUTH_RATE_WINDOW_SECONDS,
    )


def enforce_auth_rate_limit(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_auth_rate_limiter),
) -> None:
    """FastAPI dependency applied to every /auth route."""
    client_host = request.client.host if request.client else "unknown"
    limiter.hit(client_host)
