from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

import redis

from turcrm.core.config import settings
from turcrm.core.errors import RateLimited

_LOG = logging.getLogger("turcrm.rate_limit")


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    current_value: int


class RateLimiter(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        ...


class InMemoryRateLimiter:
    def __init__(self):
        self._data: dict[str, tuple[int, datetime]] = {}
        self._lock = Lock()

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        with self._lock:
            count, expires_at = self._data.get(key, (0, now))
            if expires_at <= now:
                count = 0
                expires_at = now + timedelta(seconds=max(int(window_seconds), 1))
            count += 1
            self._data[key] = (count, expires_at)
            retry_after = max(0, int((expires_at - now).total_seconds()))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=retry_after, current_value=count)


class RedisRateLimiter:
    def __init__(self, client: redis.Redis):
        self.client = client

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        count = int(self.client.incr(key))
        if count == 1:
            self.client.expire(key, int(max(window_seconds, 1)))
        ttl = int(self.client.ttl(key))
        if ttl < 0:
            ttl = int(max(window_seconds, 1))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=ttl, current_value=count)


_cached_limiter: RateLimiter | None = None


def _build_limiter() -> RateLimiter:
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return RedisRateLimiter(client)
    except redis.RedisError:
        _LOG.warning("Redis limiter unavailable; fallback to in-memory limiter")
        return InMemoryRateLimiter()


def get_rate_limiter() -> RateLimiter:
    global _cached_limiter
    if _cached_limiter is None:
        _cached_limiter = _build_limiter()
    return _cached_limiter


def _hash_key_part(value: str | None) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        return "-"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:20]


def enforce_rate_limit(action: str, *, limit: int, client_ip: str | None, subject: str | None = None) -> None:
    """Counts one hit per bucket (client IP and, if given, subject) and raises ``RateLimited``."""
    limiter = get_rate_limiter()
    window = int(max(settings.PUBLIC_RATE_LIMIT_WINDOW_SECONDS, 1))
    keys = [f"trust:{action}:ip:{_hash_key_part(client_ip)}"]
    if subject:
        keys.append(f"trust:{action}:subject:{_hash_key_part(subject)}")

    for key in keys:
        result = limiter.hit(key, limit=int(max(limit, 1)), window_seconds=window)
        if not result.allowed:
            _LOG.info("rate limit hit action=%s value=%s", action, result.current_value)
            raise RateLimited(
                f"Слишком много запросов. Повторите через {max(result.retry_after_seconds, 1)} сек.",
                retry_after_seconds=result.retry_after_seconds,
            )
