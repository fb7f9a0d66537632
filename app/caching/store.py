"""
app/caching/store.py

Cache store contract and its Redis implementation.

The cache is derived and disposable: the relational store is the source of
truth, so the whole keyspace can be flushed at any time without data loss.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol

import redis

from app.config import get_cache_settings


class CacheStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete_by_prefix(self, prefix: str) -> int:
        ...


class RedisCacheStore:
    """
    ``CacheStore`` backed by a Redis client created with ``decode_responses=True``.
    """

    def __init__(self, client: redis.Redis, *, scan_batch_size: int = 500) -> None:
        self._client = client
        self._scan_batch_size = max(10, scan_batch_size)

    def get(self, key: str) -> str | None:
        value = self._client.get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else value.decode("utf-8")

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(key, value, ex=max(1, int(ttl_seconds)))

    def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with ``prefix`` using incremental SCAN
        (never KEYS), issuing one UNLINK per ``scan_batch_size`` keys.
        """

        pattern = f"{_escape_glob(prefix)}*"
        deleted = 0
        pending: list[str] = []
        for key in self._client.scan_iter(match=pattern, count=self._scan_batch_size):
            pending.append(key)
            if len(pending) >= self._scan_batch_size:
                deleted += self._unlink(pending)
                pending = []
        if pending:
            deleted += self._unlink(pending)
        return deleted

    def _unlink(self, keys: list[str]) -> int:
        return int(self._client.unlink(*keys) or 0)


def _escape_glob(value: str) -> str:
    escaped = []
    for char in value:
        if char in "*?[]\\":
            escaped.append("\\")
        escaped.append(char)
    return "".join(escaped)


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    settings = get_cache_settings()
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.socket_timeout_seconds,
        socket_connect_timeout=settings.socket_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_cache_store() -> RedisCacheStore:
    settings = get_cache_settings()
    return RedisCacheStore(get_redis_client(), scan_batch_size=settings.scan_batch_size)
