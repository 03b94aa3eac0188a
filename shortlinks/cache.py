"""Advisory cache for short code lookups.

The cache maps ``url:<short_code>`` to the original URL. It is never the
source of truth: every failure (connection refused, timeout, protocol error)
is logged and reported as a miss so the caller falls back to the database.

Flow Diagram: RedisURLCache.get()
==================================
::
    ┌─────────────┐
    │ get(key)    │
    └──────┬──────┘
           ▼
    ┌─────────────┐      timeout / RedisError / OSError
    │ wait_for(   │ ───────────────────────────────┐
    │  redis.get) │                                │
    └──────┬──────┘                                ▼
           ▼                                ┌─────────────┐
    ┌─────────────┐                         │ log warning │
    │ value|None  │                         │ return None │
    └─────────────┘                         └─────────────┘

Backends
========
- ``RedisURLCache``: production, shared by every worker.
- ``InMemoryURLCache``: single process, used by tests and ``CACHE_BACKEND=memory``.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

__all__ = [
    "CACHE_KEY_PREFIX",
    "InMemoryURLCache",
    "RedisURLCache",
    "URLCache",
    "cache_key",
]

CACHE_KEY_PREFIX = "url:"

CACHE_OPERATIONS_TOTAL = Counter(
    "shortlinks_cache_operations_total",
    "Total cache operations by outcome",
    ["operation", "outcome"],
)


def cache_key(short_code: str) -> str:
    return f"{CACHE_KEY_PREFIX}{short_code}"


class URLCache(ABC):
    """Key/value cache with per-entry TTL. Implementations must never raise."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisURLCache(URLCache):
    """Redis-backed cache with a bounded timeout on every round trip.

    Args:
        client: Shared ``redis.asyncio`` client (decode_responses=True)
        timeout: Seconds allowed per operation before it counts as a miss
        logger: Optional logger
    """

    _FAILURES = (RedisError, OSError, asyncio.TimeoutError)

    def __init__(
        self,
        client: redis.Redis,
        timeout: float = 0.25,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._logger = logger or logging.getLogger("shortlinks")

    @classmethod
    def from_url(cls, url: str, timeout: float = 0.25, logger: Optional[logging.Logger] = None) -> "RedisURLCache":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, timeout=timeout, logger=logger)

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await asyncio.wait_for(self._client.get(key), self._timeout)
        except self._FAILURES as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", outcome="error").inc()
            self._logger.warning(f"Cache get failed for {key}, treating as miss: {exc!r}")
            return None
        CACHE_OPERATIONS_TOTAL.labels(operation="get", outcome="hit" if value else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await asyncio.wait_for(self._client.setex(key, ttl, value), self._timeout)
            CACHE_OPERATIONS_TOTAL.labels(operation="set", outcome="ok").inc()
        except self._FAILURES as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="set", outcome="error").inc()
            self._logger.warning(f"Cache set failed for {key}: {exc!r}")

    async def delete(self, key: str) -> None:
        try:
            await asyncio.wait_for(self._client.delete(key), self._timeout)
            CACHE_OPERATIONS_TOTAL.labels(operation="delete", outcome="ok").inc()
        except self._FAILURES as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="delete", outcome="error").inc()
            self._logger.warning(f"Cache delete failed for {key}: {exc!r}")

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self._client.ping(), self._timeout))
        except self._FAILURES as exc:
            self._logger.error(f"Cache health check failed: {exc!r}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryURLCache(URLCache):
    """Process-local cache honouring TTLs with a monotonic clock."""

    def __init__(self, clock=time.monotonic) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if self._clock() >= deadline:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)
