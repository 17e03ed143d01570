"""TTL key/value stores backing sessions and image payloads.

Two implementations share one interface: an in-process dict for tests and
single-instance deployments, and Redis for production. The backend is
chosen once at startup (see ``main.py``) and injected downstream.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis


class KeyValueStore(ABC):
    """String key/value store where every write carries a TTL."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Write a value and (re)start its TTL."""

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove keys. Missing keys are ignored."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a live value is stored under key."""

    async def close(self) -> None:
        """Release any connections held by the store."""


class MemoryStore(KeyValueStore):
    """In-process store with lazy expiry.

    Args:
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)


class RedisStore(KeyValueStore):
    """Redis-backed store. Values are plain strings with ``EX`` expiry."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        """Connect lazily to the Redis server at url."""
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def close(self) -> None:
        await self._client.aclose()
