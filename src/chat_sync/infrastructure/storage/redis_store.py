"""Redis-backed key-value store for the chat list snapshot."""
from __future__ import annotations

import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    """Implements application.ports.storage.KeyValueStore.

    Expects a client created with ``decode_responses=True``.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = "chat_sync:") -> None:
        self._redis = redis
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "chat_sync:") -> RedisKeyValueStore:
        return cls(aioredis.from_url(url, decode_responses=True), prefix)

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._prefix + key)

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._prefix + key, value)

    async def remove(self, key: str) -> None:
        await self._redis.delete(self._prefix + key)

    async def aclose(self) -> None:
        await self._redis.aclose()
        logger.info("Redis connection pool closed")
