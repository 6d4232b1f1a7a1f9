"""Durable key-value storage used for checkpoints and balance baselines.

Two backends:
- ``InMemoryKeyValueStore``: dict-backed; survives nothing, used in tests and
  when Redis is disabled.
- ``RedisKeyValueStore``: redis asyncio client with keys namespaced by a
  prefix (``musixbot:`` by default). Every write is mirrored into an in-memory
  fallback so reads keep working (with the last value written by this process)
  while Redis is unreachable; the client reconnects on the next health check.

Values are opaque bytes.
"""
from __future__ import annotations

from typing import Dict, Optional

import redis
from redis import asyncio as redis_asyncio

from musixbot.config import CHECKPOINT_SETTINGS
from musixbot.integrations.base import KeyValueStore
from musixbot.utils import get_logger

logger = get_logger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def snapshot(self) -> dict:
        return {"backend": "memory", "keys": len(self._data)}


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, redis_url: Optional[str] = None, *, key_prefix: Optional[str] = None) -> None:
        self._redis_url = str(redis_url or CHECKPOINT_SETTINGS["redis_url"])
        self._prefix = str(key_prefix if key_prefix is not None else CHECKPOINT_SETTINGS["redis_key_prefix"])
        self._fallback = InMemoryKeyValueStore()
        self._redis_client: Optional[redis_asyncio.Redis] = None
        self._is_redis_active = False

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def connect(self) -> bool:
        """Create the client and test the connection."""
        try:
            logger.info("Connecting to Redis", url=self._redis_url)
            self._redis_client = redis_asyncio.from_url(self._redis_url)
            await self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis successfully", url=self._redis_url)
        except (redis.RedisError, ConnectionError, OSError) as e:
            self._is_redis_active = False
            self._redis_client = None
            logger.warning("Failed to connect to Redis, using in-memory fallback store", error=str(e))
        return self._is_redis_active

    async def health_check(self) -> bool:
        """Check if Redis is available and update status accordingly."""
        if self._redis_client is None:
            return await self.connect()
        try:
            await self._redis_client.ping()
            if not self._is_redis_active:
                logger.info("Redis connection restored")
            self._is_redis_active = True
        except (redis.RedisError, ConnectionError, OSError) as e:
            if self._is_redis_active:
                logger.warning("Redis connection lost, using in-memory fallback store", error=str(e))
            self._is_redis_active = False
        return self._is_redis_active

    async def get(self, key: str) -> Optional[bytes]:
        if not self._is_redis_active or self._redis_client is None:
            return await self._fallback.get(key)
        try:
            value = await self._redis_client.get(self._key(key))
        except redis.RedisError as e:
            logger.error("Redis error during get", key=key, error=str(e))
            self._is_redis_active = False
            return await self._fallback.get(key)
        if value is None:
            return None
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    async def set(self, key: str, value: bytes) -> None:
        await self._fallback.set(key, value)
        if not self._is_redis_active or self._redis_client is None:
            logger.debug("Redis unavailable, value kept in memory only", key=key)
            return
        try:
            await self._redis_client.set(self._key(key), value)
        except redis.RedisError as e:
            logger.error("Redis error during set", key=key, error=str(e))
            self._is_redis_active = False

    async def close(self) -> None:
        if self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
            self._is_redis_active = False

    @property
    def is_redis_active(self) -> bool:
        return self._is_redis_active

    def snapshot(self) -> dict:
        return {"backend": "redis", "redis_active": self._is_redis_active, "prefix": self._prefix}


async def create_kv_store() -> KeyValueStore:
    """Create and return the appropriate store based on configuration."""
    if CHECKPOINT_SETTINGS.get("use_redis", False):
        store = RedisKeyValueStore()
        if await store.connect():
            logger.info("Using Redis-backed checkpoint store")
        else:
            logger.warning("Redis enabled but unreachable; checkpoints are kept in memory until it recovers")
        return store

    logger.info("Using in-memory checkpoint store")
    return InMemoryKeyValueStore()


__all__ = ["InMemoryKeyValueStore", "RedisKeyValueStore", "create_kv_store"]
