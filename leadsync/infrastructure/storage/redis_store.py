"""
Redis Key-Value Store
Redis-backed store for the job queue (works with Upstash)
"""
import json
import logging
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from leadsync.domain.errors import StoreError, StoreLimitExceededError
from leadsync.domain.interfaces.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """
    KeyValueStore over redis.asyncio.

    Values are JSON-encoded strings; indexes are Redis lists. Every Redis
    failure surfaces as StoreError, and quota exhaustion as
    StoreLimitExceededError, so the queue's circuit breaker can react.
    """

    def __init__(self, redis_client=None, redis_url: Optional[str] = None):
        """
        Initialize store.

        Args:
            redis_client: Optional pre-configured Redis client
            redis_url: URL used when no client is given
        """
        self._redis = redis_client
        self._redis_url = redis_url or "redis://localhost:6379"
        self._initialized = redis_client is not None

    async def initialize(self) -> None:
        """Initialize Redis connection if not provided."""
        if self._initialized:
            return

        try:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self._redis.ping()
            self._initialized = True
            logger.info("RedisKeyValueStore connected to Redis")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise self._translate(e) from e

    @staticmethod
    def _translate(error: Exception) -> StoreError:
        if StoreLimitExceededError.matches(error):
            return StoreLimitExceededError(str(error))
        return StoreError(str(error))

    async def _ready(self):
        if not self._initialized:
            await self.initialize()
        return self._redis

    async def get(self, key: str) -> Optional[Any]:
        client = await self._ready()
        try:
            raw = await client.get(key)
        except RedisError as e:
            raise self._translate(e) from e
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        client = await self._ready()
        try:
            await client.set(key, json.dumps(value), ex=ttl_seconds or None)
        except RedisError as e:
            raise self._translate(e) from e

    async def delete(self, key: str) -> None:
        client = await self._ready()
        try:
            await client.delete(key)
        except RedisError as e:
            raise self._translate(e) from e

    async def list_push(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        client = await self._ready()
        try:
            await client.rpush(key, value)
            if ttl_seconds:
                await client.expire(key, ttl_seconds)
        except RedisError as e:
            raise self._translate(e) from e

    async def list_remove(self, key: str, value: str) -> None:
        client = await self._ready()
        try:
            await client.lrem(key, 0, value)
        except RedisError as e:
            raise self._translate(e) from e

    async def list_items(self, key: str) -> List[str]:
        client = await self._ready()
        try:
            return list(await client.lrange(key, 0, -1))
        except RedisError as e:
            raise self._translate(e) from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._initialized = False
