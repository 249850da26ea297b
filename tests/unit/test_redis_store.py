"""
Unit Tests for Redis Key-Value Store
"""
import json

import pytest
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from leadsync.domain.errors import StoreError, StoreLimitExceededError
from leadsync.infrastructure.storage.redis_store import RedisKeyValueStore


@pytest.fixture
def redis_client():
    return AsyncMock()


class TestRedisKeyValueStore:
    """JSON encoding and error translation"""

    @pytest.mark.asyncio
    async def test_set_and_get_json(self, redis_client):
        store = RedisKeyValueStore(redis_client=redis_client)
        redis_client.get.return_value = json.dumps({"a": 1})

        await store.set("k", {"a": 1}, ttl_seconds=60)
        value = await store.get("k")

        redis_client.set.assert_awaited_once_with("k", '{"a": 1}', ex=60)
        assert value == {"a": 1}

    @pytest.mark.asyncio
    async def test_missing_key(self, redis_client):
        redis_client.get.return_value = None
        assert await RedisKeyValueStore(redis_client=redis_client).get("k") is None

    @pytest.mark.asyncio
    async def test_list_operations(self, redis_client):
        store = RedisKeyValueStore(redis_client=redis_client)
        redis_client.lrange.return_value = ["a", "b"]

        await store.list_push("idx", "a", ttl_seconds=86400)
        await store.list_remove("idx", "a")
        items = await store.list_items("idx")

        redis_client.rpush.assert_awaited_once_with("idx", "a")
        redis_client.expire.assert_awaited_once_with("idx", 86400)
        redis_client.lrem.assert_awaited_once_with("idx", 0, "a")
        assert items == ["a", "b"]

    @pytest.mark.asyncio
    async def test_connection_error_becomes_store_error(self, redis_client):
        redis_client.get.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(StoreError) as exc_info:
            await RedisKeyValueStore(redis_client=redis_client).get("k")

        assert not isinstance(exc_info.value, StoreLimitExceededError)

    @pytest.mark.asyncio
    async def test_quota_error_becomes_limit_error(self, redis_client):
        redis_client.lrange.side_effect = ResponseError("ERR max requests limit exceeded. Limit: 10000")

        with pytest.raises(StoreLimitExceededError):
            await RedisKeyValueStore(redis_client=redis_client).list_items("idx")

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        store = RedisKeyValueStore(redis_client=redis_client)
        await store.close()
        redis_client.aclose.assert_awaited_once()
