"""
Unit tests for the key-value store backends.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from shared.config import get_config
from shared.errors import StorageReadError, StorageWriteError
from service_entitlements.app.storage import (
    InMemoryKeyValueStore,
    PrefixedKeyValueStore,
    RedisKeyValueStore,
    create_store,
)


class TestInMemoryKeyValueStore:
    """Test cases for InMemoryKeyValueStore."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = InMemoryKeyValueStore()

        await store.set("a", "1")
        await store.multi_write([("b", "2"), ("c", "3")])
        assert await store.get("a") == "1"
        assert await store.get("c") == "3"

        await store.remove(["a", "missing"])
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_failure_switches(self):
        store = InMemoryKeyValueStore({"a": "1"})

        store.fail_reads = True
        with pytest.raises(StorageReadError):
            await store.get("a")

        store.fail_writes = True
        with pytest.raises(StorageWriteError):
            await store.set("a", "2")
        with pytest.raises(StorageWriteError):
            await store.remove(["a"])

    @pytest.mark.asyncio
    async def test_dropped_writes_resolve_without_storing(self):
        store = InMemoryKeyValueStore({"a": "1"})
        store.drop_writes = True

        await store.set("a", "2")
        await store.multi_write([("b", "2")])

        assert store.data == {"a": "1"}

    @pytest.mark.asyncio
    async def test_multi_write_sets_and_removes_together(self):
        store = InMemoryKeyValueStore({"isTrialActive": "true", "trialExpiresAt": "2026-03-08T12:00:00Z"})

        await store.multi_write([("isTrialActive", "false"), ("subscriptionType", "weekly")], ["trialExpiresAt"])

        assert store.data == {"isTrialActive": "false", "subscriptionType": "weekly"}

    @pytest.mark.asyncio
    async def test_failed_multi_write_applies_nothing(self):
        store = InMemoryKeyValueStore({"isTrialActive": "true", "trialExpiresAt": "2026-03-08T12:00:00Z"})
        store.fail_writes = True

        with pytest.raises(StorageWriteError):
            await store.multi_write([("isTrialActive", "false")], ["trialExpiresAt"])

        assert store.data == {"isTrialActive": "true", "trialExpiresAt": "2026-03-08T12:00:00Z"}


class TestPrefixedKeyValueStore:
    """Test cases for key namespacing."""

    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self):
        inner = InMemoryKeyValueStore()
        store = PrefixedKeyValueStore(inner, "install-1:")

        await store.set("isPremium", "true")
        await store.multi_write([("username", "Ada")])

        assert inner.data == {"install-1:isPremium": "true", "install-1:username": "Ada"}
        assert await store.get("isPremium") == "true"

        await store.remove(["isPremium"])
        assert "install-1:isPremium" not in inner.data

    @pytest.mark.asyncio
    async def test_multi_write_prefixes_removals(self):
        inner = InMemoryKeyValueStore({"install-1:trialExpiresAt": "2026-03-08T12:00:00Z"})
        store = PrefixedKeyValueStore(inner, "install-1:")

        await store.multi_write([("isTrialActive", "false")], ["trialExpiresAt"])

        assert inner.data == {"install-1:isTrialActive": "false"}


class TestCreateStore:
    """Test cases for backend selection."""

    def test_memory_backend(self):
        config = get_config("entitlements", 8011, storage_backend="memory")
        assert isinstance(create_store(config), InMemoryKeyValueStore)

    def test_redis_backend(self):
        config = get_config("entitlements", 8011, storage_backend="redis", redis_url="redis://cache:6379/1")
        store = create_store(config)

        assert isinstance(store, RedisKeyValueStore)
        assert store.redis_url == "redis://cache:6379/1"

    def test_prefix_wraps_backend(self):
        config = get_config("entitlements", 8011, storage_backend="memory", storage_key_prefix="u1:")
        store = create_store(config)

        assert isinstance(store, PrefixedKeyValueStore)
        assert isinstance(store.inner, InMemoryKeyValueStore)

    def test_unknown_backend(self):
        config = get_config("entitlements", 8011, storage_backend="sqlite")
        with pytest.raises(ValueError):
            create_store(config)


class TestRedisKeyValueStore:
    """Test cases for RedisKeyValueStore against a mocked client."""

    @pytest.fixture
    def redis_store(self):
        store = RedisKeyValueStore("redis://localhost:6379/0")
        store.redis = AsyncMock()
        return store

    @pytest.mark.asyncio
    async def test_get(self, redis_store):
        redis_store.redis.get.return_value = "4"

        assert await redis_store.get("freeMessagesRemaining") == "4"
        redis_store.redis.get.assert_called_once_with("freeMessagesRemaining")

    @pytest.mark.asyncio
    async def test_get_error_is_wrapped(self, redis_store):
        redis_store.redis.get.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageReadError) as exc_info:
            await redis_store.get("freeMessagesRemaining")

        assert exc_info.value.code == "STORAGE_READ_FAILURE"
        assert exc_info.value.key == "freeMessagesRemaining"

    @pytest.mark.asyncio
    async def test_set_error_is_wrapped(self, redis_store):
        redis_store.redis.set.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageWriteError):
            await redis_store.set("isPremium", "true")

    @pytest.mark.asyncio
    async def test_remove_deletes_all_keys(self, redis_store):
        await redis_store.remove(["a", "b"])
        redis_store.redis.delete.assert_called_once_with("a", "b")

    @pytest.mark.asyncio
    async def test_remove_nothing(self, redis_store):
        await redis_store.remove([])
        redis_store.redis.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_multi_write_uses_transaction(self, redis_store):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, True])
        pipeline_cm = MagicMock()
        pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
        pipeline_cm.__aexit__ = AsyncMock(return_value=False)
        redis_store.redis.pipeline = MagicMock(return_value=pipeline_cm)

        await redis_store.multi_write([("isTrialActive", "true"), ("trialExpiresAt", "2026-03-08T12:00:00Z")])

        redis_store.redis.pipeline.assert_called_once_with(transaction=True)
        assert pipe.set.call_count == 2
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check(self, redis_store):
        assert await redis_store.health_check() is True

        redis_store.redis.ping.side_effect = RedisConnectionError("down")
        assert await redis_store.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_before_start(self):
        store = RedisKeyValueStore("redis://localhost:6379/0")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_multi_write_deletes_in_same_transaction(self, redis_store):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, 1])
        pipeline_cm = MagicMock()
        pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
        pipeline_cm.__aexit__ = AsyncMock(return_value=False)
        redis_store.redis.pipeline = MagicMock(return_value=pipeline_cm)

        await redis_store.multi_write([("isTrialActive", "false")], ["trialExpiresAt"])

        redis_store.redis.pipeline.assert_called_once_with(transaction=True)
        pipe.set.assert_called_once_with("isTrialActive", "false")
        pipe.delete.assert_called_once_with("trialExpiresAt")
        pipe.execute.assert_awaited_once()
        redis_store.redis.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_multi_write_error_is_wrapped(self, redis_store):
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=RedisConnectionError("down"))
        pipeline_cm = MagicMock()
        pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
        pipeline_cm.__aexit__ = AsyncMock(return_value=False)
        redis_store.redis.pipeline = MagicMock(return_value=pipeline_cm)

        with pytest.raises(StorageWriteError):
            await redis_store.multi_write([("isTrialActive", "false")], ["trialExpiresAt"])
