"""
Redis-backed key-value store for the Entitlements Service.
"""

from typing import Iterable, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import AccessLayerException, StorageReadError, StorageWriteError

from .base import KeyValueStore


class RedisKeyValueStore(KeyValueStore):
    """Redis adapter exposing the get/set/remove/multi_write contract."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("entitlements.storage.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis connection."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis store started")

        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis store", error=str(e))
            raise AccessLayerException("REDIS_START_FAILED", str(e))

    async def stop(self):
        """Stop the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis store stopped")

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            self.logger.error("Redis read failed", key=key, error=str(e))
            raise StorageReadError(key, str(e)) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis.set(key, value)
        except RedisError as e:
            self.logger.error("Redis write failed", key=key, error=str(e))
            raise StorageWriteError(key, str(e)) from e

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            await self.redis.delete(*keys)
        except RedisError as e:
            self.logger.error("Redis delete failed", keys=keys, error=str(e))
            raise StorageWriteError(keys[0], str(e)) from e

    async def multi_write(self, pairs: Sequence[Tuple[str, str]], removals: Sequence[str] = ()) -> None:
        """Apply every SET and DEL inside one MULTI/EXEC transaction."""
        keys = [key for key, _ in pairs] + list(removals)
        if not keys:
            return
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for key, value in pairs:
                    pipe.set(key, value)
                if removals:
                    pipe.delete(*removals)
                await pipe.execute()
        except RedisError as e:
            self.logger.error("Redis multi-write failed", keys=keys, error=str(e))
            raise StorageWriteError(keys[0], str(e)) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except (RedisError, AttributeError):
            return False
