"""
Storage package for the Entitlements Service.

The persisted store is the single source of truth for entitlement
fields. Backends:

- redis_store: Redis via ``redis.asyncio`` (production).
- memory: in-process dict (local runs and tests).
- base.PrefixedKeyValueStore: namespaces keys of any backend.
"""

from shared.config import BaseConfig

from .base import KeyValueStore, PrefixedKeyValueStore
from .memory import InMemoryKeyValueStore
from .redis_store import RedisKeyValueStore


def create_store(config: BaseConfig) -> KeyValueStore:
    """Build the store selected by ``storage_backend``."""
    backend = config.storage_backend.lower()
    if backend == "memory":
        store: KeyValueStore = InMemoryKeyValueStore()
    elif backend == "redis":
        store = RedisKeyValueStore(config.redis_url)
    else:
        raise ValueError(f"Unknown storage backend: {config.storage_backend}")

    if config.storage_key_prefix:
        store = PrefixedKeyValueStore(store, config.storage_key_prefix)
    return store


__all__ = [
    "KeyValueStore",
    "PrefixedKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_store",
]
