"""
Key-value store interface for the Entitlements Service.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence, Tuple


class KeyValueStore(ABC):
    """Asynchronous string-keyed store holding string values.

    Writes are assumed durable once they resolve. ``multi_write`` is the
    only operation that spans several keys atomically.
    """

    async def start(self):
        """Open connections, if the backend has any."""

    async def stop(self):
        """Release connections, if the backend has any."""

    async def health_check(self) -> bool:
        """Report whether the backend is reachable."""
        return True

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or ``None``. Raises ``StorageReadError``."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``. Raises ``StorageWriteError``."""

    @abstractmethod
    async def remove(self, keys: Iterable[str]) -> None:
        """Delete every key in ``keys``. Raises ``StorageWriteError``."""

    @abstractmethod
    async def multi_write(self, pairs: Sequence[Tuple[str, str]], removals: Sequence[str] = ()) -> None:
        """Store ``pairs`` and delete ``removals`` all together or not at all.

        Raises ``StorageWriteError``.
        """


class PrefixedKeyValueStore(KeyValueStore):
    """Namespaces every key of a wrapped store."""

    def __init__(self, inner: KeyValueStore, prefix: str):
        self.inner = inner
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def start(self):
        await self.inner.start()

    async def stop(self):
        await self.inner.stop()

    async def health_check(self) -> bool:
        return await self.inner.health_check()

    async def get(self, key: str) -> Optional[str]:
        return await self.inner.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self.inner.set(self._key(key), value)

    async def remove(self, keys: Iterable[str]) -> None:
        await self.inner.remove([self._key(key) for key in keys])

    async def multi_write(self, pairs: Sequence[Tuple[str, str]], removals: Sequence[str] = ()) -> None:
        await self.inner.multi_write(
            [(self._key(key), value) for key, value in pairs],
            [self._key(key) for key in removals]
        )
