"""
In-process key-value store for the Entitlements Service.
"""

from typing import Dict, Iterable, Optional, Sequence, Tuple

from shared.errors import StorageReadError, StorageWriteError

from .base import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store used by the ``memory`` backend and by tests.

    ``fail_reads``/``fail_writes`` make every read or write raise.
    ``drop_writes`` makes writes resolve without storing anything, which
    is how a lost write looks to the caller.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.fail_reads = False
        self.fail_writes = False
        self.drop_writes = False

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise StorageReadError(key)
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check_writable(key)
        if not self.drop_writes:
            self.data[key] = value

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            self._check_writable(keys[0])
        for key in keys:
            self.data.pop(key, None)

    async def multi_write(self, pairs: Sequence[Tuple[str, str]], removals: Sequence[str] = ()) -> None:
        keys = [key for key, _ in pairs] + list(removals)
        if not keys:
            return
        self._check_writable(keys[0])
        if self.drop_writes:
            return
        self.data.update(dict(pairs))
        for key in removals:
            self.data.pop(key, None)

    def _check_writable(self, key: str):
        if self.fail_writes:
            raise StorageWriteError(key)
