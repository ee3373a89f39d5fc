"""
Typed access to the persisted entitlement keys.
"""

from typing import Any, Dict, Iterable, Optional, Tuple

from shared.errors import StorageError, VerificationMismatchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..storage import KeyValueStore
from . import fields
from .fields import FieldCodec, decode_or_default
from .models import EntitlementSettings


class EntitlementRepository:
    """Reads and writes entitlement fields through their codecs.

    Storage exceptions surface as ``StorageError`` subclasses; the
    best-effort helpers log them instead.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: EntitlementSettings,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.settings = settings
        self.metrics = metrics
        self.logger = get_logger("entitlements.metering.repository")
        self.counter_codec = fields.counter_codec(
            settings.default_free_messages, settings.max_free_messages
        )
        self.username_codec = fields.username_codec(settings.default_username)

    async def read_field(self, codec: FieldCodec, repair: bool = True) -> Tuple[Any, bool]:
        """Decode one key, falling back to its default.

        Returns ``(value, read_ok)``. With ``repair`` the default is
        written back when the stored value was missing or invalid. When
        the store itself fails ``read_ok`` is false and nothing is written.
        """
        try:
            raw = await self.store.get(codec.key)
        except StorageError as e:
            self._record_storage_error("read")
            self.logger.error("Failed to read field, using default", key=codec.key, error=str(e))
            return codec.default, False

        value, repaired = decode_or_default(codec, raw)
        if repaired:
            if raw is not None:
                self.logger.warning("Invalid stored value, using default", key=codec.key, raw=raw)
            encoded_default = codec.encode(codec.default)
            if repair and not (raw is None and encoded_default is None):
                await self.write_best_effort({codec.key: encoded_default})
        return value, True

    async def read_counter(self) -> Optional[int]:
        """Authoritative counter from storage; ``None`` if absent or invalid.

        Raises ``StorageReadError`` when the store itself fails.
        """
        raw = await self.store.get(fields.FREE_MESSAGES_REMAINING)
        value, invalid = decode_or_default(self.counter_codec, raw)
        if invalid:
            if raw is not None:
                self.logger.warning("Stored counter is invalid", raw=raw)
            return None
        return value

    async def write_counter_verified(self, count: int) -> None:
        """Write the counter and read it back.

        Raises ``StorageWriteError`` or ``StorageReadError`` on store
        failure and ``VerificationMismatchError`` if the read-back differs.
        """
        expected = self.counter_codec.encode(count)
        await self.store.set(fields.FREE_MESSAGES_REMAINING, expected)
        actual = await self.store.get(fields.FREE_MESSAGES_REMAINING)
        if actual != expected:
            raise VerificationMismatchError(fields.FREE_MESSAGES_REMAINING, expected, actual)

    async def write(self, values: Dict[str, Optional[str]]) -> None:
        """Apply several keys in one store write; ``None`` removes a key."""
        pairs = [(key, value) for key, value in values.items() if value is not None]
        removals = [key for key, value in values.items() if value is None]
        await self.store.multi_write(pairs, removals)

    async def write_best_effort(self, values: Dict[str, Optional[str]]) -> bool:
        try:
            await self.write(values)
            return True
        except StorageError as e:
            self._record_storage_error("write")
            self.logger.error("Best-effort write failed", keys=list(values), error=str(e))
            return False

    async def remove(self, keys: Iterable[str]) -> None:
        await self.store.remove(keys)

    def _record_storage_error(self, operation: str):
        if self.metrics:
            self.metrics.increment_counter("storage_errors_total", operation=operation)

