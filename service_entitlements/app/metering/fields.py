"""
Persisted key space and per-key codecs.

Every value in the store is a string. Each key has a codec that either
decodes the raw string into a value of the expected domain or raises
``FieldDecodeError``; callers turn that into the key's default through
``decode_or_default``. ``encode`` returning ``None`` means the key should
be absent from the store.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

USERNAME = "username"
IS_PREMIUM = "isPremium"
PURCHASED_ITEMS = "purchasedItems"
FREE_MESSAGES_REMAINING = "freeMessagesRemaining"
IS_TRIAL_ACTIVE = "isTrialActive"
TRIAL_EXPIRES_AT = "trialExpiresAt"
SUBSCRIPTION_TYPE = "subscriptionType"
SUBSCRIPTION_EXPIRES_AT = "subscriptionExpiresAt"

ALL_KEYS = (
    USERNAME,
    IS_PREMIUM,
    PURCHASED_ITEMS,
    FREE_MESSAGES_REMAINING,
    IS_TRIAL_ACTIVE,
    TRIAL_EXPIRES_AT,
    SUBSCRIPTION_TYPE,
    SUBSCRIPTION_EXPIRES_AT,
)

SUBSCRIPTION_NONE = "none"
SUBSCRIPTION_TYPES = (SUBSCRIPTION_NONE, "weekly", "yearly")

_DECIMAL = re.compile(r"^\s*-?\d+\s*$")


class FieldDecodeError(ValueError):
    """Raw stored value is missing or outside the key's domain."""


@dataclass(frozen=True)
class FieldCodec:
    """Decoder/encoder pair plus the default for one persisted key."""
    key: str
    decoder: Callable[[str], Any]
    encoder: Callable[[Any], Optional[str]]
    default: Any

    def decode(self, raw: Optional[str]) -> Any:
        if raw is None:
            raise FieldDecodeError(f"{self.key} is not set")
        try:
            return self.decoder(raw)
        except FieldDecodeError:
            raise
        except (ValueError, TypeError) as e:
            raise FieldDecodeError(f"{self.key}: {e}") from e

    def encode(self, value: Any) -> Optional[str]:
        return self.encoder(value)


def decode_or_default(codec: FieldCodec, raw: Optional[str]) -> Tuple[Any, bool]:
    """Return ``(value, repaired)``; ``repaired`` is True when the default was used."""
    try:
        return codec.decode(raw), False
    except FieldDecodeError:
        return codec.default, True


def _decode_bool(raw: str) -> bool:
    value = json.loads(raw)
    if not isinstance(value, bool):
        raise FieldDecodeError(f"expected JSON boolean, got {raw!r}")
    return value


def _encode_bool(value: bool) -> str:
    return json.dumps(bool(value))


def _decode_string_list(raw: str) -> Tuple[str, ...]:
    value = json.loads(raw)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise FieldDecodeError("expected JSON array of strings")
    return tuple(value)


def _encode_string_list(value) -> str:
    return json.dumps(list(value))


def _decode_timestamp(raw: str) -> datetime:
    if not raw.strip():
        raise FieldDecodeError("empty timestamp")
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _encode_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _decode_subscription_type(raw: str) -> str:
    value = raw.strip()
    if value not in SUBSCRIPTION_TYPES:
        raise FieldDecodeError(f"unknown subscription type {raw!r}")
    return value


def _decode_username(raw: str) -> str:
    if not raw:
        raise FieldDecodeError("empty username")
    return raw


def counter_codec(default: int = 5, maximum: int = 100) -> FieldCodec:
    """Codec for the free-message counter, valid in ``0..maximum``."""

    def decode(raw: str) -> int:
        if not _DECIMAL.match(raw):
            raise FieldDecodeError(f"not a decimal integer: {raw!r}")
        value = int(raw)
        if value < 0 or value > maximum:
            raise FieldDecodeError(f"out of range: {value}")
        return value

    return FieldCodec(FREE_MESSAGES_REMAINING, decode, str, default)


def username_codec(default: str = "User") -> FieldCodec:
    return FieldCodec(USERNAME, _decode_username, str, default)


IS_PREMIUM_CODEC = FieldCodec(IS_PREMIUM, _decode_bool, _encode_bool, False)
PURCHASED_ITEMS_CODEC = FieldCodec(PURCHASED_ITEMS, _decode_string_list, _encode_string_list, ())
IS_TRIAL_ACTIVE_CODEC = FieldCodec(IS_TRIAL_ACTIVE, _decode_bool, _encode_bool, False)
TRIAL_EXPIRES_AT_CODEC = FieldCodec(TRIAL_EXPIRES_AT, _decode_timestamp, _encode_timestamp, None)
SUBSCRIPTION_TYPE_CODEC = FieldCodec(SUBSCRIPTION_TYPE, _decode_subscription_type, str, SUBSCRIPTION_NONE)
SUBSCRIPTION_EXPIRES_AT_CODEC = FieldCodec(
    SUBSCRIPTION_EXPIRES_AT, _decode_timestamp, _encode_timestamp, None
)
