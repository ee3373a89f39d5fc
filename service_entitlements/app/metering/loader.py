"""
Startup load of entitlement state from storage.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from shared.logging import get_logger

from . import fields
from .models import EntitlementState, SubscriptionPlan, SubscriptionWindow, TrialWindow
from .repository import EntitlementRepository


class EntitlementLoader:
    """Builds an ``EntitlementState`` from the persisted keys.

    Each key is read on its own. Missing or corrupt values fall back to
    their defaults, which are written back so memory and storage agree.
    A key whose read failed is defaulted in memory only.
    Trial and subscription windows that already expired are cleared in
    storage during the load.
    """

    def __init__(self, repository: EntitlementRepository, counter_lock: Optional[asyncio.Lock] = None):
        self.repository = repository
        self.settings = repository.settings
        # Held while the counter is read and repaired; consumption takes the same lock.
        self.counter_lock = counter_lock or asyncio.Lock()
        self.logger = get_logger("entitlements.metering.loader")

    async def load(self, now: datetime) -> EntitlementState:
        repo = self.repository

        username, _ = await repo.read_field(repo.username_codec, repair=False)
        is_premium, _ = await repo.read_field(fields.IS_PREMIUM_CODEC)
        purchased_items, _ = await repo.read_field(fields.PURCHASED_ITEMS_CODEC)
        async with self.counter_lock:
            free_messages, _ = await repo.read_field(repo.counter_codec)
        trial_active, trial_ok = await repo.read_field(fields.IS_TRIAL_ACTIVE_CODEC)
        trial_expires_at, trial_expiry_ok = await repo.read_field(fields.TRIAL_EXPIRES_AT_CODEC)
        subscription_type, subscription_ok = await repo.read_field(fields.SUBSCRIPTION_TYPE_CODEC)
        subscription_expires_at, subscription_expiry_ok = await repo.read_field(
            fields.SUBSCRIPTION_EXPIRES_AT_CODEC
        )

        trial = await self._load_trial(
            trial_active, trial_expires_at, now, persist=trial_ok and trial_expiry_ok
        )
        subscription = await self._load_subscription(
            subscription_type, subscription_expires_at, now,
            persist=subscription_ok and subscription_expiry_ok
        )

        state = EntitlementState(
            free_messages_remaining=free_messages,
            is_premium=is_premium,
            purchased_items=tuple(dict.fromkeys(purchased_items)),
            trial=trial,
            subscription=subscription,
            username=username,
        )

        self.logger.info(
            "Entitlement state loaded",
            free_messages_remaining=state.free_messages_remaining,
            is_premium=state.is_premium,
            purchased_items=len(state.purchased_items),
            trial_active=trial is not None,
            subscription_type=subscription.plan.value if subscription else fields.SUBSCRIPTION_NONE,
        )
        return state

    async def _load_trial(
        self,
        active: bool,
        expires_at: Optional[datetime],
        now: datetime,
        persist: bool = True
    ) -> Optional[TrialWindow]:
        if not active:
            return None

        if expires_at is not None and now < expires_at:
            return TrialWindow(
                activated_at=expires_at - timedelta(days=self.settings.trial_days),
                expires_at=expires_at,
            )

        if not persist:
            return None
        self.logger.info("Clearing expired trial", expires_at=expires_at)
        await self.repository.write_best_effort({
            fields.IS_TRIAL_ACTIVE: fields.IS_TRIAL_ACTIVE_CODEC.encode(False),
            fields.TRIAL_EXPIRES_AT: None,
        })
        return None

    async def _load_subscription(
        self,
        subscription_type: str,
        expires_at: Optional[datetime],
        now: datetime,
        persist: bool = True
    ) -> Optional[SubscriptionWindow]:
        if subscription_type == fields.SUBSCRIPTION_NONE:
            return None

        if expires_at is not None and now < expires_at:
            return SubscriptionWindow(plan=SubscriptionPlan(subscription_type), expires_at=expires_at)

        if not persist:
            return None
        self.logger.info(
            "Clearing expired subscription",
            subscription_type=subscription_type,
            expires_at=expires_at
        )
        await self.repository.write_best_effort({
            fields.SUBSCRIPTION_TYPE: fields.SUBSCRIPTION_NONE,
            fields.SUBSCRIPTION_EXPIRES_AT: None,
        })
        return None
