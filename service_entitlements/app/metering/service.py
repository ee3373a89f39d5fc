"""
Entitlement service: the single owner of entitlement state.

The application constructs one ``EntitlementService`` per install, calls
``load()`` once at startup and hands the instance to every consumer. All
writes to the entitlement keys go through this class.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

from shared.errors import EntitlementExhaustedError, StorageError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..storage import KeyValueStore
from . import fields, policy
from .loader import EntitlementLoader
from .models import (
    ConsumeOutcome,
    ConsumeResult,
    EntitlementSettings,
    EntitlementState,
    PaymentRecord,
    SubscriptionPlan,
    SubscriptionWindow,
    TrialWindow,
)
from .repository import EntitlementRepository


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def reconcile_counter(state: EntitlementState, stored_count: Optional[int]) -> EntitlementState:
    """Adopt the persisted counter when it differs from memory."""
    if stored_count is None or stored_count == state.free_messages_remaining:
        return state
    return state.evolve(free_messages_remaining=stored_count)


def parse_plan(plan: Union[str, SubscriptionPlan]) -> SubscriptionPlan:
    try:
        return SubscriptionPlan(plan)
    except ValueError:
        raise ValidationError(
            f"Unknown subscription plan: {plan}",
            {"plan": plan, "allowed": [p.value for p in SubscriptionPlan]}
        )


class EntitlementService:
    """Free-message metering and feature gating for one install."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[EntitlementSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional[MetricsCollector] = None
    ):
        self.settings = settings or EntitlementSettings()
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("entitlements.metering.service")
        self._counter_lock = asyncio.Lock()
        self.repository = EntitlementRepository(store, self.settings, metrics)
        self.loader = EntitlementLoader(self.repository, self._counter_lock)

        self._state = EntitlementState.defaults(self.settings)
        self._loading = True
        # Bumped on every committed counter change.
        self._counter_generation = 0
        self._payment_history: List[PaymentRecord] = []

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------
    async def load(self) -> EntitlementState:
        """Load every field from storage into memory."""
        generation = self._counter_generation
        loaded = await self.loader.load(self.clock())

        if generation != self._counter_generation:
            # A consumption committed while the load was in flight.
            loaded = loaded.evolve(free_messages_remaining=self._state.free_messages_remaining)

        self._state = loaded
        self._loading = False
        self._publish_counter()
        return loaded

    # ---------------------------------------------------------
    # Read accessors
    # ---------------------------------------------------------
    @property
    def state(self) -> EntitlementState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def username(self) -> str:
        return self._state.username

    @property
    def free_messages_remaining(self) -> int:
        return self._state.free_messages_remaining

    @property
    def is_premium(self) -> bool:
        return self._state.is_premium

    @property
    def purchased_items(self) -> Tuple[str, ...]:
        return self._state.purchased_items

    @property
    def is_trial_active(self) -> bool:
        return policy.is_trial_active(self._state, self.clock())

    @property
    def trial_expires_at(self) -> Optional[datetime]:
        return self._state.trial.expires_at if self._state.trial else None

    @property
    def subscription_type(self) -> str:
        plan = policy.active_subscription_plan(self._state, self.clock())
        return plan.value if plan else fields.SUBSCRIPTION_NONE

    @property
    def payment_history(self) -> Tuple[PaymentRecord, ...]:
        """Payments applied since startup, newest first."""
        return tuple(self._payment_history)

    @property
    def subscription_expires_at(self) -> Optional[datetime]:
        return self._state.subscription.expires_at if self._state.subscription else None

    # ---------------------------------------------------------
    # Access checks
    # ---------------------------------------------------------
    def has_unlimited_access(self) -> bool:
        return policy.has_unlimited_access(self._state, self.clock())

    def can_upload_pdf(self) -> bool:
        return policy.can_upload_pdf(self._state, self.clock())

    def can_generate_images(self) -> bool:
        return policy.can_generate_images(self._state, self.clock())

    def can_access_music_studio(self) -> bool:
        return policy.can_access_music_studio(self._state, self.clock())

    def has_feature_access(self, required_item: Optional[str] = None) -> bool:
        return policy.has_feature_access(self._state, self.clock(), required_item)

    def can_send_message(self) -> bool:
        return policy.can_send_message(self._state, self.clock())

    def get_remaining_trial_days(self) -> int:
        return policy.remaining_trial_days(self._state, self.clock())

    # ---------------------------------------------------------
    # Metered actions
    # ---------------------------------------------------------
    async def try_consume_free_action(self) -> ConsumeResult:
        """Spend one free action unless the user has unlimited access.

        The counter is re-read from storage, decremented, written, and read
        back. Memory only moves once the read-back confirms the write;
        every storage failure yields ``STORAGE_FAILURE`` with the counter
        untouched.
        """
        async with self._counter_lock:
            state = self._state
            if policy.has_unlimited_access(state, self.clock()):
                return self._consumed(ConsumeOutcome.GRANTED_UNLIMITED)

            try:
                stored = await self.repository.read_counter()
            except StorageError as e:
                self.logger.error("Failed to read counter before consuming", error=str(e))
                return self._consumed(ConsumeOutcome.STORAGE_FAILURE)

            if stored is None:
                self.logger.warning(
                    "No valid stored counter, using in-memory value",
                    free_messages_remaining=state.free_messages_remaining
                )
                current = state.free_messages_remaining
            else:
                current = stored
                if stored != state.free_messages_remaining:
                    self.logger.info(
                        "Counter diverged from storage, adopting stored value",
                        in_memory=state.free_messages_remaining,
                        stored=stored
                    )
                    self._commit_counter(stored)

            if current <= 0:
                self.logger.info("No free messages remaining")
                return self._consumed(ConsumeOutcome.EXHAUSTED)

            new_count = current - 1
            try:
                await self.repository.write_counter_verified(new_count)
            except StorageError as e:
                self.logger.error(
                    "Failed to persist free message consumption",
                    code=e.code,
                    expected=new_count,
                    error=str(e)
                )
                if self.metrics:
                    self.metrics.increment_counter("storage_errors_total", operation="consume")
                return self._consumed(ConsumeOutcome.STORAGE_FAILURE)

            self._commit_counter(new_count)
            self.logger.info("Free message used", free_messages_remaining=new_count)
            return self._consumed(ConsumeOutcome.GRANTED_FREE)

    async def use_free_message(self) -> bool:
        """Boolean form of ``try_consume_free_action``."""
        result = await self.try_consume_free_action()
        return result.granted

    async def require_free_message(self) -> ConsumeResult:
        """Like ``try_consume_free_action`` but raises when denied.

        Exhaustion raises ``EntitlementExhaustedError``; a storage failure
        raises ``StorageError`` so callers can offer a retry instead.
        """
        result = await self.try_consume_free_action()
        if result.granted:
            return result

        details = {
            "outcome": result.outcome.value,
            "free_messages_remaining": result.state.free_messages_remaining,
        }
        if result.outcome == ConsumeOutcome.STORAGE_FAILURE:
            raise StorageError("Could not record free message use", details)
        raise EntitlementExhaustedError(details=details)

    # ---------------------------------------------------------
    # Reconciliation
    # ---------------------------------------------------------
    async def reconcile(self) -> EntitlementState:
        """Adopt the persisted counter if memory has drifted from it."""
        async with self._counter_lock:
            try:
                stored = await self.repository.read_counter()
            except StorageError as e:
                self.logger.error("Failed to read counter for reconciliation", error=str(e))
                self._count_reconciliation("error")
                return self._state

            reconciled = reconcile_counter(self._state, stored)
            if reconciled is self._state:
                self._count_reconciliation("in_sync")
                return self._state

            self.logger.info(
                "Syncing free messages with storage",
                in_memory=self._state.free_messages_remaining,
                stored=reconciled.free_messages_remaining
            )
            self._commit_counter(reconciled.free_messages_remaining)
            self._count_reconciliation("adopted")
            return self._state

    # ---------------------------------------------------------
    # Mutators
    # ---------------------------------------------------------
    async def grant_premium(self) -> bool:
        """Permanently unlock unlimited access. Idempotent."""
        saved = await self._persist(
            "premium_granted",
            {fields.IS_PREMIUM: fields.IS_PREMIUM_CODEC.encode(True)}
        )
        if saved:
            self._state = self._state.evolve(is_premium=True)
        return saved

    async def add_purchased_item(self, item_id: str) -> bool:
        """Record a one-time purchase; premium item ids also grant premium."""
        items = self._state.purchased_items
        if item_id not in items:
            items = items + (item_id,)

        saved = await self._persist(
            "purchase_recorded",
            {fields.PURCHASED_ITEMS: fields.PURCHASED_ITEMS_CODEC.encode(items)},
            item_id=item_id
        )
        if not saved:
            return False
        self._state = self._state.evolve(purchased_items=items)

        if item_id in self.settings.premium_item_ids:
            return await self.grant_premium()
        return True

    async def apply_payment(self, item_id: str, name: Optional[str] = None, price: float = 0.0) -> bool:
        """Record a paid item and start the subscription it stands for, if any.

        The payment is added to the head of ``payment_history`` once the
        purchase is persisted.
        """
        if not await self.add_purchased_item(item_id):
            return False
        self._payment_history.insert(
            0, PaymentRecord(item_id=item_id, name=name or item_id, price=price, paid_at=self.clock())
        )
        plan = self.settings.plan_for_item(item_id)
        if plan is None:
            return True
        return await self.activate_subscription(plan)

    async def start_free_trial(
        self,
        plan: Union[str, SubscriptionPlan] = SubscriptionPlan.YEARLY,
        now: Optional[datetime] = None
    ) -> bool:
        """Open a trial window of ``trial_days`` starting at ``now``."""
        plan = parse_plan(plan)
        now = as_utc(now or self.clock())
        trial = TrialWindow(activated_at=now, expires_at=now + timedelta(days=self.settings.trial_days))

        saved = await self._persist(
            "trial_started",
            {
                fields.IS_TRIAL_ACTIVE: fields.IS_TRIAL_ACTIVE_CODEC.encode(True),
                fields.TRIAL_EXPIRES_AT: fields.TRIAL_EXPIRES_AT_CODEC.encode(trial.expires_at),
            },
            plan=plan.value
        )
        if saved:
            self._state = self._state.evolve(trial=trial)
        return saved

    async def activate_subscription(
        self,
        plan: Union[str, SubscriptionPlan],
        now: Optional[datetime] = None
    ) -> bool:
        """Start a paid subscription; any trial is cleared in the same write."""
        plan = parse_plan(plan)
        now = as_utc(now or self.clock())
        subscription = SubscriptionWindow(
            plan=plan,
            expires_at=now + timedelta(days=self.settings.subscription_days(plan))
        )

        saved = await self._persist(
            "subscription_activated",
            {
                fields.IS_TRIAL_ACTIVE: fields.IS_TRIAL_ACTIVE_CODEC.encode(False),
                fields.TRIAL_EXPIRES_AT: None,
                fields.SUBSCRIPTION_TYPE: plan.value,
                fields.SUBSCRIPTION_EXPIRES_AT: fields.SUBSCRIPTION_EXPIRES_AT_CODEC.encode(
                    subscription.expires_at
                ),
            },
            plan=plan.value
        )
        if saved:
            self._state = self._state.evolve(trial=None, subscription=subscription)
        return saved

    async def reset_free_messages(self) -> bool:
        """Put the counter back to its default."""
        count = self.settings.default_free_messages
        async with self._counter_lock:
            saved = await self._persist(
                "free_messages_reset",
                {fields.FREE_MESSAGES_REMAINING: self.repository.counter_codec.encode(count)}
            )
            if saved:
                self._commit_counter(count)
            return saved

    async def set_username(self, name: str) -> bool:
        saved = await self._persist("username_changed", {fields.USERNAME: name})
        if saved:
            self._state = self._state.evolve(username=name)
        return saved

    async def clear_all_data(self) -> bool:
        """Remove every entitlement key, then re-persist the defaults."""
        async with self._counter_lock:
            try:
                await self.repository.remove(fields.ALL_KEYS)
            except StorageError as e:
                self.logger.error("Error clearing user data", error=str(e))
                return False

            defaults = EntitlementState.defaults(self.settings)
            self._state = defaults
            self._payment_history.clear()
            self._counter_generation += 1
            self._publish_counter()

            saved = await self._persist(
                "data_cleared",
                {
                    fields.FREE_MESSAGES_REMAINING: self.repository.counter_codec.encode(
                        defaults.free_messages_remaining
                    ),
                    fields.IS_PREMIUM: fields.IS_PREMIUM_CODEC.encode(False),
                    fields.PURCHASED_ITEMS: fields.PURCHASED_ITEMS_CODEC.encode(()),
                    fields.IS_TRIAL_ACTIVE: fields.IS_TRIAL_ACTIVE_CODEC.encode(False),
                    fields.SUBSCRIPTION_TYPE: fields.SUBSCRIPTION_NONE,
                }
            )
            return saved

    # ---------------------------------------------------------
    # Internals
    # ---------------------------------------------------------
    async def _persist(self, event: str, values, **log_fields) -> bool:
        try:
            await self.repository.write(values)
        except StorageError as e:
            self.logger.error(
                "Failed to persist entitlement change",
                entitlement_event=event,
                keys=list(values),
                error=str(e),
                **log_fields
            )
            if self.metrics:
                self.metrics.increment_counter("storage_errors_total", operation="write")
            return False

        self.logger.info("Entitlement change persisted", entitlement_event=event, **log_fields)
        if self.metrics:
            self.metrics.increment_counter("entitlement_events_total", event=event)
        return True

    def _commit_counter(self, count: int):
        self._state = self._state.evolve(free_messages_remaining=count)
        self._counter_generation += 1
        self._publish_counter()

    def _publish_counter(self):
        if self.metrics:
            self.metrics.set_gauge("free_messages_remaining", self._state.free_messages_remaining)

    def _consumed(self, outcome: ConsumeOutcome) -> ConsumeResult:
        if self.metrics:
            self.metrics.increment_counter("metered_actions_total", outcome=outcome.value)
        return ConsumeResult(outcome=outcome, state=self._state)

    def _count_reconciliation(self, result: str):
        if self.metrics:
            self.metrics.increment_counter("reconciliations_total", result=result)
