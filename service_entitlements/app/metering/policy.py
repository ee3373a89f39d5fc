"""
Access policy for metered and gated features.

All functions here are pure: they read an ``EntitlementState`` and a
wall-clock ``now`` and never touch storage. Expiry is time dependent, so
callers evaluate them on every check instead of caching the answer.
"""

import math
from datetime import datetime
from typing import Optional

from .models import EntitlementState, SubscriptionPlan

SECONDS_PER_DAY = 86400


def is_trial_active(state: EntitlementState, now: datetime) -> bool:
    return state.trial is not None and now < state.trial.expires_at


def is_subscription_active(state: EntitlementState, now: datetime) -> bool:
    return state.subscription is not None and now < state.subscription.expires_at


def active_subscription_plan(state: EntitlementState, now: datetime) -> Optional[SubscriptionPlan]:
    if is_subscription_active(state, now):
        return state.subscription.plan
    return None


def has_unlimited_access(state: EntitlementState, now: datetime) -> bool:
    """Premium, an unexpired trial, or an unexpired subscription."""
    return (
        state.is_premium
        or is_trial_active(state, now)
        or is_subscription_active(state, now)
    )


# One capability today; separate names keep call sites stable if they diverge.
def can_upload_pdf(state: EntitlementState, now: datetime) -> bool:
    return has_unlimited_access(state, now)


def can_generate_images(state: EntitlementState, now: datetime) -> bool:
    return has_unlimited_access(state, now)


def can_access_music_studio(state: EntitlementState, now: datetime) -> bool:
    return has_unlimited_access(state, now)


def has_feature_access(
    state: EntitlementState,
    now: datetime,
    required_item: Optional[str] = None
) -> bool:
    """Unlimited access, or ownership of the one-time purchase ``required_item``."""
    if has_unlimited_access(state, now):
        return True
    return required_item is not None and required_item in state.purchased_items


def can_send_message(state: EntitlementState, now: datetime) -> bool:
    """Whether a metered action would be granted now, without spending one."""
    return has_unlimited_access(state, now) or state.free_messages_remaining > 0


def remaining_trial_days(state: EntitlementState, now: datetime) -> int:
    """Whole days left on the trial, rounded up; 0 without an active trial."""
    if not is_trial_active(state, now):
        return 0
    seconds = (state.trial.expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))
