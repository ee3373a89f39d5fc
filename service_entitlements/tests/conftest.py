"""
Shared fixtures for Entitlements service tests.
"""

from datetime import timedelta

import pytest

from shared.test_helpers import FrozenClock, T0
from service_entitlements.app.metering import (
    EntitlementService,
    EntitlementSettings,
    EntitlementState,
    SubscriptionWindow,
    TrialWindow,
)
from service_entitlements.app.storage import InMemoryKeyValueStore


@pytest.fixture
def clock():
    """Clock frozen at the test epoch."""
    return FrozenClock()


@pytest.fixture
def store():
    """Empty in-memory store (a fresh install)."""
    return InMemoryKeyValueStore()


@pytest.fixture
def settings():
    """Settings with 'yearly-pro' treated as a premium purchase."""
    return EntitlementSettings(premium_item_ids=("premium-plan", "yearly-pro"))


@pytest.fixture
def service(store, settings, clock):
    """Entitlement service over the in-memory store; not yet loaded."""
    return EntitlementService(store, settings, clock=clock)


@pytest.fixture
def make_state():
    """Build an EntitlementState with optional trial/subscription windows."""

    def _make(
        free_messages_remaining=5,
        is_premium=False,
        trial_expires_at=None,
        subscription_plan=None,
        subscription_expires_at=None,
        purchased_items=(),
    ):
        trial = None
        if trial_expires_at is not None:
            trial = TrialWindow(
                activated_at=trial_expires_at - timedelta(days=7),
                expires_at=trial_expires_at
            )
        subscription = None
        if subscription_plan is not None:
            subscription = SubscriptionWindow(
                plan=subscription_plan,
                expires_at=subscription_expires_at or T0 + timedelta(days=7)
            )
        return EntitlementState(
            free_messages_remaining=free_messages_remaining,
            is_premium=is_premium,
            purchased_items=tuple(purchased_items),
            trial=trial,
            subscription=subscription,
        )

    return _make
