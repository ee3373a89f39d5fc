"""
Integration tests for the metering flow across service restarts.

Each test drives ``EntitlementService`` end to end over one shared store;
a "restart" is a new service instance loading from that same store.
"""

import pytest
from datetime import timedelta

from shared.test_helpers import FrozenClock, T0, TestDataFactory
from service_entitlements.app.metering import (
    EntitlementService,
    EntitlementSettings,
    ReconciliationPoller,
)
from service_entitlements.app.storage import InMemoryKeyValueStore, PrefixedKeyValueStore


class TestMeteringFlow:
    """Integration tests for the install lifecycle."""

    @pytest.fixture
    def store(self):
        return InMemoryKeyValueStore()

    @pytest.fixture
    def clock(self):
        return FrozenClock()

    @pytest.fixture
    def settings(self):
        return EntitlementSettings(premium_item_ids=("premium-plan", "yearly-pro"))

    @pytest.fixture
    def make_service(self, store, settings, clock):
        def _make():
            return EntitlementService(store, settings, clock=clock)
        return _make

    @pytest.mark.asyncio
    async def test_fresh_install(self, make_service):
        service = make_service()

        await service.load()

        assert service.free_messages_remaining == 5
        assert service.has_unlimited_access() is False

    @pytest.mark.asyncio
    async def test_free_messages_survive_restart(self, make_service, store):
        first = make_service()
        await first.load()
        for _ in range(3):
            assert await first.use_free_message() is True

        second = make_service()
        await second.load()

        assert second.free_messages_remaining == 2
        assert await second.use_free_message() is True
        assert await second.use_free_message() is True
        assert await second.use_free_message() is False
        assert store.data["freeMessagesRemaining"] == "0"

    @pytest.mark.asyncio
    async def test_trial_then_subscription(self, make_service, store, clock):
        service = make_service()
        await service.load()

        await service.start_free_trial("yearly", now=T0)
        clock.advance(days=2)
        assert service.get_remaining_trial_days() == 5

        await service.activate_subscription("weekly", now=clock())

        assert store.data["isTrialActive"] == "false"
        assert service.subscription_type == "weekly"
        assert service.subscription_expires_at == T0 + timedelta(days=9)

        restarted = make_service()
        await restarted.load()
        assert restarted.subscription_type == "weekly"
        assert restarted.state.trial is None
        assert restarted.has_unlimited_access() is True

    @pytest.mark.asyncio
    async def test_subscription_lapses_across_restart(self, make_service, store, clock):
        service = make_service()
        await service.load()
        await service.activate_subscription("weekly")

        clock.advance(days=10)
        restarted = make_service()
        await restarted.load()

        assert restarted.has_unlimited_access() is False
        assert store.data["subscriptionType"] == "none"
        assert await restarted.use_free_message() is True
        assert restarted.free_messages_remaining == 4

    @pytest.mark.asyncio
    async def test_write_failure_does_not_lose_messages(self, make_service, store):
        store.data.update(TestDataFactory.create_stored_fields(freeMessagesRemaining="3"))
        service = make_service()
        await service.load()

        store.fail_writes = True
        assert await service.use_free_message() is False
        store.fail_writes = False

        restarted = make_service()
        await restarted.load()
        assert restarted.free_messages_remaining == 3
        assert await restarted.use_free_message() is True
        assert restarted.free_messages_remaining == 2

    @pytest.mark.asyncio
    async def test_premium_purchase(self, make_service):
        service = make_service()
        await service.load()

        await service.add_purchased_item("yearly-pro")

        assert service.is_premium is True
        assert service.has_unlimited_access() is True
        for _ in range(10):
            assert await service.use_free_message() is True
        assert service.free_messages_remaining == 5

    @pytest.mark.asyncio
    async def test_every_field_round_trips(self, make_service):
        service = make_service()
        await service.load()
        await service.set_username("Ada")
        await service.add_purchased_item("music-pack")
        await service.start_free_trial("weekly")
        await service.use_free_message()
        before = service.state

        restarted = make_service()
        after = await restarted.load()

        assert after == before

    @pytest.mark.asyncio
    async def test_clear_all_data_across_restart(self, make_service, settings):
        service = make_service()
        await service.load()
        await service.add_purchased_item("premium-plan")
        await service.activate_subscription("yearly")
        await service.clear_all_data()

        restarted = make_service()
        state = await restarted.load()

        assert state.free_messages_remaining == 5
        assert state.is_premium is False
        assert state.trial is None
        assert state.subscription is None
        assert state.purchased_items == ()

    @pytest.mark.asyncio
    async def test_two_instances_stay_consistent(self, make_service, store):
        screen = make_service()
        other = make_service()
        await screen.load()
        await other.load()

        async with ReconciliationPoller(screen, interval=60):
            assert await other.use_free_message() is True
            assert await other.use_free_message() is True
            await screen.reconcile()
            assert screen.free_messages_remaining == 3

        # stale memory still cannot overspend the stored counter
        for _ in range(3):
            assert await other.use_free_message() is True
        assert await screen.use_free_message() is False
        assert store.data["freeMessagesRemaining"] == "0"

    @pytest.mark.asyncio
    async def test_installs_are_isolated_by_prefix(self, settings, clock):
        backing = InMemoryKeyValueStore()
        alice = EntitlementService(PrefixedKeyValueStore(backing, "alice:"), settings, clock=clock)
        bob = EntitlementService(PrefixedKeyValueStore(backing, "bob:"), settings, clock=clock)
        await alice.load()
        await bob.load()

        await alice.grant_premium()
        await bob.use_free_message()

        assert backing.data["alice:isPremium"] == "true"
        assert backing.data["bob:isPremium"] == "false"
        assert backing.data["alice:freeMessagesRemaining"] == "5"
        assert backing.data["bob:freeMessagesRemaining"] == "4"
