"""
Entitlements service for the Specialist Access Layer.

This module is the composition root: it builds the key-value store and
the single ``EntitlementService`` of the install, loads state on startup
and exposes the consumer-facing operations over HTTP.
"""

from datetime import datetime
from typing import Callable, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.config import ServiceConfig

from .metering import EntitlementService, EntitlementSettings, ReconciliationPoller
from .metering.models import (
    AccessResponse,
    ConsumeResponse,
    ConsumeResult,
    EntitlementStateResponse,
    OperationResponse,
    PaymentHistoryResponse,
    PaymentRecordResponse,
    PaymentRequest,
    PlanRequest,
    PurchaseRequest,
    UsernameRequest,
)
from .metering.service import utc_now
from .storage import KeyValueStore, create_store


class EntitlementsService(BaseService):
    """Entitlements service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        super().__init__("entitlements", 8011, config)

        self.store = store or create_store(self.config)
        self.entitlements = EntitlementService(
            self.store,
            EntitlementSettings.from_config(self.config),
            clock=clock,
            metrics=self.metrics if self.config.enable_metrics else None,
        )
        self.poller = ReconciliationPoller(
            self.entitlements,
            interval=self.config.reconcile_interval_seconds
        )

        self._setup_entitlements_routes()

    def _state_response(self) -> EntitlementStateResponse:
        service = self.entitlements
        return EntitlementStateResponse(
            username=service.username,
            free_messages_remaining=service.free_messages_remaining,
            is_premium=service.is_premium,
            purchased_items=list(service.purchased_items),
            is_trial_active=service.is_trial_active,
            trial_expires_at=service.trial_expires_at,
            subscription_type=service.subscription_type,
            subscription_expires_at=service.subscription_expires_at,
            is_loading=service.is_loading,
        )

    def _operation_response(self, success: bool) -> OperationResponse:
        return OperationResponse(success=success, state=self._state_response())

    @staticmethod
    def _consume_response(result: ConsumeResult) -> ConsumeResponse:
        return ConsumeResponse(
            granted=result.granted,
            outcome=result.outcome,
            free_messages_remaining=result.state.free_messages_remaining,
        )

    def _setup_entitlements_routes(self):
        """Set up entitlements-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "entitlements",
                "message": "Specialist Access Layer - Entitlements Service",
                "version": "1.0.0",
                "capabilities": ["metering", "trials", "subscriptions", "purchases"]
            }

        @self.app.get("/entitlements/state", response_model=EntitlementStateResponse)
        async def get_state():
            """Current entitlement fields."""
            return self._state_response()

        @self.app.get("/entitlements/access", response_model=AccessResponse)
        async def get_access(
            required_item: Optional[str] = Query(None, description="One-time purchase that also unlocks the feature")
        ):
            """Evaluate every capability check against the current time."""
            service = self.entitlements
            return AccessResponse(
                has_unlimited_access=service.has_unlimited_access(),
                can_upload_pdf=service.can_upload_pdf(),
                can_generate_images=service.can_generate_images(),
                can_access_music_studio=service.can_access_music_studio(),
                can_send_message=service.can_send_message(),
                remaining_trial_days=service.get_remaining_trial_days(),
                has_required_item=(
                    service.has_feature_access(required_item) if required_item else None
                ),
            )

        @self.app.post("/entitlements/consume", response_model=ConsumeResponse)
        async def consume():
            """Spend one free message; ``granted`` tells the caller whether to proceed."""
            result = await self.entitlements.try_consume_free_action()
            return self._consume_response(result)

        @self.app.post("/entitlements/require", response_model=ConsumeResponse)
        async def require():
            """Spend one free message or answer 402."""
            result = await self.entitlements.require_free_message()
            return self._consume_response(result)

        @self.app.post("/entitlements/reconcile", response_model=EntitlementStateResponse)
        async def reconcile():
            """Adopt the persisted counter if memory drifted."""
            await self.entitlements.reconcile()
            return self._state_response()

        @self.app.post("/entitlements/purchases", response_model=OperationResponse)
        async def add_purchase(request: PurchaseRequest):
            """Record a one-time purchase."""
            success = await self.entitlements.add_purchased_item(request.item_id)
            return self._operation_response(success)

        @self.app.post("/entitlements/payments", response_model=OperationResponse)
        async def apply_payment(request: PaymentRequest):
            """Record a completed payment and start its subscription, if any."""
            success = await self.entitlements.apply_payment(
                request.item_id, name=request.name, price=request.price
            )
            return self._operation_response(success)

        @self.app.get("/entitlements/payments", response_model=PaymentHistoryResponse)
        async def get_payment_history():
            """Payments applied since the service started, newest first."""
            history = self.entitlements.payment_history
            return PaymentHistoryResponse(
                payments=[
                    PaymentRecordResponse(
                        item_id=record.item_id,
                        name=record.name,
                        price=record.price,
                        paid_at=record.paid_at,
                    )
                    for record in history
                ],
                total_spent=sum(record.price for record in history),
            )

        @self.app.post("/entitlements/trial", response_model=OperationResponse)
        async def start_trial(request: PlanRequest):
            """Start the free trial."""
            success = await self.entitlements.start_free_trial(request.plan)
            return self._operation_response(success)

        @self.app.post("/entitlements/subscription", response_model=OperationResponse)
        async def activate_subscription(request: PlanRequest):
            """Activate a paid subscription."""
            success = await self.entitlements.activate_subscription(request.plan)
            return self._operation_response(success)

        @self.app.post("/entitlements/reset", response_model=OperationResponse)
        async def reset_free_messages():
            """Reset the free-message counter."""
            success = await self.entitlements.reset_free_messages()
            return self._operation_response(success)

        @self.app.put("/entitlements/username", response_model=OperationResponse)
        async def set_username(request: UsernameRequest):
            """Change the display name."""
            success = await self.entitlements.set_username(request.username)
            return self._operation_response(success)

        @self.app.delete("/entitlements", response_model=OperationResponse)
        async def clear_all_data():
            """Remove all stored data and start over from defaults."""
            success = await self.entitlements.clear_all_data()
            return self._operation_response(success)

    async def _check_dependencies(self):
        """Check entitlements service dependencies."""
        healthy = await self.store.health_check()
        return {"storage": "ok" if healthy else "error"}

    async def start(self):
        """Start entitlements service components."""
        await self.store.start()
        state = await self.entitlements.load()
        self.logger.info(
            "Entitlements service started",
            storage_backend=self.config.storage_backend,
            free_messages_remaining=state.free_messages_remaining
        )
        # Other writers share the store; keep the counter in step with it.
        await self.poller.start()

    async def stop(self):
        """Stop entitlements service components."""
        await self.poller.stop()
        await self.store.stop()
        self.logger.info("Entitlements service stopped")


def create_app(
    config: Optional[ServiceConfig] = None,
    store: Optional[KeyValueStore] = None,
    clock: Callable[[], datetime] = utc_now
):
    """Create entitlements service application."""
    service = EntitlementsService(config=config, store=store, clock=clock)
    return service.app


if __name__ == "__main__":
    service = EntitlementsService()
    service.run()
