"""
Entitlement data models for the Entitlements Service.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class SubscriptionPlan(str, Enum):
    """Paid subscription plans."""
    WEEKLY = "weekly"
    YEARLY = "yearly"


class ConsumeOutcome(str, Enum):
    """Why a metered action was granted or denied."""
    GRANTED_UNLIMITED = "granted_unlimited"
    GRANTED_FREE = "granted_free"
    EXHAUSTED = "exhausted"
    STORAGE_FAILURE = "storage_failure"

    @property
    def granted(self) -> bool:
        return self in (ConsumeOutcome.GRANTED_UNLIMITED, ConsumeOutcome.GRANTED_FREE)


@dataclass(frozen=True)
class TrialWindow:
    """A time-bounded grant of unlimited access."""
    activated_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SubscriptionWindow:
    """A paid subscription and its expiry."""
    plan: SubscriptionPlan
    expires_at: datetime


@dataclass(frozen=True)
class EntitlementSettings:
    """Tunables of the metering core, derived from service config."""
    default_free_messages: int = 5
    max_free_messages: int = 100
    trial_days: int = 7
    weekly_subscription_days: int = 7
    yearly_subscription_days: int = 365
    premium_item_ids: Tuple[str, ...] = ("premium-plan",)
    subscription_item_plans: Tuple[Tuple[str, SubscriptionPlan], ...] = (
        ("weekly-pro", SubscriptionPlan.WEEKLY),
        ("yearly-pro", SubscriptionPlan.YEARLY),
    )
    default_username: str = "User"

    @classmethod
    def from_config(cls, config) -> "EntitlementSettings":
        return cls(
            default_free_messages=config.default_free_messages,
            max_free_messages=config.max_free_messages,
            trial_days=config.trial_days,
            weekly_subscription_days=config.weekly_subscription_days,
            yearly_subscription_days=config.yearly_subscription_days,
            premium_item_ids=tuple(config.premium_item_ids),
            subscription_item_plans=tuple(
                (item_id, SubscriptionPlan(plan))
                for item_id, plan in config.subscription_item_plans.items()
            ),
            default_username=config.default_username,
        )

    def subscription_days(self, plan: SubscriptionPlan) -> int:
        if plan == SubscriptionPlan.WEEKLY:
            return self.weekly_subscription_days
        return self.yearly_subscription_days

    def plan_for_item(self, item_id: str) -> Optional[SubscriptionPlan]:
        for candidate, plan in self.subscription_item_plans:
            if candidate == item_id:
                return plan
        return None


@dataclass(frozen=True)
class EntitlementState:
    """In-memory mirror of the persisted entitlement fields."""
    free_messages_remaining: int = 5
    is_premium: bool = False
    purchased_items: Tuple[str, ...] = ()
    trial: Optional[TrialWindow] = None
    subscription: Optional[SubscriptionWindow] = None
    username: str = "User"

    @classmethod
    def defaults(cls, settings: EntitlementSettings) -> "EntitlementState":
        return cls(
            free_messages_remaining=settings.default_free_messages,
            username=settings.default_username,
        )

    def evolve(self, **changes) -> "EntitlementState":
        return replace(self, **changes)


@dataclass(frozen=True)
class PaymentRecord:
    """A completed payment, kept for the session's payment history."""
    item_id: str
    name: str
    price: float
    paid_at: datetime


@dataclass(frozen=True)
class ConsumeResult:
    """Result of one metered-action attempt."""
    outcome: ConsumeOutcome
    state: EntitlementState

    @property
    def granted(self) -> bool:
        return self.outcome.granted


# HTTP models

class EntitlementStateResponse(BaseModel):
    """Snapshot of the entitlement fields."""
    username: str
    free_messages_remaining: int
    is_premium: bool
    purchased_items: List[str] = Field(default_factory=list)
    is_trial_active: bool
    trial_expires_at: Optional[datetime] = None
    subscription_type: str = "none"
    subscription_expires_at: Optional[datetime] = None
    is_loading: bool = False


class AccessResponse(BaseModel):
    """Capability checks evaluated at request time."""
    has_unlimited_access: bool
    can_upload_pdf: bool
    can_generate_images: bool
    can_access_music_studio: bool
    can_send_message: bool
    remaining_trial_days: int
    has_required_item: Optional[bool] = None


class ConsumeResponse(BaseModel):
    """Outcome of a metered action."""
    granted: bool
    outcome: ConsumeOutcome
    free_messages_remaining: int


class PlanRequest(BaseModel):
    """Body naming a subscription plan."""
    plan: str = Field(..., description="weekly or yearly")


class PurchaseRequest(BaseModel):
    """Body naming a purchased item."""
    item_id: str = Field(..., min_length=1, description="Purchased item identifier")


class PaymentRequest(BaseModel):
    """Body describing a completed payment."""
    item_id: str = Field(..., min_length=1, description="Purchased item identifier")
    name: Optional[str] = Field(None, description="Display name; defaults to the item id")
    price: float = Field(0.0, ge=0)


class PaymentRecordResponse(BaseModel):
    item_id: str
    name: str
    price: float
    paid_at: datetime


class PaymentHistoryResponse(BaseModel):
    """Payments of this session, newest first."""
    payments: List[PaymentRecordResponse] = Field(default_factory=list)
    total_spent: float = 0.0


class UsernameRequest(BaseModel):
    """Body carrying a display name."""
    username: str = Field(..., min_length=1)


class OperationResponse(BaseModel):
    """Boolean outcome of a mutation."""
    success: bool
    state: EntitlementStateResponse
