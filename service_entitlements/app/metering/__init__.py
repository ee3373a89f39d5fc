"""
Metering package for the Entitlements Service.

Tracks the free-message counter and the premium, trial, subscription and
purchase entitlements of one install:

- fields: persisted key names and per-key codecs.
- policy: pure access decisions.
- repository/loader: storage access and the startup load.
- service: the consume algorithm and every mutator.
- reconciler: periodic counter reconciliation.
"""

from .models import (
    ConsumeOutcome,
    ConsumeResult,
    EntitlementSettings,
    EntitlementState,
    SubscriptionPlan,
    SubscriptionWindow,
    TrialWindow,
)
from .reconciler import ReconciliationPoller
from .service import EntitlementService, reconcile_counter

__all__ = [
    "ConsumeOutcome",
    "ConsumeResult",
    "EntitlementSettings",
    "EntitlementState",
    "SubscriptionPlan",
    "SubscriptionWindow",
    "TrialWindow",
    "ReconciliationPoller",
    "EntitlementService",
    "reconcile_counter",
]
