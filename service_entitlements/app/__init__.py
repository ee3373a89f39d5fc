"""
Entitlements Service package for the Specialist Access Layer.

This package meters the free messages of one application install and
decides which paid features it may use. It provides:

- app.main: HTTP surface and the composition root.
- app.metering: entitlement state, access policy, consumption and
  reconciliation.
- app.storage: the persistent key-value store (Redis or in-memory).

Guidelines:
- The persisted store is the source of truth; memory is a cache of it.
- Only ``EntitlementService`` writes the entitlement keys.
- Access checks are evaluated on every call, never cached.
"""
