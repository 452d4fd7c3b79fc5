"""
Plan-tier entitlements.

- policy: pure tier -> limits lookup
- guard: allow/deny checks over vault and beneficiary records
"""

from heirloom.entitlements.policy import (
    PlanTier,
    PlanLimits,
    PLAN_LIMITS,
    limits_for,
    has_automated_monitoring,
    format_bytes,
)
from heirloom.entitlements.guard import (
    DenialCode,
    EntitlementDecision,
    EntitlementGuard,
)

__all__ = [
    "PlanTier",
    "PlanLimits",
    "PLAN_LIMITS",
    "limits_for",
    "has_automated_monitoring",
    "format_bytes",
    "DenialCode",
    "EntitlementDecision",
    "EntitlementGuard",
]
