"""
Plan policy - pure mapping from plan tier to limits.

No state and no database access; every other component consumes this.
Unknown or missing tiers resolve to the free tier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

KB = 1024
MB = 1024 * KB
GB = 1024 * MB


class PlanTier(str, Enum):
    """Subscription tiers."""
    FREE = "free"
    BASE = "base"
    PRO = "pro"


@dataclass(frozen=True)
class PlanLimits:
    """Limits of one plan tier."""
    tier: PlanTier
    display_name: str
    storage_bytes: int
    max_beneficiaries: int
    heartbeat_range: Tuple[int, int]
    default_heartbeat_days: int
    # None means unlimited
    decryption_limit: Optional[int]
    automated_monitoring: bool

    @property
    def unlimited_decryptions(self) -> bool:
        return self.decryption_limit is None

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "storage_bytes": self.storage_bytes,
            "max_beneficiaries": self.max_beneficiaries,
            "heartbeat_range": list(self.heartbeat_range),
            "default_heartbeat_days": self.default_heartbeat_days,
            "decryption_limit": self.decryption_limit,
            "automated_monitoring": self.automated_monitoring,
        }


# Plan tier limit matrix
PLAN_LIMITS = {
    PlanTier.FREE: PlanLimits(
        tier=PlanTier.FREE,
        display_name="Free",
        storage_bytes=10 * KB,
        max_beneficiaries=1,
        heartbeat_range=(180, 180),
        default_heartbeat_days=180,
        decryption_limit=1,
        automated_monitoring=False,  # Manual check-ins only
    ),
    PlanTier.BASE: PlanLimits(
        tier=PlanTier.BASE,
        display_name="Base",
        storage_bytes=50 * MB,
        max_beneficiaries=3,
        heartbeat_range=(30, 365),
        default_heartbeat_days=90,
        decryption_limit=None,
        automated_monitoring=True,
    ),
    PlanTier.PRO: PlanLimits(
        tier=PlanTier.PRO,
        display_name="Pro",
        storage_bytes=2 * GB,
        max_beneficiaries=10,
        heartbeat_range=(30, 365),
        default_heartbeat_days=90,
        decryption_limit=None,
        automated_monitoring=True,
    ),
}


def resolve_tier(tier: Union[PlanTier, str, None]) -> PlanTier:
    """Normalize a tier value; anything unrecognised is the free tier."""
    if isinstance(tier, PlanTier):
        return tier
    try:
        return PlanTier((tier or "").strip().lower())
    except ValueError:
        return PlanTier.FREE


def limits_for(tier: Union[PlanTier, str, None]) -> PlanLimits:
    """Limits for a tier."""
    return PLAN_LIMITS[resolve_tier(tier)]


def has_automated_monitoring(tier: Union[PlanTier, str, None]) -> bool:
    return limits_for(tier).automated_monitoring


def format_bytes(num_bytes: int) -> str:
    """Format a byte count as B/KB/MB/GB for denial messages."""
    if num_bytes < KB:
        return f"{num_bytes} B"
    if num_bytes < MB:
        return f"{num_bytes / KB:.2f} KB"
    if num_bytes < GB:
        return f"{num_bytes / MB:.2f} MB"
    return f"{num_bytes / GB:.2f} GB"
