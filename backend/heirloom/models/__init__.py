"""
Database models for vaults, beneficiaries and their audit trails.
"""

from heirloom.models.base import (
    Base, TimestampMixin, UTCDateTime, AppendOnlyViolationError, generate_uuid
)
from heirloom.models.owner import VaultOwner
from heirloom.models.vault import Vault, VaultStatus
from heirloom.models.beneficiary import (
    Beneficiary, BeneficiaryStatus, REQUIRED_ADDRESS_FIELDS
)
from heirloom.models.dead_man_switch_event import DeadManSwitchEvent, DeadManSwitchEventType
from heirloom.models.compensation_log import CompensationLogEntry, CompensationActionType
from heirloom.models.shipping_log import ShippingLog

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "AppendOnlyViolationError",
    "generate_uuid",
    "VaultOwner",
    "Vault",
    "VaultStatus",
    "Beneficiary",
    "BeneficiaryStatus",
    "REQUIRED_ADDRESS_FIELDS",
    "DeadManSwitchEvent",
    "DeadManSwitchEventType",
    "CompensationLogEntry",
    "CompensationActionType",
    "ShippingLog",
]
