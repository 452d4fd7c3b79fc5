"""
Entitlement guard - checks proposed actions against plan limits.

All checks are read-only. A denial is returned, not raised; callers that
want the exception form pass the decision to EntitlementGuard.require().
Callers apply the guarded mutation themselves after an allowed decision.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from heirloom.entitlements.policy import PlanLimits, format_bytes, limits_for
from heirloom.errors import EntitlementDeniedError, NotFoundError
from heirloom.models.beneficiary import Beneficiary
from heirloom.models.vault import Vault

logger = logging.getLogger(__name__)


class DenialCode:
    """Machine-readable denial codes."""
    STORAGE_QUOTA_EXCEEDED = "storage_quota_exceeded"
    BENEFICIARY_LIMIT_REACHED = "beneficiary_limit_reached"
    HEARTBEAT_FREQUENCY_OUT_OF_RANGE = "heartbeat_frequency_out_of_range"
    DECRYPTION_LIMIT_REACHED = "decryption_limit_reached"


@dataclass
class EntitlementDecision:
    """Result of an entitlement check."""
    allowed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    plan_level: Optional[str] = None
    limit: Optional[int] = None
    # Decryption checks only; None when unlimited
    remaining_attempts: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "code": self.code,
            "plan_level": self.plan_level,
            "limit": self.limit,
            "remaining_attempts": self.remaining_attempts,
        }


def evaluate_storage(limits: PlanLimits, proposed_bytes: int) -> EntitlementDecision:
    if proposed_bytes > limits.storage_bytes:
        return EntitlementDecision(
            allowed=False,
            reason=(
                f"File size exceeds {limits.display_name} plan limit "
                f"({format_bytes(limits.storage_bytes)})"
            ),
            code=DenialCode.STORAGE_QUOTA_EXCEEDED,
            plan_level=limits.tier.value,
            limit=limits.storage_bytes,
        )
    return EntitlementDecision(
        allowed=True, plan_level=limits.tier.value, limit=limits.storage_bytes
    )


def evaluate_beneficiary_count(limits: PlanLimits, current_count: int) -> EntitlementDecision:
    if current_count >= limits.max_beneficiaries:
        noun = "beneficiary" if limits.max_beneficiaries == 1 else "beneficiaries"
        return EntitlementDecision(
            allowed=False,
            reason=(
                f"Beneficiary limit reached. {limits.display_name} plan supports "
                f"up to {limits.max_beneficiaries} {noun}."
            ),
            code=DenialCode.BENEFICIARY_LIMIT_REACHED,
            plan_level=limits.tier.value,
            limit=limits.max_beneficiaries,
        )
    return EntitlementDecision(
        allowed=True, plan_level=limits.tier.value, limit=limits.max_beneficiaries
    )


def evaluate_heartbeat_frequency(limits: PlanLimits, days: int) -> EntitlementDecision:
    low, high = limits.heartbeat_range
    if days < low or days > high:
        return EntitlementDecision(
            allowed=False,
            reason=(
                f"Heartbeat frequency must be between {low} and {high} days "
                f"for {limits.display_name} plan."
            ),
            code=DenialCode.HEARTBEAT_FREQUENCY_OUT_OF_RANGE,
            plan_level=limits.tier.value,
        )
    return EntitlementDecision(allowed=True, plan_level=limits.tier.value)


def evaluate_decryption(limits: PlanLimits, beneficiary: Beneficiary) -> EntitlementDecision:
    """
    Effective limit is the beneficiary's base quota (its own decryption_limit,
    else the plan's) plus administrator-granted bonus attempts. Unlimited
    plans never deny.
    """
    if limits.unlimited_decryptions:
        return EntitlementDecision(allowed=True, plan_level=limits.tier.value)

    base_limit = beneficiary.decryption_limit
    if base_limit is None:
        base_limit = limits.decryption_limit
    effective_limit = base_limit + (beneficiary.bonus_decryption_count or 0)
    used = beneficiary.decryption_count or 0

    if used >= effective_limit:
        return EntitlementDecision(
            allowed=False,
            reason="Decryption limit reached. Please upgrade to Base or Pro plan.",
            code=DenialCode.DECRYPTION_LIMIT_REACHED,
            plan_level=limits.tier.value,
            limit=effective_limit,
            remaining_attempts=0,
        )
    return EntitlementDecision(
        allowed=True,
        plan_level=limits.tier.value,
        limit=effective_limit,
        remaining_attempts=effective_limit - used,
    )


class EntitlementGuard:
    """
    Evaluates vault and beneficiary actions against their plan.

    Raises NotFoundError for unknown vaults/beneficiaries; every other
    outcome is an EntitlementDecision.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get_vault(self, vault_id: str) -> Vault:
        vault = self.db.get(Vault, vault_id)
        if vault is None:
            raise NotFoundError("Vault", vault_id)
        return vault

    def check_storage(self, vault_id: str, proposed_bytes: int) -> EntitlementDecision:
        vault = self._get_vault(vault_id)
        return evaluate_storage(limits_for(vault.plan_level), proposed_bytes)

    def check_beneficiary_count(self, vault_id: str) -> EntitlementDecision:
        vault = self._get_vault(vault_id)
        current = (
            self.db.query(Beneficiary)
            .filter(Beneficiary.vault_id == vault_id)
            .count()
        )
        return evaluate_beneficiary_count(limits_for(vault.plan_level), current)

    def check_heartbeat_frequency(self, vault_id: str, days: int) -> EntitlementDecision:
        vault = self._get_vault(vault_id)
        return evaluate_heartbeat_frequency(limits_for(vault.plan_level), days)

    def check_decryption(self, beneficiary_id: str, vault_id: str) -> EntitlementDecision:
        vault = self._get_vault(vault_id)
        beneficiary = self.db.get(Beneficiary, beneficiary_id)
        if beneficiary is None or beneficiary.vault_id != vault.id:
            raise NotFoundError("Beneficiary", beneficiary_id)
        return evaluate_decryption(limits_for(vault.plan_level), beneficiary)

    @staticmethod
    def require(decision: EntitlementDecision) -> EntitlementDecision:
        """Raise EntitlementDeniedError for a denied decision, else pass it through."""
        if not decision.allowed:
            logger.info(
                "Entitlement denied",
                extra={"code": decision.code, "plan_level": decision.plan_level}
            )
            raise EntitlementDeniedError(
                reason=decision.reason,
                code=decision.code,
                plan_level=decision.plan_level,
                limit=decision.limit,
            )
        return decision
