"""
Compensation ledger - administrator corrections with full audit trail.

Every operation requires an administrator id and a non-empty reason, and
writes exactly one CompensationLogEntry holding the before and after state
of every record it touched. The mutation and its log entry commit
together.

Operations:
- extend_subscription: push current_period_end out, reactivate lapsed vaults
- reset_decryption_count: zero the counter for one or all beneficiaries
- adjust_decryption_count: consume (give back used attempts) or bonus
  (grant extra attempts)
- reissue_release_token: new 90-day release token for a released beneficiary
- batch_compensate: extend or reset across up to 100 vaults
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from heirloom.config.settings import LifecycleSettings, get_settings
from heirloom.errors import HeirloomError, InvalidStateError, NotFoundError, ValidationError
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.compensation_log import CompensationActionType, CompensationLogEntry
from heirloom.models.vault import Vault, VaultStatus
from heirloom.repositories.vault_repository import VaultRepository

logger = logging.getLogger(__name__)


class AdjustMode:
    CONSUME = "consume"
    BONUS = "bonus"

    ALL = (CONSUME, BONUS)


BATCH_ACTIONS = (
    CompensationActionType.EXTEND_SUBSCRIPTION,
    CompensationActionType.RESET_DECRYPTION_COUNT,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def vault_snapshot(vault: Vault) -> Dict[str, Any]:
    return {
        "id": vault.id,
        "status": VaultStatus(vault.status).value,
        "plan_level": vault.plan_level,
        "current_period_end": _iso(vault.current_period_end),
        "bonus_days": vault.bonus_days,
        "dead_man_switch_enabled": vault.dead_man_switch_enabled,
        "last_seen_at": _iso(vault.last_seen_at),
        "warning_email_count": vault.warning_email_count,
        "warning_email_sent_at": _iso(vault.warning_email_sent_at),
        "reminder_email_sent_at": _iso(vault.reminder_email_sent_at),
        "triggered_at": _iso(vault.triggered_at),
    }


def beneficiary_snapshot(beneficiary: Beneficiary) -> Dict[str, Any]:
    return {
        "id": beneficiary.id,
        "status": BeneficiaryStatus(beneficiary.status).value,
        "decryption_count": beneficiary.decryption_count,
        "decryption_limit": beneficiary.decryption_limit,
        "bonus_decryption_count": beneficiary.bonus_decryption_count,
        "release_token_expires_at": _iso(beneficiary.release_token_expires_at),
    }


def validate_actor(admin_id: Optional[str], reason: Optional[str]) -> str:
    """Check administrator identity and reason; returns the trimmed reason."""
    if not admin_id or not admin_id.strip():
        raise ValidationError("Administrator id is required", field="admin_id")
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required for every administrator action", field="reason")
    return reason.strip()


def validate_positive(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    return value


def write_log_entry(
    db: Session,
    admin_id: str,
    action_type: str,
    vault_id: str,
    reason: str,
    before_state: Dict[str, Any],
    after_state: Dict[str, Any],
    action_data: Optional[Dict[str, Any]] = None,
    beneficiary_id: Optional[str] = None,
    affected_beneficiary_ids: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> CompensationLogEntry:
    """Add an audit entry to the session (not committed)."""
    entry = CompensationLogEntry(
        admin_id=admin_id,
        action_type=action_type,
        vault_id=vault_id,
        beneficiary_id=beneficiary_id,
        affected_beneficiary_ids=affected_beneficiary_ids or [],
        action_data=action_data or {},
        reason=reason,
        before_state=before_state,
        after_state=after_state,
    )
    if now is not None:
        entry.created_at = now
    db.add(entry)
    return entry


@dataclass
class BatchCompensationResult:
    action_type: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "total": len(self.succeeded) + len(self.failed),
        }


class CompensationLedger:
    """Administrator-only entitlement corrections."""

    def __init__(self, db_session: Session, settings: Optional[LifecycleSettings] = None):
        self.db = db_session
        self.repo = VaultRepository(db_session)
        self.settings = settings or get_settings()

    def _target_beneficiaries(self, vault_id: str, beneficiary_id: Optional[str]) -> List[Beneficiary]:
        if beneficiary_id:
            beneficiary = self.repo.get_beneficiary_or_raise(beneficiary_id)
            if beneficiary.vault_id != vault_id:
                raise NotFoundError("Beneficiary", beneficiary_id)
            return [beneficiary]
        return self.repo.list_beneficiaries(vault_id)

    def extend_subscription(
        self,
        vault_id: str,
        days: int,
        admin_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> CompensationLogEntry:
        """
        Extend the paid period by `days`, counted from the later of the
        current period end and now. Lapsed (inactive) vaults become active.
        """
        reason = validate_actor(admin_id, reason)
        days = validate_positive(days, "days")
        now = now or datetime.now(timezone.utc)

        vault = self.repo.get_or_raise(vault_id)
        before = vault_snapshot(vault)

        old_end = vault.current_period_end
        base = max(old_end, now) if old_end else now
        new_end = base + timedelta(days=days)

        vault.current_period_end = new_end
        vault.bonus_days = (vault.bonus_days or 0) + days
        self.db.flush()

        if vault.status == VaultStatus.INACTIVE:
            self.repo.transition_status(vault_id, VaultStatus.INACTIVE, VaultStatus.ACTIVE)

        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.EXTEND_SUBSCRIPTION,
            vault_id=vault_id,
            reason=reason,
            before_state=before,
            after_state=vault_snapshot(vault),
            action_data={
                "days": days,
                "old_end_date": _iso(old_end),
                "new_end_date": _iso(new_end),
            },
            now=now,
        )
        self.db.commit()

        logger.info(
            "Admin extended subscription",
            extra={"vault_id": vault_id, "admin_id": admin_id, "days": days}
        )
        return entry

    def reset_decryption_count(
        self,
        vault_id: str,
        admin_id: str,
        reason: str,
        beneficiary_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CompensationLogEntry:
        """Set decryption_count to 0 for one beneficiary, or all of the vault's."""
        reason = validate_actor(admin_id, reason)
        self.repo.get_or_raise(vault_id)
        targets = self._target_beneficiaries(vault_id, beneficiary_id)

        before = [beneficiary_snapshot(b) for b in targets]
        for beneficiary in targets:
            beneficiary.decryption_count = 0
        self.db.flush()

        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.RESET_DECRYPTION_COUNT,
            vault_id=vault_id,
            beneficiary_id=beneficiary_id,
            affected_beneficiary_ids=[b.id for b in targets],
            reason=reason,
            before_state={"beneficiaries": before},
            after_state={"beneficiaries": [beneficiary_snapshot(b) for b in targets]},
            action_data={"beneficiaries_count": len(targets)},
            now=now,
        )
        self.db.commit()

        logger.info(
            "Admin reset decryption count",
            extra={"vault_id": vault_id, "admin_id": admin_id, "beneficiaries": len(targets)}
        )
        return entry

    def adjust_decryption_count(
        self,
        vault_id: str,
        delta: int,
        mode: str,
        admin_id: str,
        reason: str,
        beneficiary_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CompensationLogEntry:
        """
        consume: decryption_count -= delta, floored at 0
        bonus: bonus_decryption_count += delta
        """
        reason = validate_actor(admin_id, reason)
        delta = validate_positive(delta, "delta")
        if mode not in AdjustMode.ALL:
            raise ValidationError(f"mode must be one of {AdjustMode.ALL}", field="mode")

        self.repo.get_or_raise(vault_id)
        targets = self._target_beneficiaries(vault_id, beneficiary_id)

        before = [beneficiary_snapshot(b) for b in targets]
        for beneficiary in targets:
            if mode == AdjustMode.CONSUME:
                beneficiary.decryption_count = max(0, (beneficiary.decryption_count or 0) - delta)
            else:
                beneficiary.bonus_decryption_count = (beneficiary.bonus_decryption_count or 0) + delta
        self.db.flush()

        action_type = (
            CompensationActionType.CONSUME_DECRYPTION_COUNT
            if mode == AdjustMode.CONSUME
            else CompensationActionType.ADD_BONUS_DECRYPTION_COUNT
        )
        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=action_type,
            vault_id=vault_id,
            beneficiary_id=beneficiary_id,
            affected_beneficiary_ids=[b.id for b in targets],
            reason=reason,
            before_state={"beneficiaries": before},
            after_state={"beneficiaries": [beneficiary_snapshot(b) for b in targets]},
            action_data={"count": delta, "mode": mode, "beneficiaries_count": len(targets)},
            now=now,
        )
        self.db.commit()

        logger.info(
            "Admin adjusted decryption count",
            extra={"vault_id": vault_id, "admin_id": admin_id, "mode": mode, "delta": delta}
        )
        return entry

    def reissue_release_token(
        self,
        beneficiary_id: str,
        admin_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> CompensationLogEntry:
        """
        Issue a fresh release token after the old one expired unclaimed.

        Never automatic; only for beneficiaries of released vaults.
        """
        reason = validate_actor(admin_id, reason)
        now = now or datetime.now(timezone.utc)

        beneficiary = self.repo.get_beneficiary_or_raise(beneficiary_id)
        vault = self.repo.get_or_raise(beneficiary.vault_id)
        if not vault.is_triggered or not beneficiary.release_token:
            raise InvalidStateError("Release tokens can only be re-issued after the vault has been released")

        before = beneficiary_snapshot(beneficiary)
        beneficiary.release_token = secrets.token_urlsafe(32)
        beneficiary.release_token_expires_at = now + timedelta(days=self.settings.release_token_days)
        self.db.flush()

        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.REISSUE_RELEASE_TOKEN,
            vault_id=vault.id,
            beneficiary_id=beneficiary.id,
            affected_beneficiary_ids=[beneficiary.id],
            reason=reason,
            before_state=before,
            after_state=beneficiary_snapshot(beneficiary),
            action_data={"expires_at": _iso(beneficiary.release_token_expires_at)},
            now=now,
        )
        self.db.commit()

        logger.info(
            "Admin re-issued release token",
            extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id, "admin_id": admin_id}
        )
        return entry

    def batch_compensate(
        self,
        vault_ids: List[str],
        action_type: str,
        admin_id: str,
        reason: str,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BatchCompensationResult:
        """
        Apply extend_subscription or reset_decryption_count to many vaults.

        Each vault is its own operation with its own log entry; per-vault
        failures are collected rather than raised.
        """
        validate_actor(admin_id, reason)
        if action_type not in BATCH_ACTIONS:
            raise ValidationError(f"action_type must be one of {BATCH_ACTIONS}", field="action_type")
        if not vault_ids:
            raise ValidationError("vault_ids must not be empty", field="vault_ids")
        if len(vault_ids) > self.settings.batch_compensation_limit:
            raise ValidationError(
                f"At most {self.settings.batch_compensation_limit} vaults per batch",
                field="vault_ids",
            )
        if action_type == CompensationActionType.EXTEND_SUBSCRIPTION:
            validate_positive(days, "days")

        result = BatchCompensationResult(action_type=action_type)
        for vault_id in dict.fromkeys(vault_ids):
            try:
                if action_type == CompensationActionType.EXTEND_SUBSCRIPTION:
                    self.extend_subscription(vault_id, days, admin_id, reason, now=now)
                else:
                    self.reset_decryption_count(vault_id, admin_id, reason, now=now)
                result.succeeded.append(vault_id)
            except HeirloomError as e:
                self.db.rollback()
                result.failed.append({"vault_id": vault_id, "error": e.message})
                logger.warning(
                    "Batch compensation failed for vault",
                    extra={"vault_id": vault_id, "action_type": action_type, "error": e.message}
                )

        logger.info(
            "Admin batch compensation completed",
            extra={
                "admin_id": admin_id,
                "action_type": action_type,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
            }
        )
        return result
