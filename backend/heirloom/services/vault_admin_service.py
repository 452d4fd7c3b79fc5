"""
Administrator controls over a vault's dead man's switch.

Each action needs an administrator id and a reason, appends a lifecycle
event and writes a compensation log entry with before/after snapshots.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from heirloom.errors import InvalidStateError, NotFoundError
from heirloom.models.compensation_log import CompensationActionType
from heirloom.models.dead_man_switch_event import DeadManSwitchEventType
from heirloom.models.vault import VaultStatus
from heirloom.repositories.vault_repository import VaultRepository
from heirloom.services.account_directory import AccountDirectory, DatabaseAccountDirectory
from heirloom.services.compensation_ledger import validate_actor, vault_snapshot, write_log_entry
from heirloom.services.event_log import record_event
from heirloom.services.heartbeat_service import HeartbeatService, HeartbeatSource
from heirloom.services.release_orchestrator import BeneficiaryReleaseResult, ReleaseOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class TriggerNowResult:
    vault_id: str
    beneficiaries: List[BeneficiaryReleaseResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "vault_id": self.vault_id,
            "beneficiaries": [b.to_dict() for b in self.beneficiaries],
        }


class VaultAdminService:
    """Pause, resume, reset heartbeat and force release."""

    def __init__(
        self,
        db_session: Session,
        orchestrator: Optional[ReleaseOrchestrator] = None,
        account_directory: Optional[AccountDirectory] = None,
    ):
        self.db = db_session
        self.repo = VaultRepository(db_session)
        self.orchestrator = orchestrator
        self.account_directory = account_directory or DatabaseAccountDirectory(db_session)

    def _set_switch(self, vault_id: str, enabled: bool, admin_id: str, reason: str, now: Optional[datetime]):
        reason = validate_actor(admin_id, reason)
        now = now or datetime.now(timezone.utc)
        vault = self.repo.get_or_raise(vault_id)
        if vault.is_triggered:
            raise InvalidStateError("Vault has already been released")

        before = vault_snapshot(vault)
        vault.dead_man_switch_enabled = enabled
        self.db.flush()

        record_event(
            self.db,
            vault_id,
            DeadManSwitchEventType.SWITCH_ACTIVATED if enabled else DeadManSwitchEventType.SWITCH_DEACTIVATED,
            {"admin_id": admin_id, "reason": reason},
            occurred_at=now,
        )
        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.RESUME_SWITCH if enabled else CompensationActionType.PAUSE_SWITCH,
            vault_id=vault_id,
            reason=reason,
            before_state=before,
            after_state=vault_snapshot(vault),
            now=now,
        )
        self.db.commit()

        logger.info(
            "Admin updated dead man's switch",
            extra={"vault_id": vault_id, "admin_id": admin_id, "enabled": enabled}
        )
        return entry

    def pause_switch(self, vault_id: str, admin_id: str, reason: str, now: Optional[datetime] = None):
        return self._set_switch(vault_id, False, admin_id, reason, now)

    def resume_switch(self, vault_id: str, admin_id: str, reason: str, now: Optional[datetime] = None):
        return self._set_switch(vault_id, True, admin_id, reason, now)

    def reset_heartbeat(self, vault_id: str, admin_id: str, reason: str, now: Optional[datetime] = None):
        """Record a heartbeat on the owner's behalf."""
        reason = validate_actor(admin_id, reason)
        now = now or datetime.now(timezone.utc)
        vault = self.repo.get_or_raise(vault_id)
        before = vault_snapshot(vault)

        HeartbeatService(self.db).record_heartbeat(
            vault_id, source=HeartbeatSource.ADMIN, actor_id=admin_id, now=now, commit=False
        )
        entry = write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.RESET_HEARTBEAT,
            vault_id=vault_id,
            reason=reason,
            before_state=before,
            after_state=vault_snapshot(vault),
            now=now,
        )
        self.db.commit()

        logger.info("Admin reset heartbeat", extra={"vault_id": vault_id, "admin_id": admin_id})
        return entry

    def trigger_now(self, vault_id: str, admin_id: str, reason: str, now: Optional[datetime] = None) -> TriggerNowResult:
        """
        Release a vault immediately, bypassing the heartbeat deadline.

        The status flip is a compare-and-set, so a concurrent scheduled
        release and a manual trigger can never both run the orchestrator.
        """
        reason = validate_actor(admin_id, reason)
        if self.orchestrator is None:
            raise RuntimeError("trigger_now requires a release orchestrator")
        now = now or datetime.now(timezone.utc)

        vault = self.repo.get_or_raise(vault_id)
        if vault.is_triggered:
            raise InvalidStateError("Vault has already been released")
        before = vault_snapshot(vault)

        changed = self.repo.transition_status(
            vault_id,
            (VaultStatus.ACTIVE, VaultStatus.PENDING_VERIFICATION, VaultStatus.INACTIVE),
            VaultStatus.TRIGGERED,
            triggered_at=now,
        )
        if not changed:
            self.db.rollback()
            raise InvalidStateError("Vault has already been released")

        write_log_entry(
            self.db,
            admin_id=admin_id,
            action_type=CompensationActionType.TRIGGER_NOW,
            vault_id=vault_id,
            reason=reason,
            before_state=before,
            after_state=vault_snapshot(vault),
            now=now,
        )
        self.db.commit()

        try:
            owner_name = self.account_directory.get_owner(vault_id).name
        except NotFoundError:
            owner_name = None

        results = self.orchestrator.release(vault, owner_name=owner_name, now=now)
        record_event(
            self.db,
            vault_id,
            DeadManSwitchEventType.ASSETS_RELEASED,
            {
                "trigger": "admin",
                "admin_id": admin_id,
                "reason": reason,
                "beneficiaries": [r.to_dict() for r in results],
            },
            occurred_at=now,
        )
        self.db.commit()

        logger.info(
            "Admin triggered release",
            extra={"vault_id": vault_id, "admin_id": admin_id, "beneficiaries": len(results)}
        )
        return TriggerNowResult(vault_id=vault_id, beneficiaries=results)
