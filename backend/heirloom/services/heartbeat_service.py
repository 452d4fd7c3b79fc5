"""
Heartbeat recorder.

A heartbeat is the owner's proof of life. It resets the monitoring clock
and cancels any pending release; it is the only way a vault leaves
pending_verification for active. Triggered vaults cannot be revived.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from heirloom.errors import InvalidStateError, NotFoundError
from heirloom.models.dead_man_switch_event import DeadManSwitchEventType
from heirloom.models.vault import Vault, VaultStatus
from heirloom.repositories.vault_repository import VaultRepository
from heirloom.services.event_log import record_event

logger = logging.getLogger(__name__)


class HeartbeatSource:
    OWNER = "owner"
    VERIFICATION_LINK = "verification_link"
    ADMIN = "admin"


_REVIVABLE_STATUSES = (
    VaultStatus.ACTIVE,
    VaultStatus.PENDING_VERIFICATION,
    VaultStatus.INACTIVE,
)


class HeartbeatService:
    """Records owner liveness signals."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.repo = VaultRepository(db_session)

    def record_heartbeat(
        self,
        vault_id: str,
        source: str = HeartbeatSource.OWNER,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> Vault:
        """
        Mark the owner as seen now and clear all warning state.

        Raises:
            NotFoundError: vault does not exist
            InvalidStateError: vault has already been released
        """
        now = now or datetime.now(timezone.utc)
        vault = self.repo.get_or_raise(vault_id)
        previous_status = vault.status

        if vault.is_triggered:
            raise InvalidStateError("Vault has already been released")

        changed = self.repo.transition_status(
            vault_id,
            _REVIVABLE_STATUSES,
            VaultStatus.ACTIVE,
            last_seen_at=now,
            verification_token=None,
            verification_token_expires_at=None,
            warning_email_count=0,
            warning_email_sent_at=None,
            reminder_email_sent_at=None,
        )
        if not changed:
            # Lost a race with a release
            self.db.rollback()
            raise InvalidStateError("Vault has already been released")

        record_event(
            self.db,
            vault_id,
            DeadManSwitchEventType.HEARTBEAT_RECEIVED,
            {
                "source": source,
                "actor_id": actor_id,
                "previous_status": previous_status,
            },
            occurred_at=now,
        )

        if commit:
            self.db.commit()

        logger.info(
            "Heartbeat recorded",
            extra={"vault_id": vault_id, "source": source, "previous_status": previous_status}
        )
        return vault

    def confirm_heartbeat(self, verification_token: str, now: Optional[datetime] = None) -> Vault:
        """
        Record a heartbeat from the link in a warning email.

        Raises:
            NotFoundError: no vault holds this token
            InvalidStateError: token expired or vault already released
        """
        now = now or datetime.now(timezone.utc)
        if not verification_token:
            raise NotFoundError("Verification token", "<empty>")

        vault = (
            self.db.query(Vault)
            .filter(Vault.verification_token == verification_token)
            .first()
        )
        if vault is None:
            raise NotFoundError("Verification token", "<redacted>")

        if not vault.verification_token_valid(now):
            logger.info("Expired verification token used", extra={"vault_id": vault.id})
            raise InvalidStateError("Verification token has expired")

        return self.record_heartbeat(vault.id, source=HeartbeatSource.VERIFICATION_LINK, now=now)
