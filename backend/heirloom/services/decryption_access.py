"""
Beneficiary decryption access.

A beneficiary presents the release token from their inheritance notice.
Each successful call consumes one decryption attempt and hands back the
opaque encrypted payload; decryption itself happens client-side.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from heirloom.entitlements.guard import EntitlementGuard, evaluate_decryption
from heirloom.entitlements.policy import limits_for
from heirloom.errors import InvalidStateError, NotFoundError
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.vault import Vault

logger = logging.getLogger(__name__)


@dataclass
class DecryptionGrant:
    vault_id: str
    beneficiary_id: str
    encrypted_data: Optional[str]
    encryption_salt: Optional[str]
    encryption_iv: Optional[str]
    decryption_count: int
    # None when the plan is unlimited
    remaining_attempts: Optional[int]


class DecryptionAccessService:
    """Validates release tokens and meters decryption attempts."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def consume(self, release_token: str, now: Optional[datetime] = None) -> DecryptionGrant:
        """
        Raises:
            NotFoundError: unknown token
            InvalidStateError: token expired, vault not released, or a
                concurrent attempt won the counter update
            EntitlementDeniedError: decryption quota exhausted
        """
        now = now or datetime.now(timezone.utc)
        if not release_token:
            raise NotFoundError("Release token", "<empty>")

        beneficiary = (
            self.db.query(Beneficiary)
            .filter(Beneficiary.release_token == release_token)
            .first()
        )
        if beneficiary is None:
            raise NotFoundError("Release token", "<redacted>")

        vault = self.db.get(Vault, beneficiary.vault_id)
        if vault is None or not vault.is_triggered:
            raise InvalidStateError("Vault has not been released")

        if not beneficiary.release_token_valid(now):
            logger.info(
                "Expired release token used",
                extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id}
            )
            raise InvalidStateError("Release token has expired; ask support to re-issue it")

        decision = EntitlementGuard.require(
            evaluate_decryption(limits_for(vault.plan_level), beneficiary)
        )

        observed = beneficiary.decryption_count or 0
        changed = self.db.execute(
            update(Beneficiary)
            .where(
                Beneficiary.id == beneficiary.id,
                Beneficiary.decryption_count == observed,
            )
            .values(
                decryption_count=observed + 1,
                last_decryption_at=now,
                status=BeneficiaryStatus.RELEASED,
            )
        ).rowcount == 1
        if not changed:
            self.db.rollback()
            raise InvalidStateError("Concurrent decryption attempt, please retry")
        self.db.commit()

        remaining = None
        if decision.remaining_attempts is not None:
            remaining = decision.remaining_attempts - 1

        logger.info(
            "Decryption attempt granted",
            extra={
                "vault_id": vault.id,
                "beneficiary_id": beneficiary.id,
                "decryption_count": observed + 1,
                "remaining_attempts": remaining,
            }
        )
        return DecryptionGrant(
            vault_id=vault.id,
            beneficiary_id=beneficiary.id,
            encrypted_data=vault.encrypted_data,
            encryption_salt=vault.encryption_salt,
            encryption_iv=vault.encryption_iv,
            decryption_count=observed + 1,
            remaining_attempts=remaining,
        )
