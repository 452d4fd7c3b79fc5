"""
Vault repository.

Every status change goes through transition_status(), which is a
compare-and-set: the UPDATE only matches while the vault still has the
status the caller observed. Whoever changes the row first wins; everyone
else sees False and must back off.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from heirloom.errors import NotFoundError
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.vault import Vault, VaultStatus

logger = logging.getLogger(__name__)


class VaultRepository:
    """Vault and beneficiary lookups plus conditional updates."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get(self, vault_id: str) -> Optional[Vault]:
        return self.db_session.get(Vault, vault_id)

    def get_or_raise(self, vault_id: str) -> Vault:
        vault = self.get(vault_id)
        if vault is None:
            raise NotFoundError("Vault", vault_id)
        return vault

    def get_beneficiary_or_raise(self, beneficiary_id: str) -> Beneficiary:
        beneficiary = self.db_session.get(Beneficiary, beneficiary_id)
        if beneficiary is None:
            raise NotFoundError("Beneficiary", beneficiary_id)
        return beneficiary

    def list_beneficiaries(self, vault_id: str) -> List[Beneficiary]:
        return (
            self.db_session.query(Beneficiary)
            .filter(Beneficiary.vault_id == vault_id)
            .order_by(Beneficiary.created_at, Beneficiary.id)
            .all()
        )

    def find_monitored(self, statuses: Sequence[str]) -> List[Vault]:
        """Vaults in the given statuses whose switch is enabled."""
        return (
            self.db_session.query(Vault)
            .filter(
                Vault.status.in_(list(statuses)),
                Vault.dead_man_switch_enabled.is_(True),
            )
            .order_by(Vault.id)
            .all()
        )

    def find_interrupted_releases(self, triggered_before: datetime) -> List[str]:
        """Ids of triggered vaults that still have beneficiaries pending release."""
        rows = (
            self.db_session.query(Vault.id)
            .join(Beneficiary, Beneficiary.vault_id == Vault.id)
            .filter(
                Vault.status == VaultStatus.TRIGGERED,
                or_(Vault.triggered_at.is_(None), Vault.triggered_at <= triggered_before),
                Beneficiary.status == BeneficiaryStatus.PENDING,
            )
            .distinct()
            .order_by(Vault.id)
            .all()
        )
        return [row.id for row in rows]

    def transition_status(
        self,
        vault_id: str,
        expected_status: Union[str, Iterable[str]],
        new_status: Optional[str] = None,
        extra_conditions: Iterable = (),
        **values,
    ) -> bool:
        """
        Conditionally update a vault.

        Args:
            vault_id: Vault to update
            expected_status: Status (or statuses) the vault must still have
            new_status: Status to set; None leaves the status unchanged
            extra_conditions: Further WHERE clauses (e.g. a guard column IS NULL)
            **values: Other columns to set in the same statement

        Returns:
            True if exactly one row was updated. The caller still owns the
            transaction and must commit.
        """
        if isinstance(expected_status, str):
            expected = [expected_status]
        else:
            expected = list(expected_status)

        if new_status is not None:
            values["status"] = new_status

        stmt = (
            update(Vault)
            .where(Vault.id == vault_id, Vault.status.in_(expected), *extra_conditions)
            .values(**values)
        )
        result = self.db_session.execute(stmt)
        changed = result.rowcount == 1

        if not changed:
            logger.info(
                "Conditional vault update did not match",
                extra={"vault_id": vault_id, "expected_status": expected, "new_status": new_status}
            )
        return changed
