"""
Account directory - read-only owner lookup used to address warnings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from heirloom.errors import NotFoundError
from heirloom.models.owner import VaultOwner
from heirloom.models.vault import Vault


@dataclass
class OwnerContact:
    email: str
    name: Optional[str]
    locale: str = "en"


class AccountDirectory(ABC):
    @abstractmethod
    def get_owner(self, vault_id: str) -> OwnerContact:
        """Raises NotFoundError when the vault or its owner record is missing."""


class DatabaseAccountDirectory(AccountDirectory):
    """Resolves owners from the vault_owners table."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_owner(self, vault_id: str) -> OwnerContact:
        vault = self.db.get(Vault, vault_id)
        if vault is None:
            raise NotFoundError("Vault", vault_id)
        owner = self.db.get(VaultOwner, vault.owner_id)
        if owner is None or not owner.email:
            raise NotFoundError("Owner", vault.owner_id)
        return OwnerContact(
            email=owner.email,
            name=owner.name,
            locale=owner.locale or "en",
        )
