"""
VaultOwner model - the account record behind a vault.

Only the fields needed to address the owner are kept here; the account
system of record lives outside this service.
"""

from sqlalchemy import Column, String

from heirloom.models.base import Base, TimestampMixin, generate_uuid


class VaultOwner(Base, TimestampMixin):
    """Contact details of a vault owner."""

    __tablename__ = "vault_owners"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    email = Column(
        String(255),
        nullable=False,
        comment="Where warnings and reminders are sent"
    )
    name = Column(
        String(255),
        nullable=True
    )
    locale = Column(
        String(10),
        nullable=False,
        default="en",
        comment="Preferred notification language (en, zh, fr)"
    )

    def __repr__(self) -> str:
        return f"<VaultOwner(id={self.id}, email={self.email})>"
