"""
Beneficiary model - a designated recipient of a vault's release.
"""

import enum
from datetime import datetime
from typing import List

from sqlalchemy import (
    Column, String, Integer, Text, Enum, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from heirloom.models.base import Base, TimestampMixin, UTCDateTime, generate_uuid


class BeneficiaryStatus(str, enum.Enum):
    """Beneficiary status (monotonic: pending -> notified -> released)."""
    PENDING = "pending"
    NOTIFIED = "notified"
    RELEASED = "released"


# Every field must be non-blank for an address to be shippable
REQUIRED_ADDRESS_FIELDS = (
    "receiver_name",
    "address_line1",
    "city",
    "zip_code",
    "country_code",
    "phone",
)


class Beneficiary(Base, TimestampMixin):
    """Recipient of a vault, with optional physical shipping address."""

    __tablename__ = "beneficiaries"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    vault_id = Column(
        String(36),
        ForeignKey("vaults.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Contact
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    relationship_type = Column(String(50), nullable=True)
    language = Column(
        String(10),
        nullable=False,
        default="en",
        comment="Notification language (en, zh, fr)"
    )

    # Shipping address (all-or-nothing)
    receiver_name = Column(String(255), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    zip_code = Column(String(20), nullable=True)
    country_code = Column(String(2), nullable=True)
    phone = Column(String(50), nullable=True)
    physical_asset_description = Column(Text, nullable=True)

    status = Column(
        Enum(*[s.value for s in BeneficiaryStatus], name="beneficiary_status"),
        default=BeneficiaryStatus.PENDING,
        nullable=False,
        index=True
    )
    release_token = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="Credential granted at release time"
    )
    release_token_expires_at = Column(UTCDateTime(), nullable=True)
    notified_at = Column(UTCDateTime(), nullable=True)

    # Decryption consumption
    decryption_count = Column(Integer, nullable=False, default=0)
    decryption_limit = Column(
        Integer,
        nullable=True,
        comment="Per-beneficiary base quota; NULL uses the plan limit"
    )
    bonus_decryption_count = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Extra attempts granted by administrators"
    )
    last_decryption_at = Column(UTCDateTime(), nullable=True)

    vault = relationship("Vault", back_populates="beneficiaries")

    __table_args__ = (
        Index("ix_beneficiaries_vault_status", "vault_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Beneficiary(id={self.id}, vault_id={self.vault_id}, status={self.status})>"

    def missing_address_fields(self) -> List[str]:
        """Required shipping fields that are empty or blank."""
        return [
            name for name in REQUIRED_ADDRESS_FIELDS
            if not (getattr(self, name) or "").strip()
        ]

    @property
    def has_complete_address(self) -> bool:
        return not self.missing_address_fields()

    def shipping_address(self) -> dict:
        return {
            "receiver_name": self.receiver_name,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "zip_code": self.zip_code,
            "country_code": self.country_code,
            "phone": self.phone,
        }

    def release_token_valid(self, now: datetime) -> bool:
        return (
            bool(self.release_token)
            and self.release_token_expires_at is not None
            and now < self.release_token_expires_at
        )
