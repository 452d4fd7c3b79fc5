"""
Vault model - an owner's encrypted container plus its dead man's switch.

The encrypted payload, salt and IV are opaque: nothing in this service
reads or interprets them.
"""

import enum
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, Boolean, Text, Enum, Index
)
from sqlalchemy.orm import relationship

from heirloom.models.base import Base, TimestampMixin, UTCDateTime, generate_uuid


class VaultStatus(str, enum.Enum):
    """Vault lifecycle status."""
    ACTIVE = "active"
    PENDING_VERIFICATION = "pending_verification"
    TRIGGERED = "triggered"
    INACTIVE = "inactive"


class Vault(Base, TimestampMixin):
    """
    One vault per owner.

    Status lifecycle:
        active -> pending_verification -> triggered (terminal)
        pending_verification -> active (heartbeat only)
        inactive <-> active (billing lapse / subscription extension)
    """

    __tablename__ = "vaults"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    owner_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="Owner account id, resolved through the account directory"
    )

    # Opaque encrypted payload
    encrypted_data = Column(Text, nullable=True)
    encryption_salt = Column(String(128), nullable=True)
    encryption_iv = Column(String(128), nullable=True)

    status = Column(
        Enum(*[s.value for s in VaultStatus], name="vault_status"),
        default=VaultStatus.ACTIVE,
        nullable=False,
        index=True,
        comment="Lifecycle status; triggered is terminal"
    )
    dead_man_switch_enabled = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="When false the vault is ignored by the lifecycle job"
    )

    # Monitoring configuration
    heartbeat_frequency_days = Column(
        Integer,
        nullable=False,
        default=90,
        comment="Days without a heartbeat before a warning is sent"
    )
    grace_period_days = Column(
        Integer,
        nullable=False,
        default=7,
        comment="Days after the heartbeat deadline before release"
    )
    last_seen_at = Column(
        UTCDateTime(),
        nullable=False,
        comment="Last confirmed owner liveness"
    )

    # Notification idempotency guards
    warning_email_sent_at = Column(UTCDateTime(), nullable=True)
    warning_email_count = Column(Integer, nullable=False, default=0)
    reminder_email_sent_at = Column(UTCDateTime(), nullable=True)

    verification_token = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="Lets the owner cancel a pending release"
    )
    verification_token_expires_at = Column(UTCDateTime(), nullable=True)

    # Billing / entitlement state
    plan_level = Column(
        String(20),
        nullable=False,
        default="free",
        comment="free, base or pro"
    )
    current_period_end = Column(UTCDateTime(), nullable=True)
    bonus_days = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Days granted by administrators"
    )

    triggered_at = Column(UTCDateTime(), nullable=True)

    beneficiaries = relationship(
        "Beneficiary",
        back_populates="vault",
        order_by="Beneficiary.created_at"
    )

    __table_args__ = (
        Index("ix_vaults_status_enabled", "status", "dead_man_switch_enabled"),
    )

    def __repr__(self) -> str:
        return f"<Vault(id={self.id}, status={self.status}, plan={self.plan_level})>"

    @property
    def is_triggered(self) -> bool:
        return self.status == VaultStatus.TRIGGERED

    @property
    def heartbeat_deadline(self) -> datetime:
        """When the owner becomes overdue for a heartbeat."""
        return self.last_seen_at + timedelta(days=self.heartbeat_frequency_days)

    @property
    def release_deadline(self) -> datetime:
        """When a pending vault is released if nobody checks in."""
        return self.heartbeat_deadline + timedelta(days=self.grace_period_days)

    def verification_token_valid(self, now: datetime) -> bool:
        expires_at: Optional[datetime] = self.verification_token_expires_at
        return bool(self.verification_token) and expires_at is not None and now < expires_at
