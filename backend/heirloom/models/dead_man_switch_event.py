"""
DeadManSwitchEvent model for the immutable lifecycle history.

CRITICAL: This table is APPEND-ONLY. It is the source of truth for audits
and for diagnosing idempotency questions ("was this vault already
released?"). Never update or delete events - only insert new ones.
"""

from sqlalchemy import Column, String, ForeignKey, Index

from heirloom.models.base import (
    Base, JSONType, UTCDateTime, generate_uuid, register_append_only, utcnow
)


class DeadManSwitchEventType:
    """Event type constants."""
    WARNING_SENT = "warning_sent"
    GRACE_PERIOD_STARTED = "grace_period_started"
    REMINDER_SENT = "reminder_sent"
    ASSETS_RELEASED = "assets_released"
    RELEASE_RESUMED = "release_resumed"
    HEARTBEAT_RECEIVED = "heartbeat_received"
    SWITCH_ACTIVATED = "switch_activated"
    SWITCH_DEACTIVATED = "switch_deactivated"


@register_append_only
class DeadManSwitchEvent(Base):
    """One row per significant lifecycle transition of a vault."""

    __tablename__ = "dead_man_switch_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    vault_id = Column(
        String(36),
        ForeignKey("vaults.id"),
        nullable=False,
        index=True
    )
    event_type = Column(
        String(50),
        nullable=False,
        index=True
    )
    event_data = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Event-specific details (deadlines, delivery results, actor)"
    )
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow
    )

    __table_args__ = (
        Index("ix_dms_events_vault_type", "vault_id", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<DeadManSwitchEvent(vault_id={self.vault_id}, type={self.event_type})>"
