"""
CompensationLogEntry model - audit trail of administrator corrections.

CRITICAL: This table is APPEND-ONLY. Every administrator mutation writes
exactly one entry holding the full before and after state of the records
it touched.
"""

from sqlalchemy import Column, String, Text, ForeignKey

from heirloom.models.base import (
    Base, JSONType, UTCDateTime, generate_uuid, register_append_only, utcnow
)


class CompensationActionType:
    """Compensation action constants."""
    EXTEND_SUBSCRIPTION = "extend_subscription"
    RESET_DECRYPTION_COUNT = "reset_decryption_count"
    CONSUME_DECRYPTION_COUNT = "consume_decryption_count"
    ADD_BONUS_DECRYPTION_COUNT = "add_bonus_decryption_count"
    REISSUE_RELEASE_TOKEN = "reissue_release_token"
    PAUSE_SWITCH = "pause_switch"
    RESUME_SWITCH = "resume_switch"
    RESET_HEARTBEAT = "reset_heartbeat"
    TRIGGER_NOW = "trigger_now"


@register_append_only
class CompensationLogEntry(Base):
    """Immutable record of one administrator operation."""

    __tablename__ = "admin_compensation_logs"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    admin_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Administrator who performed the action"
    )
    action_type = Column(
        String(50),
        nullable=False,
        index=True
    )
    vault_id = Column(
        String(36),
        ForeignKey("vaults.id"),
        nullable=False,
        index=True
    )
    beneficiary_id = Column(
        String(36),
        nullable=True,
        comment="Set when the action targeted a single beneficiary"
    )
    affected_beneficiary_ids = Column(
        JSONType,
        nullable=False,
        default=list
    )
    action_data = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Parameters and derived values (days, old/new end dates, counts)"
    )
    reason = Column(Text, nullable=False)
    before_state = Column(JSONType, nullable=False)
    after_state = Column(JSONType, nullable=False)
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        return f"<CompensationLogEntry(action={self.action_type}, vault_id={self.vault_id})>"
