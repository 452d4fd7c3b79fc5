"""
ShippingLog model - record of physical shipments requested at release.

APPEND-ONLY. A beneficiary with a shipping log is never shipped to again.
"""

from sqlalchemy import Column, String, ForeignKey

from heirloom.models.base import (
    Base, JSONType, UTCDateTime, generate_uuid, register_append_only, utcnow
)


@register_append_only
class ShippingLog(Base):
    """One shipment request and the carrier's answer."""

    __tablename__ = "shipping_logs"

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
    beneficiary_id = Column(
        String(36),
        ForeignKey("beneficiaries.id"),
        nullable=False,
        index=True
    )
    tracking_number = Column(String(100), nullable=True)
    carrier_status = Column(String(50), nullable=True)
    request_payload = Column(JSONType, nullable=False, default=dict)
    response_payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        return f"<ShippingLog(beneficiary_id={self.beneficiary_id}, tracking={self.tracking_number})>"
