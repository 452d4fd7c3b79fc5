"""
ShipAny request/response data models.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

DEFAULT_ASSET_DESCRIPTION = "Legacy Asset: Encrypted Recovery Kit"
DEFAULT_COURIER = "sf_express"
DEFAULT_PARCEL_WEIGHT_KG = 0.5


@dataclass
class ShipmentAddress:
    """Receiver (or sender) of a shipment."""
    name: str
    phone: str
    address_line1: str
    city: str
    zip_code: str
    country_code: str
    address_line2: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_beneficiary(cls, beneficiary) -> "ShipmentAddress":
        return cls(
            name=beneficiary.receiver_name.strip(),
            phone=beneficiary.phone.strip(),
            address_line1=beneficiary.address_line1.strip(),
            address_line2=(beneficiary.address_line2 or "").strip() or None,
            city=beneficiary.city.strip(),
            zip_code=beneficiary.zip_code.strip(),
            country_code=beneficiary.country_code.strip().upper(),
            email=beneficiary.email,
        )

    @classmethod
    def sender_from_env(cls) -> "ShipmentAddress":
        return cls(
            name=os.getenv("SHIPANY_SENDER_NAME", "Heirloom Vault"),
            phone=os.getenv("SHIPANY_SENDER_PHONE", ""),
            address_line1=os.getenv("SHIPANY_SENDER_ADDRESS_LINE1", ""),
            address_line2=os.getenv("SHIPANY_SENDER_ADDRESS_LINE2"),
            city=os.getenv("SHIPANY_SENDER_CITY", "Hong Kong"),
            zip_code=os.getenv("SHIPANY_SENDER_ZIP_CODE", ""),
            country_code=os.getenv("SHIPANY_SENDER_COUNTRY_CODE", "HKG"),
            email=os.getenv("SHIPANY_SENDER_EMAIL"),
        )

    def to_payload(self) -> Dict[str, Any]:
        address = {
            "line1": self.address_line1,
            "city": self.city,
            "zipCode": self.zip_code,
            "countryCode": self.country_code,
        }
        if self.address_line2:
            address["line2"] = self.address_line2
        party = {"name": self.name, "phone": self.phone, "address": address}
        if self.email:
            party["email"] = self.email
        return party


@dataclass
class ShipmentRequest:
    """A prepaid single-parcel shipment."""
    sender: ShipmentAddress
    receiver: ShipmentAddress
    content: str
    reference_number: str
    courier_id: str = DEFAULT_COURIER
    weight_kg: float = DEFAULT_PARCEL_WEIGHT_KG

    def to_payload(self) -> Dict[str, Any]:
        return {
            "courierId": self.courier_id,
            "type": "prepaid",
            "sender": self.sender.to_payload(),
            "receiver": self.receiver.to_payload(),
            "parcels": [
                {
                    "weight": self.weight_kg,
                    "container_type": "ENVELOPE",
                    "content": self.content,
                }
            ],
            "reference_number": self.reference_number,
        }


@dataclass
class ShipmentResult:
    """Accepted shipment."""
    tracking_number: str
    carrier_status: str
    uid: Optional[str] = None
    tracking_url: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ShipmentResult":
        return cls(
            tracking_number=data.get("tracking_number", ""),
            carrier_status=data.get("status", "created"),
            uid=data.get("uid"),
            tracking_url=data.get("tracking_url"),
            raw_response=data,
        )
