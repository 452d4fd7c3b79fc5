"""
ShipAny shipment integration.

Used at release time to dispatch physical recovery kits to beneficiaries
with a complete shipping address.
"""

from heirloom.integrations.shipany.client import (
    ShipmentRequester,
    ShipAnyClient,
    MockShipmentRequester,
    get_shipment_requester,
)
from heirloom.integrations.shipany.exceptions import (
    ShipAnyError,
    ShipAnyAuthenticationError,
    ShipAnyTimeoutError,
)
from heirloom.integrations.shipany.models import (
    ShipmentAddress,
    ShipmentResult,
    DEFAULT_ASSET_DESCRIPTION,
)

__all__ = [
    "ShipmentRequester",
    "ShipAnyClient",
    "MockShipmentRequester",
    "get_shipment_requester",
    "ShipAnyError",
    "ShipAnyAuthenticationError",
    "ShipAnyTimeoutError",
    "ShipmentAddress",
    "ShipmentResult",
    "DEFAULT_ASSET_DESCRIPTION",
]
