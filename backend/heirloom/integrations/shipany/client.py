"""
ShipAny API client.

Synchronous client: shipments are requested from the lifecycle job's
worker threads, one call per beneficiary, each bounded by a timeout.
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

import httpx

from heirloom.integrations.shipany.exceptions import (
    ShipAnyAuthenticationError,
    ShipAnyError,
    ShipAnyTimeoutError,
)
from heirloom.integrations.shipany.models import (
    ShipmentAddress,
    ShipmentRequest,
    ShipmentResult,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.shipany.io/v1"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0


class ShipmentRequester(ABC):
    """Contract for dispatching a physical shipment."""

    @abstractmethod
    def create_shipment(
        self,
        receiver: ShipmentAddress,
        asset_description: str,
        reference_number: str,
    ) -> ShipmentResult:
        """
        Request a shipment.

        Raises:
            ShipAnyError: provider rejected the request, failed or timed out
        """


class ShipAnyClient(ShipmentRequester):
    """
    Client for the ShipAny order API.

    SECURITY: API key must never be logged.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        sender: Optional[ShipmentAddress] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            api_key: ShipAny API key (default: SHIPANY_API_KEY)
            base_url: API base URL (default: SHIPANY_BASE_URL or the public endpoint)
            sender: Return address (default: SHIPANY_SENDER_* variables)
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.api_key = api_key or os.getenv("SHIPANY_API_KEY")
        self.base_url = (
            base_url or os.getenv("SHIPANY_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self.sender = sender or ShipmentAddress.sender_from_env()

        if not self.api_key:
            raise ValueError(
                "ShipAny API key is required. Set SHIPANY_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "api-tk": self.api_key,
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ShipAnyClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, method: str, endpoint: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        try:
            response = self._client.request(method=method, url=url, json=json)
        except httpx.TimeoutException as e:
            logger.error(
                "ShipAny API timeout",
                extra={"endpoint": endpoint, "error": str(e)},
            )
            raise ShipAnyTimeoutError(f"Request timeout: {e}")
        except httpx.RequestError as e:
            logger.error(
                "ShipAny API connection error",
                extra={"endpoint": endpoint, "error": str(e)},
            )
            raise ShipAnyError(f"Connection error: {e}")

        if response.status_code in (401, 403):
            logger.error(
                "ShipAny API authentication failed",
                extra={"status_code": response.status_code, "endpoint": endpoint},
            )
            raise ShipAnyAuthenticationError(status_code=response.status_code)

        if response.status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = {"raw": response.text[:500]}

            error = error_body.get("error") if isinstance(error_body, dict) else None
            code = error.get("code") if isinstance(error, dict) else None

            logger.error(
                "ShipAny API error",
                extra={
                    "status_code": response.status_code,
                    "endpoint": endpoint,
                    "response": str(error_body)[:500],
                },
            )
            raise ShipAnyError(
                message=f"ShipAny API error: {response.status_code}",
                status_code=response.status_code,
                code=code,
                response=error_body,
            )

        try:
            return response.json()
        except ValueError:
            raise ShipAnyError("ShipAny returned a non-JSON response", status_code=response.status_code)

    def create_shipment(
        self,
        receiver: ShipmentAddress,
        asset_description: str,
        reference_number: str,
    ) -> ShipmentResult:
        request = ShipmentRequest(
            sender=self.sender,
            receiver=receiver,
            content=asset_description,
            reference_number=reference_number,
        )
        data = self._request("POST", "/orders/create", json=request.to_payload())
        if not isinstance(data, dict):
            raise ShipAnyError("ShipAny returned an unexpected response body", response={"body": data})
        # Some responses wrap the order in "data"
        if isinstance(data.get("data"), dict):
            data = data["data"]

        result = ShipmentResult.from_api(data)
        if not result.tracking_number:
            raise ShipAnyError("ShipAny response did not include a tracking number", response=data)

        logger.info(
            "ShipAny shipment created",
            extra={"reference_number": reference_number, "tracking_number": result.tracking_number},
        )
        return result


class MockShipmentRequester(ShipmentRequester):
    """In-memory shipment requester for tests and local development."""

    def __init__(self, failing_receivers: Optional[Set[str]] = None):
        self.requests: List[Dict[str, Any]] = []
        self.failing_receivers = failing_receivers or set()
        self._lock = threading.Lock()

    def create_shipment(
        self,
        receiver: ShipmentAddress,
        asset_description: str,
        reference_number: str,
    ) -> ShipmentResult:
        if receiver.name in self.failing_receivers:
            raise ShipAnyError("Mock shipment failure", status_code=503)
        with self._lock:
            self.requests.append({
                "receiver": receiver,
                "asset_description": asset_description,
                "reference_number": reference_number,
            })
            sequence = len(self.requests)
        return ShipmentResult(
            tracking_number=f"MOCK{sequence:08d}",
            carrier_status="created",
            uid=f"mock-{sequence}",
        )


def get_shipment_requester(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> ShipmentRequester:
    """
    Build the shipment requester selected by SHIPMENT_PROVIDER (shipany or mock).
    """
    provider = os.getenv("SHIPMENT_PROVIDER", "shipany").lower()
    if provider == "mock":
        return MockShipmentRequester()
    return ShipAnyClient(timeout=timeout)
