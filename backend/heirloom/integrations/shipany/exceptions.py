"""
ShipAny-specific exceptions.

All of them are ExternalServiceFailure so release orchestration can treat
any shipment problem as a recoverable per-beneficiary failure.
"""

from typing import Optional, Dict, Any

from heirloom.errors import ExternalServiceFailure


class ShipAnyError(ExternalServiceFailure):
    """Base exception for ShipAny API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("shipany", message, status_code=status_code)
        self.code = code
        self.response = response or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


class ShipAnyAuthenticationError(ShipAnyError):
    """Raised when the API key is rejected (401/403)."""

    def __init__(self, message: str = "Authentication failed - API key may be invalid", status_code: int = 401, **kwargs):
        super().__init__(message, status_code=status_code, **kwargs)


class ShipAnyTimeoutError(ShipAnyError):
    """Raised when ShipAny does not answer within the configured timeout."""

    def __init__(self, message: str = "Request to ShipAny timed out", **kwargs):
        super().__init__(message, **kwargs)
