"""
Structured error classes shared across the vault lifecycle.

Per-record errors raised inside the reconciliation job are caught and
collected into the run report; the same classes surface to HTTP callers
through their http_status and to_dict().
"""

from typing import Optional

from fastapi import status


class HeirloomError(Exception):
    """Base exception for heirloom domain errors."""

    error_type = "heirloom_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_type, "message": self.message}


class NotFoundError(HeirloomError):
    """A vault, beneficiary, owner or token does not exist."""

    error_type = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_type,
            "message": self.message,
            "resource": self.resource,
        }


class EntitlementDeniedError(HeirloomError):
    """
    Raised when an action exceeds what the vault's plan allows.

    Includes a machine-readable reason code for programmatic handling.
    """

    error_type = "entitlement_denied"
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        reason: str,
        code: str,
        plan_level: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        """
        Args:
            reason: Human-readable reason
            code: Machine-readable code (e.g. decryption_limit_reached)
            plan_level: Plan tier the decision was made against
            limit: The limit that was hit, if numeric
        """
        self.reason = reason
        self.code = code
        self.plan_level = plan_level
        self.limit = limit
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {
            "error": self.error_type,
            "reason": self.reason,
            "plan_level": self.plan_level,
            "machine_readable": {
                "code": self.code,
                "limit": self.limit,
            },
        }


class ExternalServiceFailure(HeirloomError):
    """Notification or shipment provider failed or timed out."""

    error_type = "external_service_failure"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_type,
            "message": self.message,
            "service": self.service,
        }


class ValidationError(HeirloomError):
    """Invalid input, e.g. a blank administrator reason or a malformed address."""

    error_type = "validation_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_type, "message": self.message, "field": self.field}


class InvalidStateError(HeirloomError):
    """The operation is not allowed from the record's current state."""

    error_type = "invalid_state"
    http_status = status.HTTP_409_CONFLICT
