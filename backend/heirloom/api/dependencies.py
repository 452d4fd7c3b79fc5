"""
Shared FastAPI dependencies.

Bearer-secret gates for the cron trigger and administrator routes, plus
providers for the notification and shipment collaborators so tests can
override them.
"""

import os
import logging
import secrets
from typing import NoReturn, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from heirloom.config.settings import get_settings
from heirloom.database.session import get_db_session
from heirloom.errors import HeirloomError
from heirloom.integrations.shipany import ShipmentRequester, get_shipment_requester
from heirloom.services.email_sender import get_email_sender
from heirloom.services.notification_sender import EmailNotificationSender, NotificationSender
from heirloom.services.release_orchestrator import ReleaseOrchestrator

logger = logging.getLogger(__name__)


def _check_bearer(authorization: Optional[str], env_name: str) -> None:
    expected = os.getenv(env_name)
    if not expected:
        logger.error("Bearer secret not configured", extra={"env_name": env_name})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{env_name} is not configured"
        )

    token = ""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    if not secrets.compare_digest(token.encode(), expected.encode()):
        logger.warning("Rejected request with invalid bearer token", extra={"env_name": env_name})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token"
        )


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Gate for the scheduler trigger."""
    _check_bearer(authorization, "CRON_SECRET")


def verify_admin_token(authorization: Optional[str] = Header(None)) -> None:
    """Gate for administrator routes."""
    _check_bearer(authorization, "ADMIN_API_TOKEN")


def get_notification_sender() -> NotificationSender:
    settings = get_settings()
    return EmailNotificationSender(get_email_sender(timeout=settings.external_timeout_seconds))


def get_shipment_requester_dependency() -> ShipmentRequester:
    return get_shipment_requester(timeout=get_settings().external_timeout_seconds)


def get_release_orchestrator(
    db: Session = Depends(get_db_session),
    notification_sender: NotificationSender = Depends(get_notification_sender),
    shipment_requester: ShipmentRequester = Depends(get_shipment_requester_dependency),
) -> ReleaseOrchestrator:
    return ReleaseOrchestrator(db, notification_sender, shipment_requester)


def raise_http_error(error: HeirloomError) -> NoReturn:
    """Translate a domain error into an HTTPException."""
    raise HTTPException(status_code=error.http_status, detail=error.to_dict())
