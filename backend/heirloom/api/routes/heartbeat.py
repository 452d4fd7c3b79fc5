"""
Heartbeat routes - owner check-in.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from heirloom.api.dependencies import raise_http_error
from heirloom.database.session import get_db_session
from heirloom.errors import HeirloomError
from heirloom.models.vault import VaultStatus
from heirloom.services.heartbeat_service import HeartbeatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["heartbeat"])


class HeartbeatResponse(BaseModel):
    vault_id: str
    status: str
    last_seen_at: str
    warning_email_count: int


class ConfirmHeartbeatRequest(BaseModel):
    token: str = Field(..., description="Verification token from the warning email", min_length=1)


def _to_response(vault) -> HeartbeatResponse:
    return HeartbeatResponse(
        vault_id=vault.id,
        status=VaultStatus(vault.status).value,
        last_seen_at=vault.last_seen_at.isoformat(),
        warning_email_count=vault.warning_email_count,
    )


@router.post("/vaults/{vault_id}/heartbeat", response_model=HeartbeatResponse)
async def record_heartbeat(vault_id: str, db: Session = Depends(get_db_session)):
    """Owner check-in. Cancels any pending release."""
    try:
        vault = HeartbeatService(db).record_heartbeat(vault_id)
    except HeirloomError as e:
        raise_http_error(e)
    return _to_response(vault)


@router.post("/heartbeat/confirm", response_model=HeartbeatResponse)
async def confirm_heartbeat(body: ConfirmHeartbeatRequest, db: Session = Depends(get_db_session)):
    """Check-in through the verification link in a warning email."""
    try:
        vault = HeartbeatService(db).confirm_heartbeat(body.token)
    except HeirloomError as e:
        raise_http_error(e)
    return _to_response(vault)
