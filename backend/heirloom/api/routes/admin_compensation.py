"""
Admin compensation API routes.

SECURITY: All routes require the administrator bearer token.
Every call needs the acting admin_id and a non-empty reason; each one
writes an audit entry with before/after snapshots.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from heirloom.api.dependencies import raise_http_error, verify_admin_token
from heirloom.database.session import get_db_session
from heirloom.errors import HeirloomError
from heirloom.models.compensation_log import CompensationLogEntry
from heirloom.services.compensation_ledger import CompensationLedger

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin-compensation"],
    dependencies=[Depends(verify_admin_token)],
)


# Request/Response models

class AdminActionRequest(BaseModel):
    """Fields every administrator action carries."""
    admin_id: str = Field(..., description="Acting administrator")
    reason: str = Field(..., description="Why the action is taken (required, non-blank)")


class ExtendSubscriptionRequest(AdminActionRequest):
    days: int = Field(..., description="Days to add to the paid period")


class ResetDecryptionRequest(AdminActionRequest):
    vault_id: str
    beneficiary_id: Optional[str] = Field(None, description="Omit to apply to every beneficiary")


class AdjustDecryptionRequest(ResetDecryptionRequest):
    delta: int = Field(..., description="Attempts to give back (consume) or grant (bonus)")
    mode: str = Field(..., description="consume or bonus")


class BatchCompensationRequest(AdminActionRequest):
    vault_ids: List[str]
    action_type: str = Field(..., description="extend_subscription or reset_decryption_count")
    days: Optional[int] = None


class CompensationLogResponse(BaseModel):
    id: str
    admin_id: str
    action_type: str
    vault_id: str
    beneficiary_id: Optional[str]
    affected_beneficiary_ids: List[str]
    action_data: Dict[str, Any]
    reason: str
    before_state: Any
    after_state: Any
    created_at: str


class BatchCompensationResponse(BaseModel):
    action_type: str
    succeeded: List[str]
    failed: List[Dict[str, str]]
    total: int


def get_ledger(db_session: Session = Depends(get_db_session)) -> CompensationLedger:
    return CompensationLedger(db_session)


def to_log_response(entry: CompensationLogEntry) -> CompensationLogResponse:
    return CompensationLogResponse(
        id=entry.id,
        admin_id=entry.admin_id,
        action_type=entry.action_type,
        vault_id=entry.vault_id,
        beneficiary_id=entry.beneficiary_id,
        affected_beneficiary_ids=entry.affected_beneficiary_ids or [],
        action_data=entry.action_data or {},
        reason=entry.reason,
        before_state=entry.before_state,
        after_state=entry.after_state,
        created_at=entry.created_at.isoformat(),
    )


# Routes

@router.post("/vaults/{vault_id}/extend-subscription", response_model=CompensationLogResponse)
async def extend_subscription(
    vault_id: str,
    body: ExtendSubscriptionRequest,
    ledger: CompensationLedger = Depends(get_ledger),
):
    logger.info("Admin extending subscription", extra={"vault_id": vault_id, "admin_id": body.admin_id})
    try:
        entry = ledger.extend_subscription(vault_id, body.days, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/decryption/reset", response_model=CompensationLogResponse)
async def reset_decryption_count(
    body: ResetDecryptionRequest,
    ledger: CompensationLedger = Depends(get_ledger),
):
    logger.info("Admin resetting decryption count", extra={"vault_id": body.vault_id, "admin_id": body.admin_id})
    try:
        entry = ledger.reset_decryption_count(
            body.vault_id, body.admin_id, body.reason, beneficiary_id=body.beneficiary_id
        )
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/decryption/adjust", response_model=CompensationLogResponse)
async def adjust_decryption_count(
    body: AdjustDecryptionRequest,
    ledger: CompensationLedger = Depends(get_ledger),
):
    logger.info(
        "Admin adjusting decryption count",
        extra={"vault_id": body.vault_id, "admin_id": body.admin_id, "mode": body.mode}
    )
    try:
        entry = ledger.adjust_decryption_count(
            body.vault_id,
            body.delta,
            body.mode,
            body.admin_id,
            body.reason,
            beneficiary_id=body.beneficiary_id,
        )
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/beneficiaries/{beneficiary_id}/reissue-release-token", response_model=CompensationLogResponse)
async def reissue_release_token(
    beneficiary_id: str,
    body: AdminActionRequest,
    ledger: CompensationLedger = Depends(get_ledger),
):
    logger.info(
        "Admin re-issuing release token",
        extra={"beneficiary_id": beneficiary_id, "admin_id": body.admin_id}
    )
    try:
        entry = ledger.reissue_release_token(beneficiary_id, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/compensation/batch", response_model=BatchCompensationResponse)
async def batch_compensate(
    body: BatchCompensationRequest,
    ledger: CompensationLedger = Depends(get_ledger),
):
    logger.info(
        "Admin batch compensation",
        extra={"admin_id": body.admin_id, "action_type": body.action_type, "vaults": len(body.vault_ids)}
    )
    try:
        result = ledger.batch_compensate(
            body.vault_ids, body.action_type, body.admin_id, body.reason, days=body.days
        )
    except HeirloomError as e:
        raise_http_error(e)
    return BatchCompensationResponse(**result.to_dict())
