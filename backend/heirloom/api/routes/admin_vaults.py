"""
Admin vault control routes: pause, resume, reset heartbeat, trigger now.

SECURITY: All routes require the administrator bearer token.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heirloom.api.dependencies import get_release_orchestrator, raise_http_error, verify_admin_token
from heirloom.api.routes.admin_compensation import (
    AdminActionRequest,
    CompensationLogResponse,
    to_log_response,
)
from heirloom.database.session import get_db_session
from heirloom.errors import HeirloomError
from heirloom.services.release_orchestrator import ReleaseOrchestrator
from heirloom.services.vault_admin_service import VaultAdminService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/vaults",
    tags=["admin-vaults"],
    dependencies=[Depends(verify_admin_token)],
)


class TriggerNowResponse(BaseModel):
    vault_id: str
    beneficiaries: List[dict]


def get_vault_admin_service(
    db_session: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> VaultAdminService:
    return VaultAdminService(db_session, orchestrator=orchestrator)


@router.post("/{vault_id}/pause", response_model=CompensationLogResponse)
async def pause_switch(
    vault_id: str,
    body: AdminActionRequest,
    service: VaultAdminService = Depends(get_vault_admin_service),
):
    try:
        entry = service.pause_switch(vault_id, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/{vault_id}/resume", response_model=CompensationLogResponse)
async def resume_switch(
    vault_id: str,
    body: AdminActionRequest,
    service: VaultAdminService = Depends(get_vault_admin_service),
):
    try:
        entry = service.resume_switch(vault_id, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/{vault_id}/reset-heartbeat", response_model=CompensationLogResponse)
async def reset_heartbeat(
    vault_id: str,
    body: AdminActionRequest,
    service: VaultAdminService = Depends(get_vault_admin_service),
):
    try:
        entry = service.reset_heartbeat(vault_id, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return to_log_response(entry)


@router.post("/{vault_id}/trigger-now", response_model=TriggerNowResponse)
def trigger_now(
    vault_id: str,
    body: AdminActionRequest,
    service: VaultAdminService = Depends(get_vault_admin_service),
):
    """Force an immediate release. Runs in the threadpool: it calls external providers."""
    logger.warning("Admin forcing release", extra={"vault_id": vault_id, "admin_id": body.admin_id})
    try:
        result = service.trigger_now(vault_id, body.admin_id, body.reason)
    except HeirloomError as e:
        raise_http_error(e)
    return TriggerNowResponse(**result.to_dict())
