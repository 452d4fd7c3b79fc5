"""
Lifecycle trigger route.

Called by the external scheduler. Safe to call more than once in the same
window: every transition is guarded, so a repeat run finds nothing to do.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from heirloom.api.dependencies import (
    get_notification_sender,
    get_shipment_requester_dependency,
    verify_cron_secret,
)
from heirloom.database.session import get_session_factory_dependency
from heirloom.integrations.shipany import ShipmentRequester
from heirloom.jobs.lifecycle_reconciliation import LifecycleReconciliationEngine
from heirloom.services.notification_sender import NotificationSender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lifecycle", tags=["lifecycle"])


class ReconciliationErrorResponse(BaseModel):
    vault_id: str
    beneficiary_id: Optional[str] = None
    stage: str
    error_type: str
    message: str


class ReconciliationReportResponse(BaseModel):
    warnings_sent: int
    reminders_sent: int
    triggers_executed: int
    releases_resumed: int
    vaults_scanned: int
    vaults_skipped: int
    errors: List[ReconciliationErrorResponse]
    duration_seconds: float


def get_lifecycle_engine(
    session_factory: sessionmaker = Depends(get_session_factory_dependency),
    notification_sender: NotificationSender = Depends(get_notification_sender),
    shipment_requester: ShipmentRequester = Depends(get_shipment_requester_dependency),
) -> LifecycleReconciliationEngine:
    return LifecycleReconciliationEngine(session_factory, notification_sender, shipment_requester)


@router.post("/run", response_model=ReconciliationReportResponse, dependencies=[Depends(verify_cron_secret)])
def run_lifecycle(engine: LifecycleReconciliationEngine = Depends(get_lifecycle_engine)):
    """
    Run one reconciliation pass.

    Per-vault failures are reported in `errors`; only an unreadable
    candidate snapshot fails the request.
    """
    report = engine.run()
    logger.info(
        "Lifecycle run triggered via API",
        extra={
            "warnings_sent": report.warnings_sent,
            "reminders_sent": report.reminders_sent,
            "triggers_executed": report.triggers_executed,
            "error_count": len(report.errors),
        }
    )
    return ReconciliationReportResponse(**report.to_dict())
