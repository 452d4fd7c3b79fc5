"""
Release orchestrator.

Runs for a triggered vault, first when it is triggered and again on any
later run that finds beneficiaries still pending. For every pending
beneficiary:

1. Issue a release token (90 days) and mark the beneficiary notified.
2. If the shipping address is complete, request a physical shipment.
   Shipment is best-effort: any failure is recorded and release continues.
3. Send the inheritance notice, with the tracking number if one exists.
   A sender that raises is recorded like one that reports failure.

One beneficiary's failure never stops the others.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from heirloom.config.settings import LifecycleSettings, get_settings
from heirloom.errors import ExternalServiceFailure, HeirloomError
from heirloom.integrations.shipany import (
    DEFAULT_ASSET_DESCRIPTION,
    ShipmentAddress,
    ShipmentRequester,
)
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.shipping_log import ShippingLog
from heirloom.models.vault import Vault
from heirloom.services.notification_sender import (
    NotificationKind,
    NotificationSender,
    Recipient,
)

logger = logging.getLogger(__name__)

DEFAULT_OWNER_NAME = "Someone who cares about you"


class ShipmentStatus(str, Enum):
    SHIPPED = "shipped"
    ALREADY_SHIPPED = "already_shipped"
    SKIPPED_INCOMPLETE_ADDRESS = "skipped_incomplete_address"
    FAILED = "failed"


@dataclass
class ReleaseIssue:
    """A recorded, non-fatal problem while releasing to one beneficiary."""
    stage: str
    error_type: str
    message: str

    def to_dict(self) -> dict:
        return {"stage": self.stage, "error_type": self.error_type, "message": self.message}


@dataclass
class BeneficiaryReleaseResult:
    beneficiary_id: str
    token_issued: bool = False
    shipment_status: Optional[ShipmentStatus] = None
    tracking_number: Optional[str] = None
    notification_sent: bool = False
    issues: List[ReleaseIssue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "beneficiary_id": self.beneficiary_id,
            "token_issued": self.token_issued,
            "shipment_status": self.shipment_status.value if self.shipment_status else None,
            "tracking_number": self.tracking_number,
            "notification_sent": self.notification_sent,
            "issues": [issue.to_dict() for issue in self.issues],
        }


def _error_type(exc: Exception) -> str:
    return exc.error_type if isinstance(exc, HeirloomError) else "unexpected_error"


def build_reference_number(beneficiary_id: str, now: datetime) -> str:
    return f"HEIR-{int(now.timestamp())}-{beneficiary_id[:8]}"


class ReleaseOrchestrator:
    """Hands a triggered vault over to its beneficiaries."""

    def __init__(
        self,
        db_session: Session,
        notification_sender: NotificationSender,
        shipment_requester: ShipmentRequester,
        settings: Optional[LifecycleSettings] = None,
    ):
        self.db = db_session
        self.notification_sender = notification_sender
        self.shipment_requester = shipment_requester
        self.settings = settings or get_settings()

    def release(
        self,
        vault: Vault,
        owner_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[BeneficiaryReleaseResult]:
        """
        Release a triggered vault to each pending beneficiary.

        Commits after every beneficiary so progress survives a crash.
        """
        now = now or datetime.now(timezone.utc)
        beneficiaries = (
            self.db.query(Beneficiary)
            .filter(
                Beneficiary.vault_id == vault.id,
                Beneficiary.status == BeneficiaryStatus.PENDING,
            )
            .order_by(Beneficiary.created_at, Beneficiary.id)
            .all()
        )

        results = []
        for beneficiary in beneficiaries:
            result = BeneficiaryReleaseResult(beneficiary_id=beneficiary.id)
            try:
                self._release_one(vault, beneficiary, owner_name, now, result)
            except Exception as e:
                self.db.rollback()
                result.issues.append(ReleaseIssue("release", _error_type(e), str(e)))
                logger.error(
                    "Release failed for beneficiary",
                    extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id, "error": str(e)},
                    exc_info=True,
                )
            results.append(result)

        logger.info(
            "Vault release orchestrated",
            extra={
                "vault_id": vault.id,
                "beneficiaries": len(results),
                "notified": sum(1 for r in results if r.notification_sent),
                "shipped": sum(1 for r in results if r.shipment_status == ShipmentStatus.SHIPPED),
            }
        )
        return results

    def _release_one(
        self,
        vault: Vault,
        beneficiary: Beneficiary,
        owner_name: Optional[str],
        now: datetime,
        result: BeneficiaryReleaseResult,
    ) -> None:
        token = secrets.token_urlsafe(32)
        expires_at = now + timedelta(days=self.settings.release_token_days)

        claimed = self.db.execute(
            update(Beneficiary)
            .where(
                Beneficiary.id == beneficiary.id,
                Beneficiary.status == BeneficiaryStatus.PENDING,
            )
            .values(
                status=BeneficiaryStatus.NOTIFIED,
                release_token=token,
                release_token_expires_at=expires_at,
                notified_at=now,
            )
        ).rowcount == 1
        if not claimed:
            logger.info(
                "Beneficiary already released by another run",
                extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id}
            )
            self.db.rollback()
            return
        self.db.commit()
        result.token_issued = True

        try:
            self._ship(vault, beneficiary, now, result)
        except Exception as e:
            self.db.rollback()
            result.shipment_status = result.shipment_status or ShipmentStatus.FAILED
            result.issues.append(ReleaseIssue("shipment", _error_type(e), str(e)))
            logger.error(
                "Shipment bookkeeping failed",
                extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id, "error": str(e)},
                exc_info=True,
            )
        self._notify(beneficiary, owner_name, token, expires_at, result)

    def _ship(self, vault: Vault, beneficiary: Beneficiary, now: datetime, result: BeneficiaryReleaseResult) -> None:
        missing = beneficiary.missing_address_fields()
        if missing:
            result.shipment_status = ShipmentStatus.SKIPPED_INCOMPLETE_ADDRESS
            result.issues.append(ReleaseIssue(
                "shipment",
                "incomplete_address",
                f"Shipping skipped, missing: {', '.join(missing)}",
            ))
            logger.info(
                "Shipping skipped: incomplete address",
                extra={"vault_id": vault.id, "beneficiary_id": beneficiary.id, "missing_fields": missing}
            )
            return

        existing = (
            self.db.query(ShippingLog)
            .filter(ShippingLog.beneficiary_id == beneficiary.id)
            .first()
        )
        if existing is not None:
            result.shipment_status = ShipmentStatus.ALREADY_SHIPPED
            result.tracking_number = existing.tracking_number
            return

        receiver = ShipmentAddress.from_beneficiary(beneficiary)
        description = (beneficiary.physical_asset_description or "").strip() or DEFAULT_ASSET_DESCRIPTION
        reference = build_reference_number(beneficiary.id, now)

        started = time.monotonic()
        try:
            shipment = self.shipment_requester.create_shipment(receiver, description, reference)
        except Exception as e:
            result.shipment_status = ShipmentStatus.FAILED
            result.issues.append(ReleaseIssue("shipment", _error_type(e), str(e)))
            logger.error(
                "Shipment request failed",
                extra={
                    "vault_id": vault.id,
                    "beneficiary_id": beneficiary.id,
                    "error": str(e),
                    "elapsed_seconds": round(time.monotonic() - started, 3),
                },
                exc_info=not isinstance(e, ExternalServiceFailure),
            )
            return

        self.db.add(ShippingLog(
            vault_id=vault.id,
            beneficiary_id=beneficiary.id,
            tracking_number=shipment.tracking_number,
            carrier_status=shipment.carrier_status,
            request_payload={"reference_number": reference, "content": description},
            response_payload=shipment.raw_response,
        ))
        self.db.commit()

        result.shipment_status = ShipmentStatus.SHIPPED
        result.tracking_number = shipment.tracking_number

    def _notify(
        self,
        beneficiary: Beneficiary,
        owner_name: Optional[str],
        token: str,
        expires_at: datetime,
        result: BeneficiaryReleaseResult,
    ) -> None:
        template_data = {
            "beneficiary_name": beneficiary.name,
            "owner_name": owner_name or DEFAULT_OWNER_NAME,
            "action_url": f"{self.settings.app_base_url}/inheritance/claim?token={token}",
            "token_expires_at": expires_at.date().isoformat(),
            "tracking_number": result.tracking_number,
        }
        try:
            send_result = self.notification_sender.send(
                NotificationKind.INHERITANCE_NOTICE,
                Recipient(email=beneficiary.email, name=beneficiary.name),
                template_data,
                beneficiary.language,
            )
        except Exception as e:
            result.issues.append(ReleaseIssue("notification", _error_type(e), str(e)))
            logger.error(
                "Inheritance notice raised",
                extra={"vault_id": beneficiary.vault_id, "beneficiary_id": beneficiary.id, "error": str(e)},
                exc_info=True,
            )
            return
        if send_result.success:
            result.notification_sent = True
        else:
            result.issues.append(ReleaseIssue(
                "notification",
                ExternalServiceFailure.error_type,
                send_result.error or "notification failed",
            ))
