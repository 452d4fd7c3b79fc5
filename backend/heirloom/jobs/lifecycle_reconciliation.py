"""
Vault lifecycle reconciliation job.

Runs on an external schedule (daily) and advances every monitored vault
through its dead man's switch state machine:

    active --(overdue)--> pending_verification --(deadline)--> triggered
                          pending_verification --(< 24h left)--> reminder

Each run:
1. Reads one snapshot of candidate vaults and classifies each into at most
   one action (warn, remind, release). Failure to read the snapshot is the
   only fatal error.
2. Processes candidates on a bounded thread pool, one session per vault.
   Every transition is a compare-and-set on the status observed in the
   snapshot, so overlapping runs cannot double-warn or double-release.
3. Picks up triggered vaults whose release stopped part way (crash, failed
   commit) and releases to the beneficiaries still pending.
4. Returns a report of counts plus a per-vault error list.

No state is kept between runs.

Usage:
    python -m heirloom.jobs.lifecycle_reconciliation

Configuration:
- DATABASE_URL: database to reconcile
- HEIRLOOM_MAX_WORKERS: worker threads (default: 4)
- HEIRLOOM_EXTERNAL_TIMEOUT_SECONDS: email/shipment timeout (default: 15)
- HEIRLOOM_RELEASE_RESUME_AFTER_MINUTES: age before a stalled release is retried (default: 30)
"""

import os
import sys
import json
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, sessionmaker

from heirloom.config.settings import LifecycleSettings, get_settings
from heirloom.entitlements.policy import has_automated_monitoring
from heirloom.errors import ExternalServiceFailure, HeirloomError
from heirloom.integrations.shipany import ShipmentRequester, get_shipment_requester
from heirloom.models.dead_man_switch_event import DeadManSwitchEventType
from heirloom.models.vault import Vault, VaultStatus
from heirloom.repositories.vault_repository import VaultRepository
from heirloom.services.account_directory import AccountDirectory, DatabaseAccountDirectory
from heirloom.services.email_sender import get_email_sender
from heirloom.services.event_log import has_event, record_event
from heirloom.services.notification_sender import (
    EmailNotificationSender,
    NotificationKind,
    NotificationSender,
    Recipient,
)
from heirloom.services.release_orchestrator import ReleaseOrchestrator

logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    WARN = "warn"
    REMIND = "remind"
    RELEASE = "release"
    RESUME_RELEASE = "resume_release"


@dataclass
class ReconciliationError:
    """One per-vault (or per-beneficiary) failure collected during a run."""
    vault_id: str
    stage: str
    error_type: str
    message: str
    beneficiary_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.stage, Enum):
            self.stage = self.stage.value

    def to_dict(self) -> dict:
        return {
            "vault_id": self.vault_id,
            "beneficiary_id": self.beneficiary_id,
            "stage": self.stage,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class VaultOutcome:
    """Result of processing one candidate vault."""
    vault_id: str
    action: LifecycleAction
    completed: bool = False
    errors: List[ReconciliationError] = field(default_factory=list)
    release_results: Optional[List[dict]] = None


@dataclass
class ReconciliationReport:
    """Aggregate result of one run."""
    warnings_sent: int = 0
    reminders_sent: int = 0
    triggers_executed: int = 0
    releases_resumed: int = 0
    vaults_scanned: int = 0
    vaults_skipped: int = 0
    errors: List[ReconciliationError] = field(default_factory=list)
    releases: Dict[str, List[dict]] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add(self, outcome: VaultOutcome) -> None:
        self.errors.extend(outcome.errors)
        if not outcome.completed:
            return
        if outcome.action == LifecycleAction.WARN:
            self.warnings_sent += 1
        elif outcome.action == LifecycleAction.REMIND:
            self.reminders_sent += 1
        elif outcome.action == LifecycleAction.RELEASE:
            self.triggers_executed += 1
            self.releases[outcome.vault_id] = outcome.release_results or []
        elif outcome.action == LifecycleAction.RESUME_RELEASE:
            self.releases_resumed += 1
            self.releases[outcome.vault_id] = outcome.release_results or []

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "warnings_sent": self.warnings_sent,
            "reminders_sent": self.reminders_sent,
            "triggers_executed": self.triggers_executed,
            "releases_resumed": self.releases_resumed,
            "vaults_scanned": self.vaults_scanned,
            "vaults_skipped": self.vaults_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "duration_seconds": round(duration, 2),
        }


def classify_vault(vault: Vault, now: datetime, settings: LifecycleSettings) -> Optional[LifecycleAction]:
    """
    Decide which action, if any, a vault needs right now.

    Exhaustive over VaultStatus; at most one action per vault.
    """
    if not vault.dead_man_switch_enabled:
        return None
    if not has_automated_monitoring(vault.plan_level):
        return None

    status = vault.status
    if status == VaultStatus.ACTIVE:
        if now < vault.heartbeat_deadline:
            return None
        if (vault.warning_email_count or 0) >= settings.max_warning_emails:
            return None
        cooldown = timedelta(hours=settings.warning_cooldown_hours)
        if vault.warning_email_sent_at and now - vault.warning_email_sent_at < cooldown:
            return None
        return LifecycleAction.WARN

    if status == VaultStatus.PENDING_VERIFICATION:
        deadline = vault.release_deadline
        if now >= deadline:
            return LifecycleAction.RELEASE
        if vault.reminder_email_sent_at is None and deadline - now <= timedelta(hours=settings.reminder_window_hours):
            return LifecycleAction.REMIND
        return None

    if status in (VaultStatus.TRIGGERED, VaultStatus.INACTIVE):
        return None

    logger.warning("Unknown vault status", extra={"vault_id": vault.id, "status": status})
    return None


def _error_from_exception(vault_id: str, stage: str, exc: Exception) -> ReconciliationError:
    error_type = exc.error_type if isinstance(exc, HeirloomError) else "unexpected_error"
    return ReconciliationError(vault_id=vault_id, stage=stage, error_type=error_type, message=str(exc))


class LifecycleReconciliationEngine:
    """
    Scan-and-report lifecycle engine.

    Collaborators are injected so tests can supply mocks:
        engine = LifecycleReconciliationEngine(
            session_factory, notification_sender, shipment_requester
        )
        report = engine.run()
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        notification_sender: NotificationSender,
        shipment_requester: ShipmentRequester,
        account_directory_factory: Callable[[Session], AccountDirectory] = DatabaseAccountDirectory,
        settings: Optional[LifecycleSettings] = None,
    ):
        self.session_factory = session_factory
        self.notification_sender = notification_sender
        self.shipment_requester = shipment_requester
        self.account_directory_factory = account_directory_factory
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """
        Execute one reconciliation pass.

        Raises:
            Exception: only if the candidate snapshot cannot be read
        """
        now = now or datetime.now(timezone.utc)
        report = ReconciliationReport()

        work = self._collect_work(now, report)
        logger.info(
            "Lifecycle reconciliation started",
            extra={
                "candidates": len(work),
                "scanned": report.vaults_scanned,
                "max_workers": self.settings.max_workers,
            }
        )

        handlers = {
            LifecycleAction.WARN: self._process_warning,
            LifecycleAction.REMIND: self._process_reminder,
            LifecycleAction.RELEASE: self._process_release,
            LifecycleAction.RESUME_RELEASE: self._process_resumed_release,
        }

        if self.settings.max_workers <= 1:
            for vault_id, action in work:
                report.add(self._run_guarded(handlers[action], vault_id, action, now))
        else:
            with ThreadPoolExecutor(
                max_workers=self.settings.max_workers,
                thread_name_prefix="lifecycle",
            ) as pool:
                futures = [
                    pool.submit(self._run_guarded, handlers[action], vault_id, action, now)
                    for vault_id, action in work
                ]
                for future in as_completed(futures):
                    report.add(future.result())

        logger.info("Lifecycle reconciliation completed", extra=report.to_dict())
        return report

    def _collect_work(self, now: datetime, report: ReconciliationReport) -> List[tuple]:
        session = self.session_factory()
        try:
            repo = VaultRepository(session)
            vaults = repo.find_monitored(
                (VaultStatus.ACTIVE, VaultStatus.PENDING_VERIFICATION)
            )
            report.vaults_scanned = len(vaults)

            work = []
            for vault in vaults:
                action = classify_vault(vault, now, self.settings)
                if action is None:
                    report.vaults_skipped += 1
                    continue
                work.append((vault.id, action))

            # Releases cut short by a crash or a failed step are finished here
            resume_cutoff = now - timedelta(minutes=self.settings.release_resume_after_minutes)
            for vault_id in repo.find_interrupted_releases(resume_cutoff):
                work.append((vault_id, LifecycleAction.RESUME_RELEASE))
            return work
        except Exception:
            logger.error("Failed to read lifecycle candidates", exc_info=True)
            raise
        finally:
            session.close()

    def _run_guarded(self, handler, vault_id: str, action: LifecycleAction, now: datetime) -> VaultOutcome:
        """Run one vault's handler in its own session; never raises."""
        session = self.session_factory()
        try:
            return handler(session, vault_id, now)
        except Exception as e:
            session.rollback()
            logger.error(
                "Lifecycle step failed for vault",
                extra={"vault_id": vault_id, "stage": action, "error": str(e)},
                exc_info=not isinstance(e, HeirloomError),
            )
            return VaultOutcome(
                vault_id=vault_id,
                action=action,
                errors=[_error_from_exception(vault_id, action, e)],
            )
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _reload(self, session: Session, vault_id: str, action: str, now: datetime) -> Optional[Vault]:
        """Re-read the vault and confirm it still needs this action."""
        vault = session.get(Vault, vault_id)
        if vault is None or classify_vault(vault, now, self.settings) != action:
            logger.info(
                "Vault no longer needs lifecycle action",
                extra={"vault_id": vault_id, "action": action}
            )
            return None
        return vault

    def _process_warning(self, session: Session, vault_id: str, now: datetime) -> VaultOutcome:
        outcome = VaultOutcome(vault_id=vault_id, action=LifecycleAction.WARN)
        vault = self._reload(session, vault_id, LifecycleAction.WARN, now)
        if vault is None:
            return outcome

        owner = self.account_directory_factory(session).get_owner(vault_id)

        token = secrets.token_urlsafe(32)
        token_expires_at = now + timedelta(days=self.settings.verification_token_days)
        cooldown_start = now - timedelta(hours=self.settings.warning_cooldown_hours)
        observed_last_seen = vault.last_seen_at
        warning_number = (vault.warning_email_count or 0) + 1

        changed = VaultRepository(session).transition_status(
            vault_id,
            VaultStatus.ACTIVE,
            VaultStatus.PENDING_VERIFICATION,
            extra_conditions=(
                Vault.last_seen_at == observed_last_seen,
                Vault.warning_email_count < self.settings.max_warning_emails,
                or_(
                    Vault.warning_email_sent_at.is_(None),
                    Vault.warning_email_sent_at <= cooldown_start,
                ),
            ),
            verification_token=token,
            verification_token_expires_at=token_expires_at,
            warning_email_sent_at=now,
            warning_email_count=warning_number,
            reminder_email_sent_at=None,
        )
        if not changed:
            session.rollback()
            return outcome

        release_deadline = vault.release_deadline
        send_result = self.notification_sender.send(
            NotificationKind.HEARTBEAT_WARNING,
            Recipient(email=owner.email, name=owner.name),
            {
                "owner_name": owner.name or owner.email,
                "days_since_last_seen": (now - observed_last_seen).days,
                "release_deadline": release_deadline.strftime("%Y-%m-%d %H:%M UTC"),
                "action_url": f"{self.settings.app_base_url}/heartbeat/confirm?token={token}",
            },
            owner.locale,
        )

        record_event(
            session,
            vault_id,
            DeadManSwitchEventType.WARNING_SENT,
            {
                "warning_number": warning_number,
                "verification_token_expires_at": token_expires_at.isoformat(),
                "email_delivered": send_result.success,
                "email_error": send_result.error,
            },
            occurred_at=now,
        )
        record_event(
            session,
            vault_id,
            DeadManSwitchEventType.GRACE_PERIOD_STARTED,
            {
                "grace_period_days": vault.grace_period_days,
                "release_deadline": release_deadline.isoformat(),
            },
            occurred_at=now,
        )
        session.commit()

        if send_result.success:
            outcome.completed = True
            logger.info("Heartbeat warning sent", extra={"vault_id": vault_id, "warning_number": warning_number})
        else:
            outcome.errors.append(ReconciliationError(
                vault_id=vault_id,
                stage=LifecycleAction.WARN,
                error_type=ExternalServiceFailure.error_type,
                message=send_result.error or "warning email failed",
            ))
        return outcome

    def _process_reminder(self, session: Session, vault_id: str, now: datetime) -> VaultOutcome:
        outcome = VaultOutcome(vault_id=vault_id, action=LifecycleAction.REMIND)
        vault = self._reload(session, vault_id, LifecycleAction.REMIND, now)
        if vault is None:
            return outcome

        owner = self.account_directory_factory(session).get_owner(vault_id)

        changed = VaultRepository(session).transition_status(
            vault_id,
            VaultStatus.PENDING_VERIFICATION,
            extra_conditions=(
                Vault.last_seen_at == vault.last_seen_at,
                Vault.reminder_email_sent_at.is_(None),
            ),
            reminder_email_sent_at=now,
        )
        if not changed:
            session.rollback()
            return outcome

        release_deadline = vault.release_deadline
        hours_remaining = max(0, int((release_deadline - now).total_seconds() // 3600))
        action_url = None
        if vault.verification_token:
            action_url = f"{self.settings.app_base_url}/heartbeat/confirm?token={vault.verification_token}"

        send_result = self.notification_sender.send(
            NotificationKind.HEARTBEAT_REMINDER,
            Recipient(email=owner.email, name=owner.name),
            {
                "owner_name": owner.name or owner.email,
                "hours_remaining": hours_remaining,
                "release_deadline": release_deadline.strftime("%Y-%m-%d %H:%M UTC"),
                "action_url": action_url,
            },
            owner.locale,
        )

        record_event(
            session,
            vault_id,
            DeadManSwitchEventType.REMINDER_SENT,
            {
                "hours_remaining": hours_remaining,
                "email_delivered": send_result.success,
                "email_error": send_result.error,
            },
            occurred_at=now,
        )
        session.commit()

        if send_result.success:
            outcome.completed = True
            logger.info("Release reminder sent", extra={"vault_id": vault_id})
        else:
            outcome.errors.append(ReconciliationError(
                vault_id=vault_id,
                stage=LifecycleAction.REMIND,
                error_type=ExternalServiceFailure.error_type,
                message=send_result.error or "reminder email failed",
            ))
        return outcome

    def _process_release(self, session: Session, vault_id: str, now: datetime) -> VaultOutcome:
        outcome = VaultOutcome(vault_id=vault_id, action=LifecycleAction.RELEASE)
        vault = self._reload(session, vault_id, LifecycleAction.RELEASE, now)
        if vault is None:
            return outcome

        if has_event(session, vault_id, DeadManSwitchEventType.ASSETS_RELEASED):
            logger.warning("Vault already has a release event, skipping", extra={"vault_id": vault_id})
            return outcome

        # The status flip is the single point of mutual exclusion for release
        changed = VaultRepository(session).transition_status(
            vault_id,
            VaultStatus.PENDING_VERIFICATION,
            VaultStatus.TRIGGERED,
            extra_conditions=(Vault.last_seen_at == vault.last_seen_at,),
            triggered_at=now,
        )
        if not changed:
            session.rollback()
            return outcome
        session.commit()
        outcome.completed = True

        self._orchestrate(session, vault, outcome, now, trigger="scheduled")
        return outcome

    def _process_resumed_release(self, session: Session, vault_id: str, now: datetime) -> VaultOutcome:
        """
        Finish a release whose run stopped part way.

        The vault is already triggered; only beneficiaries still pending are
        handled, each claimed with its own compare-and-set.
        """
        outcome = VaultOutcome(vault_id=vault_id, action=LifecycleAction.RESUME_RELEASE)
        vault = session.get(Vault, vault_id)
        if vault is None or vault.status != VaultStatus.TRIGGERED:
            return outcome

        logger.warning("Resuming interrupted release", extra={"vault_id": vault_id})
        results = self._orchestrate(session, vault, outcome, now, trigger="resumed")
        outcome.completed = bool(results)
        return outcome

    def _orchestrate(
        self,
        session: Session,
        vault: Vault,
        outcome: VaultOutcome,
        now: datetime,
        trigger: str,
    ) -> list:
        """Release to pending beneficiaries and record the result on the vault."""
        try:
            owner_name = self.account_directory_factory(session).get_owner(vault.id).name
        except HeirloomError:
            owner_name = None

        orchestrator = ReleaseOrchestrator(
            session,
            self.notification_sender,
            self.shipment_requester,
            settings=self.settings,
        )
        results = orchestrator.release(vault, owner_name=owner_name, now=now)

        for result in results:
            for issue in result.issues:
                outcome.errors.append(ReconciliationError(
                    vault_id=vault.id,
                    beneficiary_id=result.beneficiary_id,
                    stage=issue.stage,
                    error_type=issue.error_type,
                    message=issue.message,
                ))
        outcome.release_results = [r.to_dict() for r in results]

        # assets_released is written once per vault; later passes log a resume
        if has_event(session, vault.id, DeadManSwitchEventType.ASSETS_RELEASED):
            if not results:
                return results
            event_type = DeadManSwitchEventType.RELEASE_RESUMED
        else:
            event_type = DeadManSwitchEventType.ASSETS_RELEASED
        record_event(
            session,
            vault.id,
            event_type,
            {
                "trigger": trigger,
                "release_deadline": vault.release_deadline.isoformat(),
                "beneficiaries": outcome.release_results,
            },
            occurred_at=now,
        )
        session.commit()

        logger.info(
            "Vault released",
            extra={
                "vault_id": vault.id,
                "trigger": trigger,
                "beneficiaries": len(results),
                "issues": len(outcome.errors),
            }
        )
        return results


def build_engine(session_factory: Optional[sessionmaker] = None) -> LifecycleReconciliationEngine:
    """Wire the engine with the configured providers."""
    from heirloom.database.session import get_session_factory

    settings = get_settings()
    return LifecycleReconciliationEngine(
        session_factory=session_factory or get_session_factory(),
        notification_sender=EmailNotificationSender(
            get_email_sender(timeout=settings.external_timeout_seconds)
        ),
        shipment_requester=get_shipment_requester(timeout=settings.external_timeout_seconds),
        settings=settings,
    )


def run_lifecycle_reconciliation(now: Optional[datetime] = None) -> dict:
    """Run one pass with production wiring and return the report as a dict."""
    report = build_engine().run(now=now)
    return report.to_dict()


def main():
    """Entry point for running the lifecycle job from cron."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        result = run_lifecycle_reconciliation()
        print(f"Lifecycle reconciliation completed: {json.dumps(result)}")
        sys.exit(0)
    except Exception as e:
        logger.error("Lifecycle reconciliation failed", exc_info=True)
        print(f"Lifecycle reconciliation failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
