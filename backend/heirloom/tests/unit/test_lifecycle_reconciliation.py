"""
Tests for the lifecycle reconciliation engine.

Test classes:
- TestClassifyVault: snapshot classification into warn/remind/release/none
- TestWarning: active -> pending_verification, token, events, cap and cooldown
- TestHeartbeatCancelsRelease: a check-in after a warning resets the vault
- TestReminder: sent once inside the final window
- TestRelease: pending -> triggered, shipments, notifications, diagnostics
- TestResumeRelease: triggered vaults with pending beneficiaries are finished later
- TestIdempotency: repeat runs do nothing new
- TestErrorIsolation: per-vault failures are reported, scan failures raise
- TestReport: counters and serialization
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from heirloom.config.settings import LifecycleSettings
from heirloom.integrations.shipany import MockShipmentRequester
from heirloom.jobs.lifecycle_reconciliation import (
    LifecycleAction,
    LifecycleReconciliationEngine,
    ReconciliationReport,
    VaultOutcome,
    classify_vault,
)
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.dead_man_switch_event import DeadManSwitchEvent, DeadManSwitchEventType
from heirloom.models.shipping_log import ShippingLog
from heirloom.models.vault import Vault, VaultStatus
from heirloom.services.email_sender import MockEmailSender
from heirloom.services.heartbeat_service import HeartbeatService
from heirloom.services.notification_sender import EmailNotificationSender
from heirloom.services.release_orchestrator import ReleaseOrchestrator


@pytest.fixture
def engine(session_factory, notification_sender, shipment_requester, settings):
    return LifecycleReconciliationEngine(
        session_factory,
        notification_sender,
        shipment_requester,
        settings=settings,
    )


def _events(db_session, vault_id, event_type=None):
    query = db_session.query(DeadManSwitchEvent).filter(DeadManSwitchEvent.vault_id == vault_id)
    if event_type:
        query = query.filter(DeadManSwitchEvent.event_type == event_type)
    return query.all()


def _reload(db_session, model, record_id):
    db_session.expire_all()
    return db_session.get(model, record_id)


def _overdue_pending(make_vault, now, **overrides):
    """A vault whose warning went out 8 days ago and whose grace period has run out."""
    values = dict(
        status=VaultStatus.PENDING_VERIFICATION,
        last_seen_at=now - timedelta(days=98),
        warning_email_count=1,
        warning_email_sent_at=now - timedelta(days=8),
        verification_token="tok-release",
        verification_token_expires_at=now - timedelta(days=1),
    )
    values.update(overrides)
    return make_vault(**values)


# =============================================================================
# Classification
# =============================================================================


class TestClassifyVault:

    def _vault(self, now, **overrides):
        values = dict(
            status=VaultStatus.ACTIVE,
            dead_man_switch_enabled=True,
            plan_level="base",
            heartbeat_frequency_days=90,
            grace_period_days=7,
            last_seen_at=now - timedelta(days=91),
            warning_email_count=0,
            warning_email_sent_at=None,
            reminder_email_sent_at=None,
        )
        values.update(overrides)
        return Vault(**values)

    def test_overdue_active_is_warned(self, now, settings):
        assert classify_vault(self._vault(now), now, settings) == LifecycleAction.WARN

    def test_not_yet_overdue(self, now, settings):
        vault = self._vault(now, last_seen_at=now - timedelta(days=89))
        assert classify_vault(vault, now, settings) is None

    def test_exactly_at_deadline_is_overdue(self, now, settings):
        vault = self._vault(now, last_seen_at=now - timedelta(days=90))
        assert classify_vault(vault, now, settings) == LifecycleAction.WARN

    def test_free_tier_is_never_monitored(self, now, settings):
        assert classify_vault(self._vault(now, plan_level="free"), now, settings) is None

    def test_disabled_switch(self, now, settings):
        vault = self._vault(now, dead_man_switch_enabled=False)
        assert classify_vault(vault, now, settings) is None

    def test_warning_cap(self, now, settings):
        vault = self._vault(now, warning_email_count=3)
        assert classify_vault(vault, now, settings) is None

    def test_warning_cooldown(self, now, settings):
        vault = self._vault(
            now, warning_email_count=1, warning_email_sent_at=now - timedelta(hours=23)
        )
        assert classify_vault(vault, now, settings) is None

        vault.warning_email_sent_at = now - timedelta(hours=24)
        assert classify_vault(vault, now, settings) == LifecycleAction.WARN

    def test_pending_past_deadline_is_released(self, now, settings):
        vault = self._vault(
            now, status=VaultStatus.PENDING_VERIFICATION, last_seen_at=now - timedelta(days=97)
        )
        assert classify_vault(vault, now, settings) == LifecycleAction.RELEASE

    def test_pending_inside_reminder_window(self, now, settings):
        vault = self._vault(
            now,
            status=VaultStatus.PENDING_VERIFICATION,
            last_seen_at=now - timedelta(days=97) + timedelta(hours=12),
        )
        assert classify_vault(vault, now, settings) == LifecycleAction.REMIND

    def test_pending_reminder_already_sent(self, now, settings):
        vault = self._vault(
            now,
            status=VaultStatus.PENDING_VERIFICATION,
            last_seen_at=now - timedelta(days=97) + timedelta(hours=12),
            reminder_email_sent_at=now - timedelta(hours=1),
        )
        assert classify_vault(vault, now, settings) is None

    def test_pending_outside_reminder_window(self, now, settings):
        vault = self._vault(
            now, status=VaultStatus.PENDING_VERIFICATION, last_seen_at=now - timedelta(days=93)
        )
        assert classify_vault(vault, now, settings) is None

    @pytest.mark.parametrize("status", [VaultStatus.TRIGGERED, VaultStatus.INACTIVE])
    def test_terminal_and_inactive_are_ignored(self, now, settings, status):
        vault = self._vault(now, status=status, last_seen_at=now - timedelta(days=400))
        assert classify_vault(vault, now, settings) is None


# =============================================================================
# Warning
# =============================================================================


class TestWarning:

    def test_overdue_base_vault_gets_one_warning(self, engine, db_session, make_vault, email_sender, now):
        vault = make_vault(last_seen_at=now - timedelta(days=91))

        report = engine.run(now=now)

        assert report.warnings_sent == 1
        assert report.errors == []
        stored = _reload(db_session, Vault, vault.id)
        assert stored.status == VaultStatus.PENDING_VERIFICATION
        assert stored.warning_email_count == 1
        assert stored.warning_email_sent_at == now
        assert stored.verification_token
        assert stored.verification_token_expires_at == now + timedelta(days=7)
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.WARNING_SENT)) == 1
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.GRACE_PERIOD_STARTED)) == 1

        assert len(email_sender.sent_messages) == 1
        message = email_sender.sent_messages[0]
        assert message.tags == ["heartbeat_warning"]
        assert f"token={stored.verification_token}" in message.text_body
        assert "91 days" in message.text_body

    def test_warning_uses_owner_locale(self, engine, make_owner, make_vault, email_sender, now):
        owner = make_owner(locale="fr")
        make_vault(owner=owner, last_seen_at=now - timedelta(days=91))

        engine.run(now=now)

        assert email_sender.sent_messages[0].subject.startswith("Action requise")

    def test_healthy_vault_untouched(self, engine, db_session, make_vault, email_sender, now):
        vault = make_vault(last_seen_at=now - timedelta(days=30))

        report = engine.run(now=now)

        assert report.warnings_sent == 0
        assert report.vaults_skipped == 1
        assert _reload(db_session, Vault, vault.id).status == VaultStatus.ACTIVE
        assert email_sender.sent_messages == []

    def test_failed_warning_email_is_reported_not_counted(
        self, session_factory, shipment_requester, settings, db_session, make_owner, make_vault, now
    ):
        owner = make_owner(email="unreachable@example.com")
        vault = make_vault(owner=owner, last_seen_at=now - timedelta(days=91))
        sender = EmailNotificationSender(MockEmailSender(failing_recipients={"unreachable@example.com"}))
        engine = LifecycleReconciliationEngine(session_factory, sender, shipment_requester, settings=settings)

        report = engine.run(now=now)

        assert report.warnings_sent == 0
        assert len(report.errors) == 1
        assert report.errors[0].error_type == "external_service_failure"
        assert report.errors[0].stage == LifecycleAction.WARN
        # State change is kept after a failed send
        stored = _reload(db_session, Vault, vault.id)
        assert stored.status == VaultStatus.PENDING_VERIFICATION
        event = _events(db_session, vault.id, DeadManSwitchEventType.WARNING_SENT)[0]
        assert event.event_data["email_delivered"] is False


# =============================================================================
# Heartbeat after warning
# =============================================================================


class TestHeartbeatCancelsRelease:

    def test_heartbeat_resets_warned_vault(self, engine, db_session, make_vault, now):
        vault = make_vault(last_seen_at=now - timedelta(days=91))
        engine.run(now=now)

        check_in = now + timedelta(hours=3)
        db_session.expire_all()
        HeartbeatService(db_session).record_heartbeat(vault.id, now=check_in)

        stored = _reload(db_session, Vault, vault.id)
        assert stored.status == VaultStatus.ACTIVE
        assert stored.last_seen_at == check_in
        assert stored.warning_email_count == 0
        assert stored.verification_token is None

    def test_next_run_after_heartbeat_does_nothing(self, engine, db_session, make_vault, email_sender, now):
        vault = make_vault(last_seen_at=now - timedelta(days=91))
        engine.run(now=now)
        db_session.expire_all()
        HeartbeatService(db_session).record_heartbeat(vault.id, now=now + timedelta(hours=1))
        email_sender.clear()

        report = engine.run(now=now + timedelta(days=8))

        assert report.warnings_sent == 0
        assert report.triggers_executed == 0
        assert email_sender.sent_messages == []


# =============================================================================
# Reminder
# =============================================================================


class TestReminder:

    def _closing_vault(self, make_vault, now):
        return make_vault(
            status=VaultStatus.PENDING_VERIFICATION,
            last_seen_at=now - timedelta(days=97) + timedelta(hours=10),
            warning_email_count=1,
            warning_email_sent_at=now - timedelta(days=7),
            verification_token="tok-reminder",
            verification_token_expires_at=now + timedelta(hours=1),
        )

    def test_reminder_sent_once(self, engine, db_session, make_vault, email_sender, now):
        vault = self._closing_vault(make_vault, now)

        first = engine.run(now=now)
        second = engine.run(now=now + timedelta(hours=2))

        assert first.reminders_sent == 1
        assert second.reminders_sent == 0
        stored = _reload(db_session, Vault, vault.id)
        assert stored.status == VaultStatus.PENDING_VERIFICATION
        assert stored.reminder_email_sent_at == now
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.REMINDER_SENT)) == 1

        assert len(email_sender.sent_messages) == 1
        message = email_sender.sent_messages[0]
        assert message.tags == ["heartbeat_reminder"]
        assert "token=tok-reminder" in message.text_body
        assert "about 10 hours" in message.text_body


# =============================================================================
# Release
# =============================================================================


class TestRelease:

    def test_release_ships_and_notifies(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, shipment_requester, now
    ):
        vault = _overdue_pending(make_vault, now)
        complete = make_beneficiary(vault, name="Complete Heir", email="complete@example.com")
        incomplete = make_beneficiary(
            vault, with_address=False, name="Partial Heir", email="partial@example.com",
            city="Paris",
        )

        report = engine.run(now=now)

        assert report.triggers_executed == 1
        stored = _reload(db_session, Vault, vault.id)
        assert stored.status == VaultStatus.TRIGGERED
        assert stored.triggered_at == now

        # Shipment only for the complete address
        assert len(shipment_requester.requests) == 1
        assert shipment_requester.requests[0]["receiver"].name == "Grace Heir"
        shipping = db_session.query(ShippingLog).all()
        assert len(shipping) == 1
        assert shipping[0].beneficiary_id == complete.id
        assert shipping[0].tracking_number == "MOCK00000001"

        # Both notified
        recipients = sorted(m.to_email for m in email_sender.sent_messages)
        assert recipients == ["complete@example.com", "partial@example.com"]
        notice = next(m for m in email_sender.sent_messages if m.to_email == "complete@example.com")
        assert "MOCK00000001" in notice.text_body
        assert "/inheritance/claim?token=" in notice.text_body

        # One diagnostic for the incomplete address
        assert len(report.errors) == 1
        diagnostic = report.errors[0]
        assert diagnostic.beneficiary_id == incomplete.id
        assert diagnostic.error_type == "incomplete_address"
        assert diagnostic.stage == "shipment"

        for beneficiary_id in (complete.id, incomplete.id):
            beneficiary = _reload(db_session, Beneficiary, beneficiary_id)
            assert beneficiary.status == BeneficiaryStatus.NOTIFIED
            assert beneficiary.release_token
            assert beneficiary.release_token_expires_at == now + timedelta(days=90)

        released = _events(db_session, vault.id, DeadManSwitchEventType.ASSETS_RELEASED)
        assert len(released) == 1
        assert released[0].event_data["trigger"] == "scheduled"
        assert len(released[0].event_data["beneficiaries"]) == 2

    def test_shipment_failure_does_not_block_notification(
        self, session_factory, notification_sender, settings, db_session,
        make_vault, make_beneficiary, email_sender, now
    ):
        vault = _overdue_pending(make_vault, now)
        make_beneficiary(vault, receiver_name="Broken Courier", email="heir@example.com")
        requester = MockShipmentRequester(failing_receivers={"Broken Courier"})
        engine = LifecycleReconciliationEngine(session_factory, notification_sender, requester, settings=settings)

        report = engine.run(now=now)

        assert report.triggers_executed == 1
        assert [m.to_email for m in email_sender.sent_messages] == ["heir@example.com"]
        assert len(report.errors) == 1
        assert report.errors[0].error_type == "external_service_failure"
        assert db_session.query(ShippingLog).count() == 0

    def test_release_without_beneficiaries(self, engine, db_session, make_vault, now):
        vault = _overdue_pending(make_vault, now)

        report = engine.run(now=now)

        assert report.triggers_executed == 1
        assert report.releases[vault.id] == []
        assert _reload(db_session, Vault, vault.id).status == VaultStatus.TRIGGERED

    def test_free_tier_overdue_vault_is_left_alone(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, now
    ):
        active = make_vault(plan_level="free", last_seen_at=now - timedelta(days=400))
        pending = _overdue_pending(make_vault, now, plan_level="free")
        make_beneficiary(pending)

        report = engine.run(now=now)

        assert report.warnings_sent == 0
        assert report.triggers_executed == 0
        assert report.vaults_skipped == 2
        assert _reload(db_session, Vault, active.id).status == VaultStatus.ACTIVE
        assert _reload(db_session, Vault, pending.id).status == VaultStatus.PENDING_VERIFICATION
        assert email_sender.sent_messages == []

    def test_finished_release_is_terminal(self, engine, db_session, make_vault, make_beneficiary, email_sender, now):
        vault = make_vault(
            status=VaultStatus.TRIGGERED,
            last_seen_at=now - timedelta(days=400),
            triggered_at=now - timedelta(days=100),
        )
        make_beneficiary(vault, status=BeneficiaryStatus.NOTIFIED, release_token="issued")

        report = engine.run(now=now)

        assert report.vaults_scanned == 0
        assert report.triggers_executed == 0
        assert report.releases_resumed == 0
        assert email_sender.sent_messages == []

    def test_existing_release_event_blocks_second_release(
        self, engine, db_session, make_vault, make_beneficiary, shipment_requester, now
    ):
        vault = _overdue_pending(make_vault, now)
        make_beneficiary(vault)
        db_session.add(DeadManSwitchEvent(
            vault_id=vault.id,
            event_type=DeadManSwitchEventType.ASSETS_RELEASED,
            event_data={"trigger": "admin"},
        ))
        db_session.commit()

        report = engine.run(now=now)

        assert report.triggers_executed == 0
        assert shipment_requester.requests == []


# =============================================================================
# Resuming interrupted releases
# =============================================================================


class TestResumeRelease:

    def test_pending_beneficiary_of_triggered_vault_is_released(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, shipment_requester, now
    ):
        vault = make_vault(
            status=VaultStatus.TRIGGERED,
            last_seen_at=now - timedelta(days=98),
            triggered_at=now - timedelta(days=1),
        )
        beneficiary = make_beneficiary(vault, email="heir@example.com")

        report = engine.run(now=now)

        assert report.releases_resumed == 1
        assert report.triggers_executed == 0
        assert report.vaults_scanned == 0
        assert report.errors == []
        assert _reload(db_session, Beneficiary, beneficiary.id).status == BeneficiaryStatus.NOTIFIED
        assert len(shipment_requester.requests) == 1
        assert [m.to_email for m in email_sender.sent_messages] == ["heir@example.com"]

        events = _events(db_session, vault.id, DeadManSwitchEventType.ASSETS_RELEASED)
        assert len(events) == 1
        assert events[0].event_data["trigger"] == "resumed"

    def test_only_pending_beneficiaries_are_handled(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, now
    ):
        vault = make_vault(
            status=VaultStatus.TRIGGERED,
            last_seen_at=now - timedelta(days=98),
            triggered_at=now - timedelta(days=1),
        )
        make_beneficiary(vault, status=BeneficiaryStatus.NOTIFIED, release_token="issued", email="done@example.com")
        make_beneficiary(vault, email="left@example.com")
        db_session.add(DeadManSwitchEvent(
            vault_id=vault.id,
            event_type=DeadManSwitchEventType.ASSETS_RELEASED,
            event_data={"trigger": "scheduled"},
        ))
        db_session.commit()

        report = engine.run(now=now)

        assert report.releases_resumed == 1
        assert [m.to_email for m in email_sender.sent_messages] == ["left@example.com"]
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.ASSETS_RELEASED)) == 1
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.RELEASE_RESUMED)) == 1

    def test_recently_triggered_vault_is_not_resumed(self, engine, make_vault, make_beneficiary, email_sender, now):
        vault = make_vault(
            status=VaultStatus.TRIGGERED,
            last_seen_at=now - timedelta(days=98),
            triggered_at=now - timedelta(minutes=5),
        )
        make_beneficiary(vault)

        report = engine.run(now=now)

        assert report.releases_resumed == 0
        assert email_sender.sent_messages == []

    def test_release_that_crashed_is_finished_on_next_run(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, shipment_requester, now
    ):
        vault = _overdue_pending(make_vault, now)
        beneficiary = make_beneficiary(vault, email="heir@example.com")

        with patch.object(ReleaseOrchestrator, "release", side_effect=RuntimeError("worker killed")):
            first = engine.run(now=now)

        assert first.triggers_executed == 0
        assert first.errors[0].error_type == "unexpected_error"
        assert _reload(db_session, Vault, vault.id).status == VaultStatus.TRIGGERED
        assert _reload(db_session, Beneficiary, beneficiary.id).status == BeneficiaryStatus.PENDING
        assert email_sender.sent_messages == []

        second = engine.run(now=now + timedelta(hours=1))

        assert second.releases_resumed == 1
        assert second.errors == []
        assert _reload(db_session, Beneficiary, beneficiary.id).status == BeneficiaryStatus.NOTIFIED
        assert len(shipment_requester.requests) == 1
        assert [m.to_email for m in email_sender.sent_messages] == ["heir@example.com"]
        assert len(_events(db_session, vault.id, DeadManSwitchEventType.ASSETS_RELEASED)) == 1

        third = engine.run(now=now + timedelta(hours=2))
        assert third.releases_resumed == 0
        assert len(email_sender.sent_messages) == 1

    def test_raising_requester_does_not_strand_beneficiary(
        self, session_factory, notification_sender, settings, db_session, make_vault, make_beneficiary,
        email_sender, now
    ):
        vault = _overdue_pending(make_vault, now)
        beneficiary = make_beneficiary(vault, email="heir@example.com")
        requester = MagicMock()
        requester.create_shipment.side_effect = RuntimeError("provider sdk bug")
        engine = LifecycleReconciliationEngine(session_factory, notification_sender, requester, settings=settings)

        report = engine.run(now=now)

        assert report.triggers_executed == 1
        assert [(e.stage, e.beneficiary_id) for e in report.errors] == [("shipment", beneficiary.id)]
        assert [m.to_email for m in email_sender.sent_messages] == ["heir@example.com"]


# =============================================================================
# Idempotency
# =============================================================================


class TestIdempotency:

    def test_second_run_is_a_no_op(
        self, engine, db_session, make_vault, make_beneficiary, email_sender, shipment_requester, now
    ):
        warned = make_vault(last_seen_at=now - timedelta(days=91))
        released = _overdue_pending(make_vault, now)
        make_beneficiary(released)

        first = engine.run(now=now)
        second = engine.run(now=now + timedelta(minutes=5))

        assert first.warnings_sent == 1
        assert first.triggers_executed == 1
        assert second.warnings_sent == 0
        assert second.triggers_executed == 0
        assert len(shipment_requester.requests) == 1
        assert len(_events(db_session, warned.id, DeadManSwitchEventType.WARNING_SENT)) == 1
        assert len(_events(db_session, released.id, DeadManSwitchEventType.ASSETS_RELEASED)) == 1

    def test_warning_cap_holds_across_runs(self, engine, db_session, make_vault, now):
        vault = make_vault(
            last_seen_at=now - timedelta(days=120),
            warning_email_count=3,
            warning_email_sent_at=now - timedelta(days=5),
        )

        report = engine.run(now=now)

        assert report.warnings_sent == 0
        assert _reload(db_session, Vault, vault.id).status == VaultStatus.ACTIVE

    def test_warning_and_release_never_in_same_run(self, engine, db_session, make_vault, now):
        # Overdue by more than the grace period but never warned
        vault = make_vault(last_seen_at=now - timedelta(days=200))

        report = engine.run(now=now)

        assert report.warnings_sent == 1
        assert report.triggers_executed == 0
        assert _reload(db_session, Vault, vault.id).status == VaultStatus.PENDING_VERIFICATION


# =============================================================================
# Error isolation
# =============================================================================


class TestErrorIsolation:

    def test_missing_owner_is_reported_and_others_continue(
        self, engine, db_session, make_vault, email_sender, now
    ):
        orphan = make_vault(last_seen_at=now - timedelta(days=91), owner_id="no-such-owner")
        healthy = make_vault(last_seen_at=now - timedelta(days=91))

        report = engine.run(now=now)

        assert report.warnings_sent == 1
        assert len(report.errors) == 1
        assert report.errors[0].vault_id == orphan.id
        assert report.errors[0].error_type == "not_found"
        assert _reload(db_session, Vault, orphan.id).status == VaultStatus.ACTIVE
        assert _reload(db_session, Vault, healthy.id).status == VaultStatus.PENDING_VERIFICATION

    def test_unexpected_error_is_reported(self, session_factory, shipment_requester, settings, make_vault, now):
        make_vault(last_seen_at=now - timedelta(days=91))
        sender = MagicMock()
        sender.send.side_effect = RuntimeError("template exploded")
        engine = LifecycleReconciliationEngine(session_factory, sender, shipment_requester, settings=settings)

        report = engine.run(now=now)

        assert report.warnings_sent == 0
        assert len(report.errors) == 1
        assert report.errors[0].error_type == "unexpected_error"
        assert "template exploded" in report.errors[0].message

    def test_scan_failure_raises(self, notification_sender, shipment_requester, settings):
        broken_factory = MagicMock()
        broken_factory.return_value.query.side_effect = RuntimeError("database unavailable")
        engine = LifecycleReconciliationEngine(
            broken_factory, notification_sender, shipment_requester, settings=settings
        )

        with pytest.raises(RuntimeError, match="database unavailable"):
            engine.run()

    def test_thread_pool_collects_every_outcome(
        self, session_factory, notification_sender, shipment_requester, make_vault, now
    ):
        vaults = [make_vault(last_seen_at=now - timedelta(days=91)) for _ in range(3)]
        engine = LifecycleReconciliationEngine(
            session_factory, notification_sender, shipment_requester,
            settings=LifecycleSettings(max_workers=4),
        )

        def fake_warning(session, vault_id, run_now):
            if vault_id == vaults[0].id:
                raise RuntimeError("boom")
            return VaultOutcome(vault_id=vault_id, action=LifecycleAction.WARN, completed=True)

        with patch.object(engine, "_process_warning", side_effect=fake_warning):
            report = engine.run(now=now)

        assert report.vaults_scanned == 3
        assert report.warnings_sent == 2
        assert [e.vault_id for e in report.errors] == [vaults[0].id]


# =============================================================================
# Report
# =============================================================================


class TestReport:

    def test_add_counts_only_completed(self):
        report = ReconciliationReport()
        report.add(VaultOutcome(vault_id="a", action=LifecycleAction.WARN, completed=True))
        report.add(VaultOutcome(vault_id="b", action=LifecycleAction.WARN, completed=False))
        report.add(VaultOutcome(vault_id="c", action=LifecycleAction.REMIND, completed=True))
        report.add(VaultOutcome(
            vault_id="d", action=LifecycleAction.RELEASE, completed=True, release_results=[{"x": 1}]
        ))
        report.add(VaultOutcome(vault_id="e", action=LifecycleAction.RESUME_RELEASE, completed=True))

        assert report.warnings_sent == 1
        assert report.reminders_sent == 1
        assert report.triggers_executed == 1
        assert report.releases_resumed == 1
        assert report.releases == {"d": [{"x": 1}], "e": []}

    def test_to_dict(self):
        data = ReconciliationReport(vaults_scanned=4, vaults_skipped=2).to_dict()
        assert data["vaults_scanned"] == 4
        assert data["vaults_skipped"] == 2
        assert data["releases_resumed"] == 0
        assert data["errors"] == []
        assert data["duration_seconds"] >= 0
