"""
Tests for model helpers and append-only audit tables.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

import pytest
from sqlalchemy import text

from heirloom.models.base import AppendOnlyViolationError
from heirloom.models.beneficiary import Beneficiary, BeneficiaryStatus
from heirloom.models.dead_man_switch_event import DeadManSwitchEvent, DeadManSwitchEventType
from heirloom.models.shipping_log import ShippingLog
from heirloom.models.vault import Vault, VaultStatus


class TestVaultDeadlines:

    def test_deadlines(self, now):
        vault = Vault(last_seen_at=now, heartbeat_frequency_days=90, grace_period_days=7)
        assert vault.heartbeat_deadline == now + timedelta(days=90)
        assert vault.release_deadline == now + timedelta(days=97)

    def test_verification_token_valid(self, now):
        vault = Vault(verification_token="t", verification_token_expires_at=now + timedelta(hours=1))
        assert vault.verification_token_valid(now) is True
        assert vault.verification_token_valid(now + timedelta(hours=2)) is False
        assert Vault(verification_token=None).verification_token_valid(now) is False


class TestBeneficiaryAddress:

    def test_missing_fields(self):
        beneficiary = Beneficiary(receiver_name="Grace", address_line1=" ", city="HK")
        assert beneficiary.missing_address_fields() == ["address_line1", "zip_code", "country_code", "phone"]
        assert beneficiary.has_complete_address is False

    def test_release_token_valid(self, now):
        beneficiary = Beneficiary(release_token="rt", release_token_expires_at=now + timedelta(days=1))
        assert beneficiary.release_token_valid(now) is True
        assert beneficiary.release_token_valid(now + timedelta(days=2)) is False


class TestUTCDateTime:

    def test_naive_sqlite_values_come_back_as_utc(self, db_session, make_vault):
        vault = make_vault(last_seen_at=datetime(2026, 1, 1, 8, 30, tzinfo=timezone(timedelta(hours=8))))

        db_session.expire_all()
        stored = db_session.get(Vault, vault.id)

        assert stored.last_seen_at.tzinfo is not None
        assert stored.last_seen_at == datetime(2026, 1, 1, 0, 30, tzinfo=timezone.utc)


class TestAppendOnly:

    def test_event_cannot_be_updated(self, db_session, make_vault):
        vault = make_vault()
        event = DeadManSwitchEvent(vault_id=vault.id, event_type=DeadManSwitchEventType.WARNING_SENT)
        db_session.add(event)
        db_session.commit()

        event.event_type = DeadManSwitchEventType.HEARTBEAT_RECEIVED
        with pytest.raises(AppendOnlyViolationError):
            db_session.commit()
        db_session.rollback()

    def test_shipping_log_cannot_be_deleted(self, db_session, make_vault, make_beneficiary):
        vault = make_vault()
        beneficiary = make_beneficiary(vault)
        log = ShippingLog(vault_id=vault.id, beneficiary_id=beneficiary.id, tracking_number="SF1")
        db_session.add(log)
        db_session.commit()

        db_session.delete(log)
        with pytest.raises(AppendOnlyViolationError):
            db_session.commit()
        db_session.rollback()


class TestStatusEnums:

    def test_vault_status_is_enum(self):
        assert isinstance(VaultStatus.TRIGGERED, Enum)
        assert VaultStatus("triggered") is VaultStatus.TRIGGERED
        assert VaultStatus.TRIGGERED == "triggered"
        assert [s.value for s in VaultStatus] == ["active", "pending_verification", "triggered", "inactive"]

    def test_stored_as_plain_values(self, db_session, make_vault, make_beneficiary):
        vault = make_vault(status=VaultStatus.PENDING_VERIFICATION)
        make_beneficiary(vault, status=BeneficiaryStatus.NOTIFIED)

        raw = db_session.execute(text("SELECT status FROM vaults WHERE id = :id"), {"id": vault.id}).scalar_one()
        assert raw == "pending_verification"

        db_session.expire_all()
        stored = db_session.get(Vault, vault.id)
        assert VaultStatus(stored.status) is VaultStatus.PENDING_VERIFICATION
        assert BeneficiaryStatus(stored.beneficiaries[0].status) is BeneficiaryStatus.NOTIFIED
