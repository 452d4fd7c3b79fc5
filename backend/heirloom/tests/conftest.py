"""
Pytest configuration and shared fixtures.

Unit tests run against SQLite in-memory. Every test gets a fresh database
so committed state from one test never leaks into the next.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
import tempfile
from typing import Generator

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ.setdefault("ENV", "test")
os.environ.setdefault("NOTIFICATION_EMAIL_PROVIDER", "mock")
os.environ.setdefault("SHIPMENT_PROVIDER", "mock")

from heirloom.config.settings import LifecycleSettings, reset_settings
from heirloom.db_base import Base
from heirloom import models  # noqa: F401 - registers every table
from heirloom.integrations.shipany import MockShipmentRequester
from heirloom.models.beneficiary import Beneficiary
from heirloom.models.owner import VaultOwner
from heirloom.models.vault import Vault, VaultStatus
from heirloom.services.email_sender import MockEmailSender
from heirloom.services.notification_sender import EmailNotificationSender


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    """Session factory bound to the test database, configured like production."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=db_engine,
    )


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Settings and collaborators
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_settings_singleton():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> LifecycleSettings:
    """Inline execution keeps SQLite on a single connection."""
    return LifecycleSettings(max_workers=1, app_base_url="https://heirloom.test")


@pytest.fixture
def email_sender() -> MockEmailSender:
    return MockEmailSender()


@pytest.fixture
def notification_sender(email_sender) -> EmailNotificationSender:
    return EmailNotificationSender(email_sender)


@pytest.fixture
def shipment_requester() -> MockShipmentRequester:
    return MockShipmentRequester()


@pytest.fixture
def now() -> datetime:
    return NOW


# =============================================================================
# Record factories
# =============================================================================

@pytest.fixture
def make_owner(db_session):
    def _make(email: str = None, name: str = "Ada Owner", locale: str = "en") -> VaultOwner:
        owner = VaultOwner(
            id=str(uuid.uuid4()),
            email=email or f"owner_{uuid.uuid4().hex[:6]}@example.com",
            name=name,
            locale=locale,
        )
        db_session.add(owner)
        db_session.commit()
        return owner
    return _make


@pytest.fixture
def make_vault(db_session, make_owner):
    """
    Factory for vaults. Defaults describe a healthy base-tier vault last
    seen ten days before NOW.
    """
    def _make(owner: VaultOwner = None, **overrides) -> Vault:
        owner = owner or make_owner()
        values = dict(
            id=str(uuid.uuid4()),
            owner_id=owner.id,
            status=VaultStatus.ACTIVE,
            dead_man_switch_enabled=True,
            heartbeat_frequency_days=90,
            grace_period_days=7,
            last_seen_at=NOW - timedelta(days=10),
            warning_email_count=0,
            plan_level="base",
            bonus_days=0,
            encrypted_data="ciphertext",
            encryption_salt="salt",
            encryption_iv="iv",
        )
        values.update(overrides)
        vault = Vault(**values)
        db_session.add(vault)
        db_session.commit()
        return vault
    return _make


@pytest.fixture
def make_beneficiary(db_session):
    def _make(vault: Vault, with_address: bool = True, **overrides) -> Beneficiary:
        values = dict(
            id=str(uuid.uuid4()),
            vault_id=vault.id,
            name="Grace Heir",
            email=f"heir_{uuid.uuid4().hex[:6]}@example.com",
            language="en",
        )
        if with_address:
            values.update(
                receiver_name="Grace Heir",
                address_line1="1 Harbour Road",
                city="Hong Kong",
                zip_code="000000",
                country_code="HK",
                phone="+85212345678",
            )
        values.update(overrides)
        beneficiary = Beneficiary(**values)
        db_session.add(beneficiary)
        db_session.commit()
        return beneficiary
    return _make


# =============================================================================
# Shared Config Fixtures
# =============================================================================

@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("lifecycle.yml", {"lifecycle": {...}})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: HTTP-level tests through the FastAPI app")
