"""Shared fixtures: in-memory database, fake adapters and a controllable clock."""

from unittest.mock import patch

import pytest

from hoa_notify.compliance import ComplianceGate, SqlComplianceStore
from hoa_notify.config.models import SenderConfig
from hoa_notify.jobs import create_celery_app
from hoa_notify.ledger import DeliveryLedger
from hoa_notify.notifications import NotificationGateway
from hoa_notify.persistence import Database
from hoa_notify.templates import SqlTemplateStore, TemplateRenderer
from tests.helpers import FakeClock, build_fake_adapters

ENV_VARS = [
    "DATABASE_URL",
    "DB_POOL_MAX",
    "REDIS_URL",
    "CELERY_BROKER_URL",
    "CELERY_TASK_ALWAYS_EAGER",
    "EMAIL_PROVIDER",
    "SENDGRID_API_KEY",
    "FROM_EMAIL",
    "FROM_NAME",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "TWILIO_MESSAGING_SERVICE_SID",
    "API_BASE_URL",
    "DEMO_MODE",
    "SKIP_COMPLIANCE_CHECKS",
    "LOG_LEVEL",
    "ENVIRONMENT",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the service reads from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database():
    db = Database.in_memory()
    yield db
    db.close()


@pytest.fixture
def celery_app():
    """Celery app on the in-memory transport, with worker control commands mocked."""
    app = create_celery_app("memory://")
    with patch.object(app.control, "cancel_consumer"), patch.object(app.control, "add_consumer"):
        yield app
    app.close()


@pytest.fixture
def sender():
    return SenderConfig(
        name="Sunset Ridge HOA",
        address="1200 Sunset Ridge Dr, Boulder, CO 80301",
        unsubscribe_base_url="https://hoa.example.com/unsubscribe",
    )


@pytest.fixture
def adapters():
    return build_fake_adapters()


@pytest.fixture
def renderer(database):
    return TemplateRenderer(SqlTemplateStore(database))


@pytest.fixture
def compliance_store(database):
    return SqlComplianceStore(database)


@pytest.fixture
def gate(compliance_store, clock):
    return ComplianceGate(compliance_store, clock=clock)


@pytest.fixture
def ledger(database, clock):
    return DeliveryLedger(database, clock=clock)


@pytest.fixture
def gateway(renderer, gate, ledger, adapters, sender, clock):
    return NotificationGateway(
        renderer=renderer,
        gate=gate,
        ledger=ledger,
        adapters=adapters,
        sender=sender,
        clock=clock,
    )
