"""Integration tests for the notification pipeline.

Runs the wired services (gateway, compliance gate, ledger, job queues and
webhook processing) against a file-backed SQLite database, with recording
adapters standing in for the providers.
"""

from datetime import timedelta

import pytest

from hoa_notify.config.environment import EnvironmentConfig
from hoa_notify.config.models import AppConfig
from hoa_notify.container import ServiceContainer
from hoa_notify.domain.models import Notification, OptOut, UserContact
from hoa_notify.jobs import BULK_QUEUE, IMMEDIATE_QUEUE, SCHEDULED_QUEUE, JobState, create_celery_app
from hoa_notify.persistence import Database, UserContactRepository
from tests.helpers import build_fake_adapters

SMS_TEMPLATES = [
    "request_status_sms",
    "board_voting_sms",
    "neighbor_approval_sms",
    "form_distribution_sms",
    "form_reminder_sms",
    "new_request_sms",
    "emergency_alert_sms",
    "test_notification_sms",
]


@pytest.fixture
def app_config():
    return AppConfig.model_validate(
        {
            "sender": {
                "name": "Sunset Ridge HOA",
                "address": "1200 Sunset Ridge Dr, Boulder, CO 80301",
                "unsubscribe_base_url": "https://hoa.example.com/unsubscribe",
            },
            "maintenance": {"enabled": False},
        }
    )


def build_services(tmp_path, app_config, clock, env_config=None):
    return ServiceContainer(
        app_config,
        env_config or EnvironmentConfig(),
        clock=clock,
        adapters=build_fake_adapters(),
        database=Database(f"sqlite:///{tmp_path / 'notifications.db'}"),
        celery_app=create_celery_app("memory://"),
    )


@pytest.fixture
def services(tmp_path, app_config, clock):
    container = build_services(tmp_path, app_config, clock)
    yield container
    container.close(wait=False)


def reminder(user_id="101", **overrides):
    values = {
        "type": "email",
        "recipient": f"owner{user_id}@example.com",
        "template": "form_reminder",
        "user_id": user_id,
        "data": {"recipient_name": "Dana", "form_title": "Pool Access"},
    }
    values.update(overrides)
    return Notification(**values)


def test_invalid_type_leaves_no_record(services):
    result = services.gateway.send(reminder(type="fax"))

    assert result.status == "invalid"
    assert services.ledger.get_history() == []
    assert services.adapters["email"].sent == []


def test_send_past_rate_limit_is_denied(services):
    results = [services.gateway.send(reminder()) for _ in range(4)]

    assert [r.status for r in results] == ["sent", "sent", "sent", "blocked"]
    assert len(services.ledger.get_history()) == 3

    report = services.gate.get_compliance_report()
    assert report["summary"]["total_violations"] == 1
    assert report["violations"][0]["violation_type"] == "rate_limit"


def test_rate_limit_window_slides(services, clock):
    for _ in range(3):
        services.gateway.send(reminder())

    clock.advance(minutes=61)

    assert services.gateway.send(reminder()).status == "sent"


@pytest.mark.parametrize("template", SMS_TEMPLATES)
def test_default_sms_templates_pass_compliance(services, template):
    result = services.gateway.send(
        Notification(
            type="sms",
            recipient="+13035550142",
            template=template,
            user_id="101",
            data={"form_title": "Pool Access", "request_title": "Fence"},
        )
    )

    assert result.status == "sent"
    assert "STOP" in services.adapters["sms"].sent[0].text


def test_delivery_webhooks_update_ledger_once(services):
    sent = services.gateway.send(reminder())
    event = {"sg_message_id": f"{sent.provider_id}.filter001", "event": "delivered", "timestamp": 1710255605}

    services.webhooks.handle_email_events([event])
    services.webhooks.handle_email_events([event])

    assert len(services.ledger.get_events(sent.provider_id)) == 1
    record = services.ledger.get_record(sent.delivery_id)
    assert record.status == "delivered"
    assert services.ledger.get_stats()["summary"]["total_delivered"] == 1


def test_inbound_stop_blocks_later_sms(services, clock):
    sms = Notification(
        type="sms",
        recipient="+13035550142",
        template="form_reminder_sms",
        user_id="101",
        data={"form_title": "Pool Access"},
    )
    assert services.gateway.send(sms).status == "sent"

    with services.database.session() as session:
        UserContactRepository(session).save(UserContact(user_id="101", phone="+13035550142"))
    services.webhooks.handle_inbound_sms("+13035550142", "STOP")

    result = services.gateway.send(sms)
    assert result.status == "blocked"
    assert "opted out" in result.reason


def test_scheduled_notification_sent_exactly_once(services, clock):
    job = services.jobs.schedule(reminder(), clock() + timedelta(minutes=30))

    services.jobs.run_pending()
    assert services.adapters["email"].sent == []

    clock.advance(minutes=30)
    services.jobs.run_pending()
    services.jobs.run_pending()

    assert services.broker.get_job(job.id).state == JobState.COMPLETED
    assert len(services.adapters["email"].sent) == 1
    assert services.jobs.get_stats(SCHEDULED_QUEUE)["completed"] == 1


def test_scheduled_job_survives_restart(tmp_path, app_config, clock):
    first = build_services(tmp_path, app_config, clock)
    job = first.jobs.schedule(reminder(), clock() + timedelta(hours=2))
    first.close(wait=False)

    second = build_services(tmp_path, app_config, clock)
    try:
        clock.advance(hours=2)
        assert second.jobs.run_pending(SCHEDULED_QUEUE) == 1
        assert second.broker.get_job(job.id).state == JobState.COMPLETED
        assert len(second.adapters["email"].sent) == 1
    finally:
        second.close(wait=False)


def test_bulk_of_twelve_in_two_batches(services):
    progress = []
    services.broker.on("progress", lambda job, value: progress.append(value))
    services.jobs.sleep = lambda seconds: None

    job = services.jobs.enqueue_bulk([reminder(str(i)) for i in range(12)])
    services.jobs.run_pending(BULK_QUEUE)

    assert services.broker.get_job(job.id).result["successful"] == 12
    assert progress == [83, 100]
    assert len(services.ledger.get_history(limit=50)) == 12


def test_send_bulk_through_immediate_queue(services):
    summary = services.jobs.send_bulk([reminder("1"), reminder("2", recipient="bad"), reminder("3")])

    assert summary["queued"] == 2
    assert summary["failed"] == 1

    services.jobs.run_pending(IMMEDIATE_QUEUE)
    assert len(services.adapters["email"].sent) == 2


def test_failed_send_redelivered(services):
    services.adapters["email"].fail_next("HTTP 503", retryable=True, status_code=503)
    failed = services.gateway.send(reminder())

    assert services.maintenance.redeliver_failed() == 1
    services.jobs.run_pending(IMMEDIATE_QUEUE)

    assert services.ledger.get_record(failed.delivery_id).status == "retry"
    assert len(services.adapters["email"].sent) == 1


def test_bypass_skips_gate_and_ledger(tmp_path, app_config, clock):
    services = build_services(tmp_path, app_config, clock, EnvironmentConfig(demo_mode=True))
    try:
        services.gate.record_opt_out(OptOut(user_id="101", type="all", occurred_at=clock()))
        clock.advance(hours=12)  # 03:00 UTC, outside SMS hours

        result = services.gateway.send(
            Notification(
                type="sms", recipient="+13035550142", template="form_reminder_sms", user_id="101"
            )
        )

        assert result.status == "sent"
        assert services.ledger.get_history() == []
    finally:
        services.close(wait=False)


def test_bypass_email_test_notification(tmp_path, app_config, clock):
    services = build_services(tmp_path, app_config, clock, EnvironmentConfig(skip_compliance_checks=True))
    try:
        result = services.gateway.send(
            Notification(
                type="email",
                recipient="board@example.com",
                template="test_notification",
                data={"test_message": "Checking the email channel"},
            )
        )

        assert result.success is True
        assert result.provider_id == "email-msg-1"
        assert len(services.adapters["email"].sent) == 1
        assert services.ledger.get_history() == []
    finally:
        services.close(wait=False)
