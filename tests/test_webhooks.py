"""Unit tests for provider webhook processing."""

from datetime import timezone

import pytest

from hoa_notify.domain.models import DeliveryRecord, UserContact
from hoa_notify.ledger import WebhookProcessor
from hoa_notify.persistence import UserContactRepository


@pytest.fixture
def processor(ledger, gate):
    return WebhookProcessor(ledger, gate)


@pytest.fixture
def email_record(ledger, clock):
    return ledger.record(
        DeliveryRecord(
            notification_id="n-1",
            user_id="101",
            type="email",
            recipient="owner@example.com",
            template="form_reminder",
            status="sent",
            provider="sendgrid",
            provider_id="sg-abc123",
            sent_at=clock(),
        )
    )


@pytest.fixture
def sms_record(ledger, clock):
    return ledger.record(
        DeliveryRecord(
            notification_id="n-2",
            user_id="101",
            type="sms",
            recipient="+13035550142",
            template="form_reminder_sms",
            status="sent",
            provider="twilio",
            provider_id="SM123",
            sent_at=clock(),
        )
    )


class TestEmailEvents:
    """Tests for SendGrid event webhooks."""

    def test_batch_applied(self, processor, ledger, email_record, clock):
        events = [
            {
                "sg_message_id": "sg-abc123.filter0001.16.5FA.0",
                "event": "delivered",
                "timestamp": int(clock().timestamp()) + 5,
            },
            {
                "sg_message_id": "sg-abc123.filter0001.16.5FA.0",
                "event": "open",
                "timestamp": int(clock().timestamp()) + 60,
                "useragent": "Mozilla/5.0",
            },
        ]

        result = processor.handle_email_events(events)

        assert (result.received, result.updated, result.unmatched) == (2, 2, 0)
        record = ledger.get_record(email_record.id)
        assert record.status == "opened"
        assert record.delivered_at.tzinfo == timezone.utc
        assert record.metadata["useragent"] == "Mozilla/5.0"

    def test_single_event_mapping(self, processor, email_record):
        result = processor.handle_email_events(
            {"sg_message_id": "sg-abc123", "event": "bounce", "reason": "550 mailbox unavailable"}
        )

        assert result.updated == 1

    def test_unmatched_and_malformed(self, processor, email_record):
        result = processor.handle_email_events(
            [
                {"sg_message_id": "other.filter", "event": "delivered"},
                {"event": "delivered"},
                {"sg_message_id": "sg-abc123", "event": "delivered"},
            ]
        )

        assert result.received == 3
        assert result.updated == 1
        assert result.unmatched == 1
        assert result.errors[0]["index"] == 1

    def test_duplicate_webhook(self, processor, ledger, email_record):
        event = {"sg_message_id": "sg-abc123", "event": "delivered", "timestamp": 1710255605}

        processor.handle_email_events([event])
        processor.handle_email_events([event])

        assert len(ledger.get_events("sg-abc123")) == 1


class TestSmsStatus:
    """Tests for Twilio status callbacks."""

    def test_delivered(self, processor, ledger, sms_record):
        result = processor.handle_sms_status({"MessageSid": "SM123", "MessageStatus": "delivered"})

        assert result.updated == 1
        assert ledger.get_record(sms_record.id).status == "delivered"

    def test_retried_callback_recorded_once(self, processor, ledger, sms_record, clock):
        callback = {"MessageSid": "SM123", "MessageStatus": "delivered"}

        processor.handle_sms_status(callback)
        clock.advance(seconds=3)
        processor.handle_sms_status(callback)

        assert len(ledger.get_events("SM123")) == 1
        assert ledger.get_record(sms_record.id).status == "delivered"

    def test_undelivered_with_error(self, processor, ledger, sms_record):
        processor.handle_sms_status(
            {"MessageSid": "SM123", "MessageStatus": "undelivered", "ErrorCode": 30006}
        )

        record = ledger.get_record(sms_record.id)
        assert record.status == "failed"
        assert record.error_message == "Twilio error 30006"
        assert record.metadata["error_code"] == "30006"

    def test_missing_sid(self, processor):
        result = processor.handle_sms_status({"MessageStatus": "delivered"})

        assert result.updated == 0
        assert len(result.errors) == 1

    def test_unknown_sid(self, processor):
        result = processor.handle_sms_status({"MessageSid": "SM999", "MessageStatus": "sent"})

        assert result.unmatched == 1


class TestInboundSms:
    """Tests for inbound SMS keyword handling."""

    @pytest.fixture(autouse=True)
    def contact(self, database):
        with database.session() as session:
            UserContactRepository(session).save(UserContact(user_id="101", phone="+13035550142"))

    @pytest.mark.parametrize("body", ["STOP", " stop ", "Unsubscribe", "QUIT"])
    def test_stop_keywords(self, processor, gate, body):
        assert processor.handle_inbound_sms("+13035550142", body) == "101"
        assert gate.get_compliance_report()["summary"]["total_opt_outs"] == 1

    def test_other_messages_ignored(self, processor, gate):
        assert processor.handle_inbound_sms("+13035550142", "Please stop by the office") is None
        assert processor.handle_inbound_sms("+13035550142", None) is None
        assert gate.get_compliance_report()["summary"]["total_opt_outs"] == 0
