"""Unit tests for the delivery ledger."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from hoa_notify.domain.models import DeliveryFilter, DeliveryRecord
from hoa_notify.ledger import DeliveryLedger


def make_record(clock, **overrides) -> DeliveryRecord:
    values = {
        "notification_id": "n-1",
        "user_id": "101",
        "type": "email",
        "recipient": "owner@example.com",
        "template": "form_reminder",
        "status": "sent",
        "provider": "sendgrid",
        "provider_id": "msg-1",
        "sent_at": clock(),
    }
    values.update(overrides)
    return DeliveryRecord(**values)


class TestRecordAndUpdate:
    """Test recording deliveries and applying status updates."""

    def test_record_assigns_id(self, ledger, clock):
        stored = ledger.record(make_record(clock))

        assert stored.id is not None
        assert ledger.get_record(stored.id).status == "sent"

    def test_update_status_delivered(self, ledger, clock):
        ledger.record(make_record(clock))
        delivered_at = clock() + timedelta(seconds=4)

        updated = ledger.update_status("msg-1", "delivered", timestamp=delivered_at)

        assert updated.status == "delivered"
        assert updated.delivered_at == delivered_at
        assert updated.updated_at == clock()

    def test_unknown_provider_id(self, ledger):
        assert ledger.update_status("nope", "delivered") is None

    def test_unknown_status_rejected(self, ledger, clock):
        ledger.record(make_record(clock))

        with pytest.raises(ValueError):
            ledger.update_status("msg-1", "teleported")

    def test_duplicate_event_applied_once(self, ledger, clock):
        ledger.record(make_record(clock))
        at = clock() + timedelta(seconds=3)

        ledger.update_status("msg-1", "delivered", timestamp=at)
        ledger.update_status("msg-1", "delivered", timestamp=at)

        assert len(ledger.get_events("msg-1")) == 1

    def test_untimed_duplicate_applied_once(self, ledger, clock):
        ledger.record(make_record(clock))

        ledger.update_status("msg-1", "delivered")
        clock.advance(seconds=3)
        ledger.update_status("msg-1", "delivered")

        assert len(ledger.get_events("msg-1")) == 1

    def test_out_of_order_events_do_not_regress(self, ledger, clock):
        ledger.record(make_record(clock))

        ledger.update_status("msg-1", "opened", timestamp=clock() + timedelta(minutes=5))
        record = ledger.update_status("msg-1", "delivered", timestamp=clock() + timedelta(seconds=2))

        assert record.status == "opened"
        assert record.delivered_at == clock() + timedelta(seconds=2)
        assert [e.status for e in ledger.get_events("msg-1")] == ["delivered", "opened"]

    def test_opened_without_delivered_sets_delivered_at(self, ledger, clock):
        ledger.record(make_record(clock))
        opened_at = clock() + timedelta(minutes=1)

        record = ledger.update_status("msg-1", "opened", timestamp=opened_at)

        assert record.delivered_at == opened_at

    def test_reason_and_metadata_merged(self, ledger, clock):
        ledger.record(make_record(clock, metadata={"retry_count": 1}))

        record = ledger.update_status(
            "msg-1", "bounced", reason="Mailbox full", metadata={"sendgrid_event": "bounce"}
        )

        assert record.error_message == "Mailbox full"
        assert record.metadata == {"retry_count": 1, "sendgrid_event": "bounce"}

    def test_listeners_called_and_isolated(self, ledger, clock):
        failing = Mock(side_effect=RuntimeError("boom"))
        listener = Mock()
        ledger.add_listener(failing)
        ledger.add_listener(listener)
        ledger.record(make_record(clock))

        ledger.update_status("msg-1", "delivered")

        record, status = listener.call_args.args
        assert status == "delivered"
        assert record.provider_id == "msg-1"

    def test_latest_record_for_reused_provider_id(self, ledger, clock):
        ledger.record(make_record(clock, notification_id="n-1"))
        newer = ledger.record(make_record(clock, notification_id="n-2"))

        assert ledger.update_status("msg-1", "delivered").id == newer.id


class TestStats:
    """Test get_stats aggregation."""

    def test_counts_and_rates(self, ledger, clock):
        for i, status in enumerate(["sent", "delivered", "opened", "clicked", "failed"]):
            ledger.record(make_record(clock, provider_id=f"msg-{i}", status=status))
        ledger.record(make_record(clock, type="sms", provider_id="sms-1", status="delivered"))

        stats = ledger.get_stats()

        email = next(r for r in stats["rates"] if r["type"] == "email")
        sms = next(r for r in stats["rates"] if r["type"] == "sms")
        assert email["total_sent"] == 5
        assert email["delivered"] == 3
        assert email["opened"] == 2
        assert email["clicked"] == 1
        assert email["failed"] == 1
        assert email["delivery_rate"] == 60.0
        assert email["open_rate"] == 66.67
        assert email["click_rate"] == 50.0
        assert sms["delivery_rate"] == 100.0
        assert sms["open_rate"] is None
        assert stats["summary"] == {"total_sent": 6, "total_delivered": 4, "total_failed": 1}

    def test_average_delivery_time(self, ledger, clock):
        ledger.record(make_record(clock))
        ledger.update_status("msg-1", "delivered", timestamp=clock() + timedelta(seconds=6))

        stats = ledger.get_stats()

        row = next(r for r in stats["overall"] if r["status"] == "delivered")
        assert row["avg_delivery_seconds"] == 6.0

    def test_filters(self, ledger, clock):
        ledger.record(make_record(clock, user_id="101"))
        ledger.record(make_record(clock, user_id="202", provider_id="msg-2"))

        stats = ledger.get_stats(DeliveryFilter(user_id="202"))

        assert stats["summary"]["total_sent"] == 1

    def test_daily_window(self, ledger, clock):
        ledger.record(make_record(clock))
        ledger.record(make_record(clock, sent_at=clock() - timedelta(days=45), provider_id="old"))

        stats = ledger.get_stats()

        assert stats["daily"] == [{"date": "2024-03-12", "type": "email", "status": "sent", "count": 1}]
        assert stats["summary"]["total_sent"] == 2

    def test_empty(self, ledger):
        stats = ledger.get_stats()

        assert stats["overall"] == []
        assert stats["summary"]["total_sent"] == 0


class TestRetryAndCleanup:
    """Test retry candidates, retry marks and pruning."""

    def test_failed_candidates(self, ledger, clock):
        ledger.record(make_record(clock, status="failed", provider_id="a"))
        ledger.record(make_record(clock, status="bounced", provider_id="b"))
        ledger.record(make_record(clock, status="delivered", provider_id="c"))
        ledger.record(
            make_record(clock, status="failed", provider_id="d", sent_at=clock() - timedelta(hours=30))
        )

        candidates = ledger.get_failed_candidates()

        assert [c.provider_id for c in candidates] == ["a", "b"]

    def test_mark_for_retry(self, ledger, clock):
        stored = ledger.record(make_record(clock, status="failed"))

        record = ledger.mark_for_retry(stored.id)

        assert record.status == "retry"
        assert record.retry_count == 1
        assert record.metadata["retry_at"] == "2024-03-12T15:00:00Z"
        assert ledger.mark_for_retry(9999) is None

    def test_retry_cap(self, database, clock):
        ledger = DeliveryLedger(database, clock=clock, max_retry_count=1)
        stored = ledger.record(make_record(clock, status="failed"))
        ledger.mark_for_retry(stored.id)
        ledger.update_status("msg-1", "failed")

        assert ledger.get_failed_candidates() == []

    def test_cleanup(self, ledger, clock):
        ledger.record(make_record(clock, sent_at=clock() - timedelta(days=120), provider_id="old"))
        ledger.update_status("old", "delivered")
        ledger.record(make_record(clock))

        assert ledger.cleanup(days_to_keep=90) == 1
        assert ledger.get_events("old") == []
        assert len(ledger.get_history()) == 1

    def test_history_newest_first(self, ledger, clock):
        ledger.record(make_record(clock, sent_at=clock() - timedelta(hours=2), provider_id="old"))
        ledger.record(make_record(clock, provider_id="new"))

        assert [r.provider_id for r in ledger.get_history()] == ["new", "old"]
        assert [r.provider_id for r in ledger.get_history(limit=1, offset=1)] == ["old"]
