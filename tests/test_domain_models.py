"""Tests for domain models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from hoa_notify.domain.models import (
    STATUS_RANK,
    Channel,
    DeliveryFilter,
    DeliveryRecord,
    DeliveryStatus,
    Notification,
    NotificationPreferences,
    OptOut,
    OptOutScope,
    TemplateSource,
)


class TestNotification:
    """Tests for the Notification model."""

    def test_generates_id(self):
        first = Notification(type="email", recipient="owner@example.com", template="t")
        second = Notification(type="email", recipient="owner@example.com", template="t")

        assert first.id and second.id
        assert first.id != second.id

    def test_unknown_type_is_accepted_for_later_validation(self):
        """Test that a bad type is kept so the gateway can report it."""
        notification = Notification(type="fax", recipient="555", template="t")

        assert notification.type == "fax"
        assert notification.channel is None

    def test_channel_property(self):
        notification = Notification(type="sms", recipient="+13035550142", template="t")

        assert notification.channel == Channel.SMS

    def test_user_id_normalized_to_string(self):
        notification = Notification(type="email", recipient="a@example.com", template="t", user_id=42)

        assert notification.user_id == "42"

    def test_blank_user_id_becomes_none(self):
        notification = Notification(type="email", recipient="a@example.com", template="t", user_id="  ")

        assert notification.user_id is None

    def test_strings_are_stripped(self):
        notification = Notification(type=" email ", recipient=" a@example.com ", template=" t ")

        assert (notification.type, notification.recipient, notification.template) == (
            "email",
            "a@example.com",
            "t",
        )


class TestDeliveryRecord:
    """Tests for the DeliveryRecord model."""

    def make(self, **overrides):
        values = {
            "notification_id": "n-1",
            "type": "email",
            "recipient": "owner@example.com",
            "status": "sent",
            "sent_at": datetime(2024, 3, 12, 15, 0),
        }
        values.update(overrides)
        return DeliveryRecord(**values)

    def test_naive_timestamps_become_utc(self):
        assert self.make().sent_at.tzinfo == timezone.utc

    def test_enum_values_stored(self):
        record = self.make(type=Channel.SMS, status=DeliveryStatus.DELIVERED)

        assert record.type == "sms"
        assert record.status == "delivered"

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            self.make(status="lost")

    def test_retry_count_from_metadata(self):
        assert self.make().retry_count == 0
        assert self.make(metadata={"retry_count": 2}).retry_count == 2


class TestStatusRank:
    """Tests for the status progress order."""

    def test_every_status_ranked(self):
        assert set(STATUS_RANK) == {status.value for status in DeliveryStatus}

    def test_progress_order(self):
        assert STATUS_RANK["sent"] < STATUS_RANK["delivered"] < STATUS_RANK["opened"]
        assert STATUS_RANK["opened"] < STATUS_RANK["clicked"] < STATUS_RANK["unsubscribed"]


class TestOptOut:
    """Tests for the OptOut model."""

    def test_requires_user(self):
        with pytest.raises(ValidationError):
            OptOut(user_id=" ", type="sms", occurred_at=datetime.now(timezone.utc))

    def test_scope_values(self):
        opt_out = OptOut(user_id=7, type=OptOutScope.ALL, occurred_at=datetime.now(timezone.utc))

        assert opt_out.user_id == "7"
        assert opt_out.type == "all"
        assert opt_out.source == "manual"


class TestNotificationPreferences:
    """Tests for the NotificationPreferences model."""

    def test_channel_enabled(self):
        preferences = NotificationPreferences(user_id="1", sms_enabled=False)

        assert preferences.channel_enabled("email") is True
        assert preferences.channel_enabled("sms") is False
        assert preferences.channel_enabled("push") is False

    def test_no_allow_list_by_default(self):
        assert NotificationPreferences(user_id="1").notification_types is None


class TestTemplateSource:
    def test_requires_text(self):
        with pytest.raises(ValidationError):
            TemplateSource(channel="email", name="welcome", subject="Hi")

    def test_channel_must_be_known(self):
        with pytest.raises(ValidationError):
            TemplateSource(channel="push", name="welcome", text="Hi")


class TestDeliveryFilter:
    def test_times_normalized(self):
        start = datetime(2024, 3, 1, 0, 0, tzinfo=timezone(timedelta(hours=-7)))

        filters = DeliveryFilter(start=start, type="sms")

        assert filters.start == datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)
        assert filters.type == "sms"
