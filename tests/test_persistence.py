"""Unit tests for the persistence layer."""

from datetime import datetime, timedelta, timezone

import pytest

from hoa_notify.domain.jobs import Job, JobState
from hoa_notify.domain.models import (
    ComplianceViolation,
    DeliveryEvent,
    DeliveryFilter,
    DeliveryRecord,
    NotificationPreferences,
    OptOut,
    TemplateSource,
    UserContact,
)
from hoa_notify.persistence import (
    ComplianceViolationRepository,
    Database,
    DatabaseConnectionError,
    DeliveryEventRepository,
    DeliveryRepository,
    JobRepository,
    OptOutRepository,
    PreferencesRepository,
    RecordNotFoundError,
    TemplateRepository,
    UserContactRepository,
    redact_url,
)

NOW = datetime(2024, 3, 12, 15, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> DeliveryRecord:
    values = {
        "notification_id": "n-1",
        "user_id": "101",
        "type": "email",
        "recipient": "owner@example.com",
        "template": "form_reminder",
        "status": "sent",
        "provider": "sendgrid",
        "provider_id": "msg-1",
        "sent_at": NOW,
    }
    values.update(overrides)
    return DeliveryRecord(**values)


class TestDatabase:
    """Tests for Database construction and sessions."""

    def test_file_database_creates_parent_directories(self, tmp_path):
        db_file = tmp_path / "nested" / "dir" / "hoa.db"

        database = Database(f"sqlite:///{db_file}")

        assert db_file.exists()
        database.close()

    def test_empty_url_rejected(self):
        with pytest.raises(DatabaseConnectionError):
            Database("")

    def test_session_after_close_raises(self):
        database = Database.in_memory()
        database.close()

        with pytest.raises(DatabaseConnectionError):
            with database.session():
                pass

    def test_session_rolls_back_on_error(self, database):
        with pytest.raises(RuntimeError):
            with database.session() as session:
                DeliveryRepository(session).add(make_record())
                raise RuntimeError("abort")

        with database.session() as session:
            assert DeliveryRepository(session).get_by_provider_id("msg-1") is None

    def test_redact_url(self):
        assert redact_url("postgresql://hoa:secret@db:5432/hoa") == "postgresql://hoa:***@db:5432/hoa"
        assert redact_url("sqlite:///./data/hoa.db") == "sqlite:///./data/hoa.db"


class TestDeliveryRepository:
    """Tests for DeliveryRepository."""

    def test_add_and_get(self, database):
        with database.session() as session:
            stored = DeliveryRepository(session).add(make_record(metadata={"retry_count": 1}))

        with database.session() as session:
            loaded = DeliveryRepository(session).get(stored.id)

        assert loaded.id == stored.id
        assert loaded.sent_at == NOW
        assert loaded.metadata == {"retry_count": 1}

    def test_get_by_provider_id_returns_newest(self, database):
        with database.session() as session:
            repo = DeliveryRepository(session)
            repo.add(make_record(notification_id="n-1"))
            newer = repo.add(make_record(notification_id="n-2"))

        with database.session() as session:
            assert DeliveryRepository(session).get_by_provider_id("msg-1").id == newer.id

    def test_save_updates_mutable_fields(self, database):
        with database.session() as session:
            stored = DeliveryRepository(session).add(make_record())

        delivered = stored.model_copy(
            update={"status": "delivered", "delivered_at": NOW + timedelta(seconds=5)}
        )
        with database.session() as session:
            saved = DeliveryRepository(session).save(delivered)

        assert saved.status == "delivered"
        assert saved.delivered_at == NOW + timedelta(seconds=5)

    def test_save_missing_record(self, database):
        with pytest.raises(RecordNotFoundError):
            with database.session() as session:
                DeliveryRepository(session).save(make_record(id=999))

    def test_count_since_by_user_or_recipient(self, database):
        with database.session() as session:
            repo = DeliveryRepository(session)
            repo.add(make_record(sent_at=NOW - timedelta(minutes=30)))
            repo.add(make_record(sent_at=NOW - timedelta(hours=3)))
            repo.add(make_record(user_id=None, recipient="guest@example.com"))
            repo.add(make_record(type="sms", recipient="+13035550142"))

        with database.session() as session:
            repo = DeliveryRepository(session)
            assert repo.count_since("email", NOW - timedelta(hours=1), user_id="101") == 1
            assert repo.count_since("email", NOW - timedelta(hours=24), user_id="101") == 2
            assert (
                repo.count_since("email", NOW - timedelta(hours=1), recipient="guest@example.com")
                == 1
            )

    def test_list_with_filters(self, database):
        with database.session() as session:
            repo = DeliveryRepository(session)
            repo.add(make_record(template="form_reminder"))
            repo.add(make_record(template="emergency_alert", status="failed"))

        with database.session() as session:
            repo = DeliveryRepository(session)
            failed = repo.list(DeliveryFilter(status="failed"))
            reminders = repo.list(DeliveryFilter(template="form_reminder"))

        assert [r.template for r in failed] == ["emergency_alert"]
        assert [r.template for r in reminders] == ["form_reminder"]

    def test_failed_since_respects_retry_cap(self, database):
        with database.session() as session:
            repo = DeliveryRepository(session)
            repo.add(make_record(status="failed", metadata={"retry_count": 0}))
            repo.add(make_record(status="failed", metadata={"retry_count": 3}))
            repo.add(make_record(status="sent"))

        with database.session() as session:
            candidates = DeliveryRepository(session).failed_since(
                ["failed"], NOW - timedelta(hours=24), max_retry_count=3, limit=10
            )

        assert len(candidates) == 1
        assert candidates[0].retry_count == 0

    def test_delete_before_removes_records_and_events(self, database):
        with database.session() as session:
            DeliveryRepository(session).add(make_record(sent_at=NOW - timedelta(days=100)))
            DeliveryRepository(session).add(make_record(provider_id="msg-2"))
            DeliveryEventRepository(session).add_if_new(
                DeliveryEvent(provider_id="msg-1", status="delivered", occurred_at=NOW)
            )

        with database.session() as session:
            records, events = DeliveryRepository(session).delete_before(NOW - timedelta(days=90))

        assert (records, events) == (1, 1)

    def test_daily_counts(self, database):
        with database.session() as session:
            repo = DeliveryRepository(session)
            repo.add(make_record())
            repo.add(make_record(status="failed"))
            repo.add(make_record(sent_at=NOW - timedelta(days=1)))

        with database.session() as session:
            rows = DeliveryRepository(session).daily_counts(NOW - timedelta(days=7))

        assert rows[0][0] == "2024-03-12"
        assert ("2024-03-11", "email", "sent", 1) in rows


class TestDeliveryEventRepository:
    """Tests for DeliveryEventRepository."""

    def test_duplicate_event_ignored(self, database):
        event = DeliveryEvent(provider_id="msg-1", status="delivered", occurred_at=NOW)

        with database.session() as session:
            assert DeliveryEventRepository(session).add_if_new(event) is True
        with database.session() as session:
            assert DeliveryEventRepository(session).add_if_new(event) is False
            assert len(DeliveryEventRepository(session).list_for("msg-1")) == 1

    def test_history_oldest_first(self, database):
        with database.session() as session:
            repo = DeliveryEventRepository(session)
            repo.add_if_new(DeliveryEvent(provider_id="msg-1", status="opened", occurred_at=NOW))
            repo.add_if_new(
                DeliveryEvent(
                    provider_id="msg-1", status="delivered", occurred_at=NOW - timedelta(minutes=1)
                )
            )

        with database.session() as session:
            statuses = [e.status for e in DeliveryEventRepository(session).list_for("msg-1")]

        assert statuses == ["delivered", "opened"]


class TestComplianceRepositories:
    """Tests for opt-out, preference, contact and violation repositories."""

    def test_latest_opt_out_in_scope(self, database):
        with database.session() as session:
            repo = OptOutRepository(session)
            repo.add(OptOut(user_id="101", type="email", occurred_at=NOW - timedelta(days=2)))
            repo.add(OptOut(user_id="101", type="all", occurred_at=NOW))

        with database.session() as session:
            repo = OptOutRepository(session)
            assert repo.latest("101", ["sms", "all"]).type == "all"
            assert repo.latest("101", ["email"]).occurred_at == NOW - timedelta(days=2)
            assert repo.latest("202", ["email", "all"]) is None

    def test_preferences_upsert(self, database):
        with database.session() as session:
            PreferencesRepository(session).save(NotificationPreferences(user_id="101"))
        with database.session() as session:
            PreferencesRepository(session).save(
                NotificationPreferences(
                    user_id="101", sms_enabled=False, notification_types=["emergency_alert"]
                )
            )

        with database.session() as session:
            preferences = PreferencesRepository(session).get("101")

        assert preferences.sms_enabled is False
        assert preferences.notification_types == ["emergency_alert"]

    def test_contact_lookup_by_phone(self, database):
        with database.session() as session:
            UserContactRepository(session).save(UserContact(user_id="101", phone="+13035550142"))

        with database.session() as session:
            assert UserContactRepository(session).get_by_phone("+13035550142").user_id == "101"
            assert UserContactRepository(session).get_by_phone("+13035550000") is None

    def test_violation_daily_counts(self, database):
        with database.session() as session:
            repo = ComplianceViolationRepository(session)
            for check in ("rate_limit", "rate_limit", "opt_out"):
                repo.add(
                    ComplianceViolation(
                        user_id="101",
                        type="sms",
                        violation_type=check,
                        reason="blocked",
                        created_at=NOW,
                    )
                )

        with database.session() as session:
            rows = ComplianceViolationRepository(session).daily_counts(
                NOW - timedelta(days=1), NOW + timedelta(days=1)
            )

        assert sorted(rows) == [("2024-03-12", "opt_out", 1), ("2024-03-12", "rate_limit", 2)]


class TestTemplateRepository:
    """Tests for TemplateRepository."""

    def test_save_replaces_existing(self, database):
        with database.session() as session:
            repo = TemplateRepository(session)
            repo.save(TemplateSource(channel="sms", name="hello_sms", text="Hi. Reply STOP to opt out."))
            repo.save(TemplateSource(channel="sms", name="hello_sms", text="Hello. Reply STOP to opt out."))

        with database.session() as session:
            repo = TemplateRepository(session)
            assert repo.count() == 1
            assert repo.get("sms", "hello_sms").text.startswith("Hello")
            assert repo.list_names() == {"sms": ["hello_sms"]}


def make_job(**overrides) -> Job:
    values = {"id": "", "queue": "immediate", "name": "send-notification", "payload": {"n": 1}, "created_at": NOW}
    values.update(overrides)
    return Job(**values)


class TestJobRepository:
    """Tests for JobRepository."""

    def test_claim_wins_once(self, database):
        with database.session() as session:
            job = JobRepository(session).add(make_job())

        with database.session() as session:
            claimed = JobRepository(session).claim(job.id, NOW)
        with database.session() as session:
            assert JobRepository(session).claim(job.id, NOW) is None

        assert claimed.state == JobState.ACTIVE
        assert claimed.attempts_made == 1
        assert claimed.processed_at == NOW

    def test_delayed_job_claimed_only_when_due(self, database):
        with database.session() as session:
            repo = JobRepository(session)
            job = repo.add(make_job(state=JobState.DELAYED, run_at=NOW + timedelta(minutes=5)))

            assert repo.due_ids("immediate", NOW) == []
            assert repo.claim(job.id, NOW) is None
            assert repo.due_ids("immediate", NOW + timedelta(minutes=5)) == [job.id]

    def test_promote_due(self, database):
        with database.session() as session:
            repo = JobRepository(session)
            due = repo.add(make_job(state=JobState.DELAYED, run_at=NOW))
            repo.add(make_job(state=JobState.DELAYED, run_at=NOW + timedelta(hours=1)))

        with database.session() as session:
            promoted = JobRepository(session).promote_due(NOW)

        assert [job.id for job in promoted] == [due.id]
        assert promoted[0].state == JobState.WAITING
        assert promoted[0].run_at is None

    def test_stale_waiting_uses_publish_time(self, database):
        with database.session() as session:
            repo = JobRepository(session)
            unpublished = repo.add(make_job())
            published = repo.add(make_job())
            repo.mark_dispatched(published.id, NOW)

        with database.session() as session:
            repo = JobRepository(session)
            assert [j.id for j in repo.stale_waiting(NOW - timedelta(minutes=5))] == [unpublished.id]
            assert len(repo.stale_waiting(NOW)) == 2

    def test_paused_flag(self, database):
        with database.session() as session:
            repo = JobRepository(session)
            assert repo.is_paused("bulk") is False
            repo.set_paused("bulk", True)

        with database.session() as session:
            assert JobRepository(session).is_paused("bulk") is True
