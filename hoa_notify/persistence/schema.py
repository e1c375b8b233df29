"""Database schema definition and ORM models.

Timestamps are stored as ISO-8601 UTC strings with microseconds so that
string comparison orders them chronologically on every backend. Free-form
maps use the portable SQLAlchemy ``JSON`` type.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from ..domain.jobs import Job, JobState
from ..domain.models import (
    ComplianceViolation,
    DeliveryEvent,
    DeliveryRecord,
    NotificationPreferences,
    OptOut,
    TemplateSource,
    UserContact,
)
from ..utils.timestamps import parse_iso_datetime, to_storage

logger = logging.getLogger(__name__)

Base = declarative_base()


class DeliveryModel(Base):
    """ORM model for the deliveries table (one row per send attempt)."""

    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=True)
    type = Column(String(10), nullable=False)
    recipient = Column(String(255), nullable=False)
    template = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False)
    provider = Column(String(50), nullable=True)
    provider_id = Column(String(255), nullable=True)
    sent_at = Column(String(50), nullable=False)
    delivered_at = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_deliveries_provider_id", "provider_id"),
        Index("idx_deliveries_user_type_sent", "user_id", "type", "sent_at"),
        Index("idx_deliveries_status_sent", "status", "sent_at"),
        Index("idx_deliveries_notification", "notification_id"),
    )

    def to_domain(self) -> DeliveryRecord:
        return DeliveryRecord(
            id=self.id,
            notification_id=self.notification_id,
            user_id=self.user_id,
            type=self.type,
            recipient=self.recipient,
            template=self.template,
            status=self.status,
            provider=self.provider,
            provider_id=self.provider_id,
            sent_at=parse_iso_datetime(self.sent_at),
            delivered_at=parse_iso_datetime(self.delivered_at),
            error_message=self.error_message,
            metadata=dict(self.meta or {}),
            updated_at=parse_iso_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, record: DeliveryRecord) -> "DeliveryModel":
        return cls(
            notification_id=record.notification_id,
            user_id=record.user_id,
            type=record.type,
            recipient=record.recipient,
            template=record.template,
            status=record.status,
            provider=record.provider,
            provider_id=record.provider_id,
            sent_at=_format_datetime(record.sent_at),
            delivered_at=_format_datetime(record.delivered_at),
            error_message=record.error_message,
            meta=dict(record.metadata),
            updated_at=_format_datetime(record.updated_at or record.sent_at),
        )


class DeliveryEventModel(Base):
    """ORM model for delivery_events (status history, webhook dedupe key)."""

    __tablename__ = "delivery_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    occurred_at = Column(String(50), nullable=False)
    reason = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("provider_id", "status", "occurred_at", name="uq_delivery_event"),
        Index("idx_delivery_events_occurred", "occurred_at"),
    )

    def to_domain(self) -> DeliveryEvent:
        return DeliveryEvent(
            id=self.id,
            provider_id=self.provider_id,
            status=self.status,
            occurred_at=parse_iso_datetime(self.occurred_at),
            reason=self.reason,
            payload=dict(self.payload or {}),
        )

    @classmethod
    def from_domain(cls, event: DeliveryEvent) -> "DeliveryEventModel":
        return cls(
            provider_id=event.provider_id,
            status=event.status,
            occurred_at=_format_datetime(event.occurred_at),
            reason=event.reason,
            payload=dict(event.payload),
        )


class OptOutModel(Base):
    """ORM model for opt_outs. Rows are never deleted."""

    __tablename__ = "opt_outs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    type = Column(String(10), nullable=False)
    reason = Column(Text, nullable=True)
    source = Column(String(50), nullable=False, default="manual")
    occurred_at = Column(String(50), nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (Index("idx_opt_outs_user_type", "user_id", "type", "occurred_at"),)

    def to_domain(self) -> OptOut:
        return OptOut(
            id=self.id,
            user_id=self.user_id,
            type=self.type,
            reason=self.reason,
            source=self.source,
            occurred_at=parse_iso_datetime(self.occurred_at),
            metadata=dict(self.meta or {}),
        )

    @classmethod
    def from_domain(cls, opt_out: OptOut) -> "OptOutModel":
        return cls(
            user_id=opt_out.user_id,
            type=opt_out.type,
            reason=opt_out.reason,
            source=opt_out.source,
            occurred_at=_format_datetime(opt_out.occurred_at),
            meta=dict(opt_out.metadata),
        )


class NotificationPreferencesModel(Base):
    """ORM model for notification_preferences (one row per user)."""

    __tablename__ = "notification_preferences"

    user_id = Column(String(64), primary_key=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    sms_enabled = Column(Boolean, nullable=False, default=True)
    notification_types = Column(JSON, nullable=True)

    def to_domain(self) -> NotificationPreferences:
        return NotificationPreferences(
            user_id=self.user_id,
            email_enabled=bool(self.email_enabled),
            sms_enabled=bool(self.sms_enabled),
            notification_types=self.notification_types,
        )


class UserContactModel(Base):
    """ORM model for user_contacts (phone to user resolution)."""

    __tablename__ = "user_contacts"

    user_id = Column(String(64), primary_key=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)

    __table_args__ = (Index("idx_user_contacts_phone", "phone"),)

    def to_domain(self) -> UserContact:
        return UserContact(user_id=self.user_id, phone=self.phone, email=self.email)


class ComplianceViolationModel(Base):
    """ORM model for compliance_violations (blocked send audit trail)."""

    __tablename__ = "compliance_violations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=True)
    type = Column(String(10), nullable=False)
    template = Column(String(100), nullable=True)
    violation_type = Column(String(50), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_compliance_violations_created", "created_at"),)

    def to_domain(self) -> ComplianceViolation:
        return ComplianceViolation(
            id=self.id,
            user_id=self.user_id,
            type=self.type,
            template=self.template,
            violation_type=self.violation_type,
            reason=self.reason,
            created_at=parse_iso_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, violation: ComplianceViolation) -> "ComplianceViolationModel":
        return cls(
            user_id=violation.user_id,
            type=violation.type,
            template=violation.template,
            violation_type=violation.violation_type,
            reason=violation.reason,
            created_at=_format_datetime(violation.created_at),
        )


class NotificationTemplateModel(Base):
    """ORM model for notification_templates keyed by (channel, name)."""

    __tablename__ = "notification_templates"

    channel = Column(String(10), primary_key=True)
    name = Column(String(100), primary_key=True)
    subject = Column(Text, nullable=True)
    html = Column(Text, nullable=True)
    text = Column(Text, nullable=False)

    def to_domain(self) -> TemplateSource:
        return TemplateSource(
            channel=self.channel,
            name=self.name,
            subject=self.subject,
            html=self.html,
            text=self.text,
        )


class JobModel(Base):
    """ORM model for queue_jobs (durable state of every queued job).

    The autoincrement id doubles as the FIFO sequence among jobs of equal
    priority.
    """

    __tablename__ = "queue_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)
    priority = Column(Integer, nullable=False, default=5)
    attempts = Column(Integer, nullable=False, default=3)
    backoff = Column(Integer, nullable=False, default=1)
    state = Column(String(20), nullable=False)
    attempts_made = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    result = Column(JSON, nullable=True)
    failed_reason = Column(Text, nullable=True)
    scheduled_for = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    run_at = Column(String(50), nullable=True)
    dispatched_at = Column(String(50), nullable=True)
    processed_at = Column(String(50), nullable=True)
    finished_at = Column(String(50), nullable=True)
    stalled = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_queue_jobs_queue_state", "queue", "state", "priority", "id"),
        Index("idx_queue_jobs_finished", "queue", "state", "finished_at"),
    )

    def to_domain(self) -> Job:
        return Job(
            id=str(self.id),
            queue=self.queue,
            name=self.name,
            payload=self.payload,
            priority=self.priority,
            attempts=self.attempts,
            backoff=self.backoff,
            state=JobState(self.state),
            attempts_made=self.attempts_made,
            progress=self.progress,
            result=self.result,
            failed_reason=self.failed_reason,
            scheduled_for=parse_iso_datetime(self.scheduled_for),
            created_at=parse_iso_datetime(self.created_at),
            run_at=parse_iso_datetime(self.run_at),
            processed_at=parse_iso_datetime(self.processed_at),
            finished_at=parse_iso_datetime(self.finished_at),
            stalled=bool(self.stalled),
        )


class JobQueueModel(Base):
    """ORM model for job_queues (pause flag shared by every worker)."""

    __tablename__ = "job_queues"

    name = Column(String(50), primary_key=True)
    paused = Column(Boolean, nullable=False, default=False)


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return to_storage(dt)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")
    Base.metadata.create_all(engine, checkfirst=True)
    tables = inspect(engine).get_table_names()
    logger.info(
        "Database schema ready",
        extra={"event": "database.schema.ready", "tables": ",".join(sorted(tables))},
    )
