"""Data access layer (repositories) for persistence operations.

Repositories wrap one session, translate between ORM rows and domain models
and convert SQLAlchemy failures into :class:`PersistenceError`.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.jobs import CLAIMABLE_STATES, Job, JobState
from ..domain.models import (
    ComplianceViolation,
    DeliveryEvent,
    DeliveryFilter,
    DeliveryRecord,
    NotificationPreferences,
    OptOut,
    TemplateSource,
    UserContact,
)
from ..utils.timestamps import to_storage
from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    ComplianceViolationModel,
    DeliveryEventModel,
    DeliveryModel,
    JobModel,
    JobQueueModel,
    NotificationPreferencesModel,
    NotificationTemplateModel,
    OptOutModel,
    UserContactModel,
)

logger = logging.getLogger(__name__)

# (type, status, count)
StatusCount = Tuple[str, str, int]
# (day "YYYY-MM-DD", type, status, count)
DailyCount = Tuple[str, str, str, int]


def _day(column):
    return func.substr(column, 1, 10)


class DeliveryRepository:
    """Repository for the deliveries table."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, record: DeliveryRecord) -> DeliveryRecord:
        """Insert a delivery record and return it with its id.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = DeliveryModel.from_domain(record)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to insert delivery record: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting delivery record: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert delivery record: {e}") from e

    def get(self, record_id: int) -> Optional[DeliveryRecord]:
        try:
            model = self.session.get(DeliveryModel, record_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve delivery {record_id}: {e}") from e

    def get_by_provider_id(self, provider_id: str) -> Optional[DeliveryRecord]:
        """Most recent record carrying ``provider_id``, or None."""
        try:
            stmt = (
                select(DeliveryModel)
                .where(DeliveryModel.provider_id == provider_id)
                .order_by(DeliveryModel.id.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving delivery by provider id {provider_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve delivery: {e}") from e

    def save(self, record: DeliveryRecord) -> DeliveryRecord:
        """Write mutable fields of an existing record back to its row.

        Raises:
            RecordNotFoundError: If the record id does not exist
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(DeliveryModel, record.id) if record.id else None
            if model is None:
                raise RecordNotFoundError(f"Delivery record {record.id} not found")

            model.status = record.status
            model.provider_id = record.provider_id
            model.delivered_at = to_storage(record.delivered_at) if record.delivered_at else None
            model.error_message = record.error_message
            model.meta = dict(record.metadata)
            model.updated_at = to_storage(record.updated_at) if record.updated_at else None
            self.session.flush()
            return model.to_domain()
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating delivery {record.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update delivery: {e}") from e

    def count_since(
        self,
        channel: str,
        since: datetime,
        user_id: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> int:
        """Count records of ``channel`` sent at or after ``since``.

        Counts by user when ``user_id`` is given, else by recipient.
        """
        try:
            stmt = select(func.count(DeliveryModel.id)).where(
                DeliveryModel.type == channel,
                DeliveryModel.sent_at >= to_storage(since),
            )
            if user_id is not None:
                stmt = stmt.where(DeliveryModel.user_id == user_id)
            else:
                stmt = stmt.where(DeliveryModel.recipient == recipient)
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count deliveries: {e}") from e

    def list(
        self, filters: Optional[DeliveryFilter] = None, limit: int = 100, offset: int = 0
    ) -> List[DeliveryRecord]:
        """Records matching ``filters``, newest first."""
        try:
            stmt = self._filtered(select(DeliveryModel), filters)
            stmt = stmt.order_by(DeliveryModel.sent_at.desc(), DeliveryModel.id.desc())
            stmt = stmt.limit(limit).offset(offset)
            return [m.to_domain() for m in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list deliveries: {e}") from e

    def failed_since(
        self, statuses: Sequence[str], since: datetime, max_retry_count: int, limit: int
    ) -> List[DeliveryRecord]:
        """Oldest-first records in ``statuses`` with retry_count below the cap."""
        try:
            stmt = (
                select(DeliveryModel)
                .where(
                    DeliveryModel.status.in_(list(statuses)),
                    DeliveryModel.sent_at >= to_storage(since),
                )
                .order_by(DeliveryModel.sent_at.asc(), DeliveryModel.id.asc())
            )
            candidates = []
            # retry_count lives in the JSON column, so it is filtered here
            for model in self.session.execute(stmt).scalars():
                record = model.to_domain()
                if record.retry_count < max_retry_count:
                    candidates.append(record)
                    if len(candidates) >= limit:
                        break
            return candidates
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to select retry candidates: {e}") from e

    def status_counts(self, filters: Optional[DeliveryFilter] = None) -> List[StatusCount]:
        try:
            stmt = select(
                DeliveryModel.type, DeliveryModel.status, func.count(DeliveryModel.id)
            ).group_by(DeliveryModel.type, DeliveryModel.status)
            stmt = self._filtered(stmt, filters)
            return [(t, s, int(c)) for t, s, c in self.session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to aggregate deliveries: {e}") from e

    def delivery_times(
        self, filters: Optional[DeliveryFilter] = None
    ) -> List[Tuple[str, str, str, str]]:
        """(type, status, sent_at, delivered_at) for rows that have delivered_at."""
        try:
            stmt = select(
                DeliveryModel.type,
                DeliveryModel.status,
                DeliveryModel.sent_at,
                DeliveryModel.delivered_at,
            ).where(DeliveryModel.delivered_at.is_not(None))
            stmt = self._filtered(stmt, filters)
            return [tuple(row) for row in self.session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read delivery times: {e}") from e

    def daily_counts(
        self, since: datetime, until: Optional[datetime] = None, filters: Optional[DeliveryFilter] = None
    ) -> List[DailyCount]:
        """Per-day counts by type and status, newest day first."""
        try:
            day = _day(DeliveryModel.sent_at)
            stmt = (
                select(day, DeliveryModel.type, DeliveryModel.status, func.count(DeliveryModel.id))
                .where(DeliveryModel.sent_at >= to_storage(since))
                .group_by(day, DeliveryModel.type, DeliveryModel.status)
                .order_by(day.desc())
            )
            if until is not None:
                stmt = stmt.where(DeliveryModel.sent_at <= to_storage(until))
            stmt = self._filtered(stmt, filters)
            return [(d, t, s, int(c)) for d, t, s, c in self.session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to build daily rollup: {e}") from e

    def delete_before(self, cutoff: datetime) -> Tuple[int, int]:
        """Hard-delete records sent before ``cutoff`` and their events.

        Returns:
            (deleted records, deleted events)
        """
        try:
            cutoff_str = to_storage(cutoff)
            provider_ids = select(DeliveryModel.provider_id).where(
                DeliveryModel.sent_at < cutoff_str,
                DeliveryModel.provider_id.is_not(None),
            )
            events = self.session.execute(
                delete(DeliveryEventModel).where(DeliveryEventModel.provider_id.in_(provider_ids))
            )
            records = self.session.execute(
                delete(DeliveryModel).where(DeliveryModel.sent_at < cutoff_str)
            )
            self.session.flush()
            return records.rowcount or 0, events.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error pruning deliveries: {e}", exc_info=True)
            raise PersistenceError(f"Failed to prune deliveries: {e}") from e

    @staticmethod
    def _filtered(stmt, filters: Optional[DeliveryFilter]):
        if filters is None:
            return stmt
        if filters.user_id is not None:
            stmt = stmt.where(DeliveryModel.user_id == filters.user_id)
        if filters.type is not None:
            stmt = stmt.where(DeliveryModel.type == filters.type)
        if filters.template is not None:
            stmt = stmt.where(DeliveryModel.template == filters.template)
        if filters.status is not None:
            stmt = stmt.where(DeliveryModel.status == filters.status)
        if filters.start is not None:
            stmt = stmt.where(DeliveryModel.sent_at >= to_storage(filters.start))
        if filters.end is not None:
            stmt = stmt.where(DeliveryModel.sent_at <= to_storage(filters.end))
        return stmt


class DeliveryEventRepository:
    """Repository for delivery_events."""

    def __init__(self, session: Session):
        self.session = session

    def add_if_new(self, event: DeliveryEvent, match_time: bool = True) -> bool:
        """Insert ``event`` unless an identical one was already stored.

        With ``match_time`` False the occurrence time is ignored, for providers
        whose callbacks carry no timestamp of their own.

        Returns:
            True if inserted, False for a duplicate webhook delivery
        """
        conditions = [
            DeliveryEventModel.provider_id == event.provider_id,
            DeliveryEventModel.status == event.status,
        ]
        if match_time:
            conditions.append(DeliveryEventModel.occurred_at == to_storage(event.occurred_at))
        try:
            existing = self.session.execute(select(DeliveryEventModel.id).where(*conditions)).first()
            if existing is not None:
                return False
            self.session.add(DeliveryEventModel.from_domain(event))
            self.session.flush()
            return True
        except IntegrityError as e:
            raise DataIntegrityError(f"Concurrent duplicate delivery event: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store delivery event: {e}") from e

    def list_for(self, provider_id: str) -> List[DeliveryEvent]:
        """Status history of one message, oldest first."""
        try:
            stmt = (
                select(DeliveryEventModel)
                .where(DeliveryEventModel.provider_id == provider_id)
                .order_by(DeliveryEventModel.occurred_at.asc(), DeliveryEventModel.id.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list delivery events: {e}") from e


class OptOutRepository:
    """Repository for opt_outs (append only)."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, opt_out: OptOut) -> int:
        try:
            model = OptOutModel.from_domain(opt_out)
            self.session.add(model)
            self.session.flush()
            return model.id
        except SQLAlchemyError as e:
            logger.error(f"Error recording opt-out for user {opt_out.user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record opt-out: {e}") from e

    def latest(self, user_id: str, scopes: Iterable[str]) -> Optional[OptOut]:
        """Most recent opt-out for the user in any of ``scopes``."""
        try:
            stmt = (
                select(OptOutModel)
                .where(
                    OptOutModel.user_id == user_id,
                    OptOutModel.type.in_(list(scopes)),
                    OptOutModel.occurred_at.is_not(None),
                )
                .order_by(OptOutModel.occurred_at.desc(), OptOutModel.id.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up opt-outs: {e}") from e

    def daily_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, str, int]]:
        """(day, type, source, count) within [start, end]."""
        try:
            day = _day(OptOutModel.occurred_at)
            stmt = (
                select(day, OptOutModel.type, OptOutModel.source, func.count(OptOutModel.id))
                .where(
                    OptOutModel.occurred_at >= to_storage(start),
                    OptOutModel.occurred_at <= to_storage(end),
                )
                .group_by(day, OptOutModel.type, OptOutModel.source)
                .order_by(day.desc())
            )
            return [(d, t, s, int(c)) for d, t, s, c in self.session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to aggregate opt-outs: {e}") from e


class PreferencesRepository:
    """Repository for notification_preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        try:
            model = self.session.get(NotificationPreferencesModel, user_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read preferences: {e}") from e

    def save(self, preferences: NotificationPreferences) -> NotificationPreferences:
        """Insert or replace the preferences row of one user."""
        try:
            model = self.session.get(NotificationPreferencesModel, preferences.user_id)
            if model is None:
                model = NotificationPreferencesModel(user_id=preferences.user_id)
                self.session.add(model)
            model.email_enabled = preferences.email_enabled
            model.sms_enabled = preferences.sms_enabled
            model.notification_types = preferences.notification_types
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save preferences: {e}") from e


class UserContactRepository:
    """Repository for user_contacts."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_phone(self, phone: str) -> Optional[UserContact]:
        try:
            stmt = select(UserContactModel).where(UserContactModel.phone == phone).limit(1)
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up contact: {e}") from e

    def save(self, contact: UserContact) -> UserContact:
        try:
            model = self.session.get(UserContactModel, contact.user_id)
            if model is None:
                model = UserContactModel(user_id=contact.user_id)
                self.session.add(model)
            model.phone = contact.phone
            model.email = contact.email
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save contact: {e}") from e


class ComplianceViolationRepository:
    """Repository for compliance_violations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, violation: ComplianceViolation) -> int:
        try:
            model = ComplianceViolationModel.from_domain(violation)
            self.session.add(model)
            self.session.flush()
            return model.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record compliance violation: {e}") from e

    def daily_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, int]]:
        """(day, violation_type, count) within [start, end]."""
        try:
            day = _day(ComplianceViolationModel.created_at)
            stmt = (
                select(
                    day,
                    ComplianceViolationModel.violation_type,
                    func.count(ComplianceViolationModel.id),
                )
                .where(
                    ComplianceViolationModel.created_at >= to_storage(start),
                    ComplianceViolationModel.created_at <= to_storage(end),
                )
                .group_by(day, ComplianceViolationModel.violation_type)
                .order_by(day.desc())
            )
            return [(d, v, int(c)) for d, v, c in self.session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to aggregate compliance violations: {e}") from e


class TemplateRepository:
    """Repository for notification_templates."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, channel: str, name: str) -> Optional[TemplateSource]:
        try:
            model = self.session.get(NotificationTemplateModel, (channel, name))
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read template {channel}/{name}: {e}") from e

    def list_names(self, channel: Optional[str] = None) -> Dict[str, List[str]]:
        """Template names grouped by channel."""
        try:
            stmt = select(NotificationTemplateModel.channel, NotificationTemplateModel.name)
            if channel is not None:
                stmt = stmt.where(NotificationTemplateModel.channel == channel)
            stmt = stmt.order_by(NotificationTemplateModel.channel, NotificationTemplateModel.name)
            grouped: Dict[str, List[str]] = {}
            for ch, name in self.session.execute(stmt):
                grouped.setdefault(ch, []).append(name)
            return grouped
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list templates: {e}") from e

    def count(self) -> int:
        try:
            return int(
                self.session.execute(select(func.count()).select_from(NotificationTemplateModel)).scalar_one()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count templates: {e}") from e

    def save(self, source: TemplateSource) -> None:
        try:
            model = self.session.get(NotificationTemplateModel, (source.channel, source.name))
            if model is None:
                model = NotificationTemplateModel(channel=source.channel, name=source.name)
                self.session.add(model)
            model.subject = source.subject
            model.html = source.html
            model.text = source.text
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save template {source.channel}/{source.name}: {e}") from e


class JobRepository:
    """Repository for queue_jobs and job_queues.

    State transitions that workers race on (claiming, promotion, stall
    marking) are single conditional UPDATEs, so two workers never both win
    the same job.
    """

    def __init__(self, session: Session):
        self.session = session

    def add(self, job: Job) -> Job:
        """Insert a job row and return it with its id."""
        try:
            model = JobModel(
                queue=job.queue,
                name=job.name,
                payload=job.payload,
                priority=job.priority,
                attempts=job.attempts,
                backoff=job.backoff,
                state=JobState(job.state).value,
                scheduled_for=to_storage(job.scheduled_for) if job.scheduled_for else None,
                created_at=to_storage(job.created_at),
                run_at=to_storage(job.run_at) if job.run_at else None,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error inserting job into {job.queue}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert job: {e}") from e

    def get(self, job_id: str) -> Optional[Job]:
        try:
            model = self.session.get(JobModel, int(job_id))
            return model.to_domain() if model else None
        except ValueError:
            return None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve job {job_id}: {e}") from e

    def save(self, job: Job) -> Job:
        """Write the mutable fields of ``job`` back to its row.

        Raises:
            RecordNotFoundError: If the job no longer exists
        """
        try:
            model = self.session.get(JobModel, int(job.id))
            if model is None:
                raise RecordNotFoundError(f"Job {job.id} not found")
            model.state = JobState(job.state).value
            model.attempts_made = job.attempts_made
            model.progress = job.progress
            model.result = job.result
            model.failed_reason = job.failed_reason
            model.run_at = to_storage(job.run_at) if job.run_at else None
            model.processed_at = to_storage(job.processed_at) if job.processed_at else None
            model.finished_at = to_storage(job.finished_at) if job.finished_at else None
            model.stalled = job.stalled
            self.session.flush()
            return model.to_domain()
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update job {job.id}: {e}") from e

    def set_progress(self, job_id: str, progress: int) -> None:
        try:
            self.session.execute(
                update(JobModel).where(JobModel.id == int(job_id)).values(progress=progress)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store progress of job {job_id}: {e}") from e

    def claim(self, job_id: str, now: datetime) -> Optional[Job]:
        """Mark a due, claimable job active and count the attempt.

        Returns:
            The claimed job, or None if it is not due, already taken or gone
        """
        stamp = to_storage(now)
        try:
            claimed = self.session.execute(
                update(JobModel)
                .where(
                    JobModel.id == int(job_id),
                    JobModel.state.in_(CLAIMABLE_STATES),
                    or_(JobModel.run_at.is_(None), JobModel.run_at <= stamp),
                )
                .values(
                    state=JobState.ACTIVE.value,
                    attempts_made=JobModel.attempts_made + 1,
                    processed_at=stamp,
                    stalled=False,
                )
            ).rowcount
            if claimed != 1:
                return None
            return self.get(job_id)
        except ValueError:
            return None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to claim job {job_id}: {e}") from e

    def due_ids(self, queue: str, now: datetime, limit: Optional[int] = 100) -> List[str]:
        """Ids of claimable jobs that are due, by priority then enqueue order."""
        try:
            stmt = (
                select(JobModel.id)
                .where(
                    JobModel.queue == queue,
                    JobModel.state.in_(CLAIMABLE_STATES),
                    or_(JobModel.run_at.is_(None), JobModel.run_at <= to_storage(now)),
                )
                .order_by(JobModel.priority.asc(), JobModel.id.asc())
                .limit(limit)
            )
            return [str(job_id) for job_id in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to select due jobs of {queue}: {e}") from e

    def promote_due(self, now: datetime) -> List[Job]:
        """Move delayed jobs whose time has come back to waiting."""
        stamp = to_storage(now)
        try:
            models = self.session.execute(
                select(JobModel).where(
                    JobModel.state == JobState.DELAYED.value,
                    JobModel.run_at <= stamp,
                )
            ).scalars().all()
            for model in models:
                model.state = JobState.WAITING.value
                model.run_at = None
            self.session.flush()
            return [model.to_domain() for model in models]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to promote delayed jobs: {e}") from e

    def stale_waiting(self, dispatched_before: datetime) -> List[Job]:
        """Waiting jobs never published, or last published before ``dispatched_before``."""
        try:
            models = self.session.execute(
                select(JobModel)
                .where(
                    JobModel.state == JobState.WAITING.value,
                    or_(
                        JobModel.dispatched_at.is_(None),
                        JobModel.dispatched_at <= to_storage(dispatched_before),
                    ),
                )
                .order_by(JobModel.priority.asc(), JobModel.id.asc())
            ).scalars().all()
            return [model.to_domain() for model in models]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to select unclaimed jobs: {e}") from e

    def mark_dispatched(self, job_id: str, now: datetime) -> None:
        try:
            self.session.execute(
                update(JobModel)
                .where(JobModel.id == int(job_id))
                .values(dispatched_at=to_storage(now))
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to mark job {job_id} dispatched: {e}") from e

    def mark_stalled(self, active_before: datetime) -> List[Job]:
        """Flag jobs active since before ``active_before``; each job is flagged once."""
        try:
            models = self.session.execute(
                select(JobModel).where(
                    JobModel.state == JobState.ACTIVE.value,
                    JobModel.stalled.is_(False),
                    JobModel.processed_at < to_storage(active_before),
                )
            ).scalars().all()
            for model in models:
                model.stalled = True
            self.session.flush()
            return [model.to_domain() for model in models]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to detect stalled jobs: {e}") from e

    def reset_failed(self, job_id: str) -> bool:
        """Put a failed job back to waiting with a fresh attempt budget."""
        try:
            return (
                self.session.execute(
                    update(JobModel)
                    .where(JobModel.id == int(job_id), JobModel.state == JobState.FAILED.value)
                    .values(
                        state=JobState.WAITING.value,
                        attempts_made=0,
                        failed_reason=None,
                        finished_at=None,
                        run_at=None,
                    )
                ).rowcount
                == 1
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to reset job {job_id}: {e}") from e

    def list(self, queue: str, state: JobState, limit: Optional[int] = None) -> List[Job]:
        """Jobs of ``queue`` in ``state``, in enqueue order."""
        try:
            stmt = (
                select(JobModel)
                .where(JobModel.queue == queue, JobModel.state == JobState(state).value)
                .order_by(JobModel.id.asc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list jobs of {queue}: {e}") from e

    def counts(self, queue: str) -> Dict[str, int]:
        """Jobs of ``queue`` per state, every state present."""
        try:
            counts = {state.value: 0 for state in JobState}
            stmt = (
                select(JobModel.state, func.count(JobModel.id))
                .where(JobModel.queue == queue)
                .group_by(JobModel.state)
            )
            for state, count in self.session.execute(stmt):
                counts[state] = int(count)
            return counts
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count jobs of {queue}: {e}") from e

    def trim(self, queue: str, state: JobState, keep: int) -> int:
        """Delete the oldest finished jobs of ``queue`` beyond the newest ``keep``."""
        try:
            stale = (
                select(JobModel.id)
                .where(JobModel.queue == queue, JobModel.state == JobState(state).value)
                .order_by(JobModel.finished_at.desc(), JobModel.id.desc())
                .offset(keep)
            )
            ids = list(self.session.execute(stale).scalars())
            if not ids:
                return 0
            self.session.execute(delete(JobModel).where(JobModel.id.in_(ids)))
            return len(ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to trim jobs of {queue}: {e}") from e

    def delete_finished_before(self, queue: str, state: JobState, cutoff: datetime) -> int:
        try:
            return self.session.execute(
                delete(JobModel).where(
                    JobModel.queue == queue,
                    JobModel.state == JobState(state).value,
                    JobModel.finished_at.is_not(None),
                    JobModel.finished_at <= to_storage(cutoff),
                )
            ).rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to clean jobs of {queue}: {e}") from e

    def set_paused(self, queue: str, paused: bool) -> None:
        try:
            model = self.session.get(JobQueueModel, queue)
            if model is None:
                model = JobQueueModel(name=queue)
                self.session.add(model)
            model.paused = paused
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update queue {queue}: {e}") from e

    def is_paused(self, queue: str) -> bool:
        try:
            model = self.session.get(JobQueueModel, queue)
            return bool(model and model.paused)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read queue {queue}: {e}") from e
