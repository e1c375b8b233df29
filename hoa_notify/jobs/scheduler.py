"""Job scheduler: asynchronous, retryable and time-scheduled notification sends.

Three queues sit on one :class:`Broker`:
- immediate: one job sends one notification
- bulk: one job sends a list of notifications in sub-batches
- scheduled: one job sends one notification once its time has come

Job payloads hold notifications as JSON so that a worker in another process
can rebuild them.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..adapters.exceptions import ChannelNotConfiguredError
from ..config.models import BulkConfig, QueuesConfig, QueueSettings
from ..domain.models import Notification
from ..logging import get_logger
from ..notifications.models import NotificationError
from ..utils.timestamps import Clock, ensure_utc, format_timestamp, utc_now
from .broker import Broker, Job, JobState
from .exceptions import JobExecutionError, QueueNotFoundError, UnrecoverableJobError
from .priorities import DEFAULT_PRIORITY, job_priority

logger = get_logger(__name__, component="jobs")

IMMEDIATE_QUEUE = "immediate"
BULK_QUEUE = "bulk"
SCHEDULED_QUEUE = "scheduled"
QUEUE_NAMES = (IMMEDIATE_QUEUE, BULK_QUEUE, SCHEDULED_QUEUE)

SEND_JOB = "send-notification"
BULK_JOB = "send-bulk"
SCHEDULED_JOB = "send-scheduled"

DEFAULT_CLEAN_GRACE = 24 * 60 * 60


class JobScheduler:
    """Wraps the notification gateway in prioritized, retryable queue jobs."""

    def __init__(
        self,
        broker: Broker,
        gateway,
        queues: Optional[QueuesConfig] = None,
        bulk: Optional[BulkConfig] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            broker: Job broker holding the three queues
            gateway: Notification gateway performing each send
            queues: Concurrency, attempts, backoff and retention per queue
            bulk: Batch size and pause between bulk batches
            clock: Returns the current UTC time
            sleep: Pause function used between bulk batches
        """
        self.broker = broker
        self.gateway = gateway
        self.queues = queues or QueuesConfig()
        self.bulk = bulk or BulkConfig()
        self.clock = clock
        self.sleep = sleep

        handlers = {
            IMMEDIATE_QUEUE: self._process_immediate,
            BULK_QUEUE: self._process_bulk,
            SCHEDULED_QUEUE: self._process_scheduled,
        }
        for name, handler in handlers.items():
            settings = self._settings(name)
            broker.register_queue(
                name,
                remove_on_complete=settings.remove_on_complete,
                remove_on_fail=settings.remove_on_fail,
            )
            broker.process(name, settings.concurrency, handler, backoff=settings.backoff_delay)

        broker.on("completed", self._on_completed)
        broker.on("failed", self._on_failed)
        broker.on("stalled", self._on_stalled)
        broker.on("progress", self._on_progress)

    def _settings(self, queue: str) -> QueueSettings:
        if queue not in QUEUE_NAMES:
            raise QueueNotFoundError(queue)
        return getattr(self.queues, queue)

    # -- producing ----------------------------------------------------------

    def get_job_priority(self, notification: Notification) -> int:
        return job_priority(notification.template)

    def enqueue(
        self,
        notification: Notification,
        delay: float = 0.0,
        priority: Optional[int] = None,
        attempts: Optional[int] = None,
    ) -> Job:
        """Queue one notification on the immediate queue."""
        settings = self._settings(IMMEDIATE_QUEUE)
        job = self.broker.enqueue(
            IMMEDIATE_QUEUE,
            SEND_JOB,
            {"notification": notification.model_dump(mode="json")},
            priority=priority if priority is not None else self.get_job_priority(notification),
            delay=delay,
            attempts=attempts or settings.attempts,
            backoff=settings.backoff_delay,
        )
        logger.info(
            f"Notification job {job.id} added to queue",
            extra={
                "event": "jobs.enqueued",
                "job_id": job.id,
                "queue": IMMEDIATE_QUEUE,
                "notification_id": notification.id,
            },
        )
        return job

    def send_bulk(self, notifications: Sequence[Notification]) -> Dict[str, Any]:
        """Validate each notification and queue the valid ones on the immediate queue.

        Does not wait for delivery: the counts describe what was queued.

        Returns:
            Dictionary with total, queued, failed, job_ids and errors (one
            ``{"notification_id", "error"}`` entry per rejected notification)
        """
        job_ids: List[str] = []
        errors: List[Dict[str, Any]] = []
        for notification in notifications:
            try:
                self.gateway.validate(notification)
                job_ids.append(self.enqueue(notification).id)
            except NotificationError as e:
                errors.append({"notification_id": notification.id, "error": str(e)})

        summary = {
            "total": len(notifications),
            "queued": len(job_ids),
            "failed": len(errors),
            "job_ids": job_ids,
            "errors": errors,
        }
        logger.info(
            f"Bulk send queued {summary['queued']} of {summary['total']} notifications",
            extra={"event": "jobs.bulk_send.queued", "queued": summary["queued"], "failed": summary["failed"]},
        )
        return summary

    def enqueue_bulk(
        self,
        notifications: Sequence[Notification],
        batch_size: Optional[int] = None,
        priority: int = DEFAULT_PRIORITY,
        delay: float = 0.0,
    ) -> Job:
        """Queue a list of notifications as one bulk job."""
        settings = self._settings(BULK_QUEUE)
        job = self.broker.enqueue(
            BULK_QUEUE,
            BULK_JOB,
            {
                "notifications": [n.model_dump(mode="json") for n in notifications],
                "batch_size": batch_size or self.bulk.batch_size,
            },
            priority=priority,
            delay=delay,
            attempts=settings.attempts,
            backoff=settings.backoff_delay,
        )
        logger.info(
            f"Bulk notification job {job.id} added to queue with {len(notifications)} notifications",
            extra={"event": "jobs.bulk_enqueued", "job_id": job.id, "count": len(notifications)},
        )
        return job

    def schedule(self, notification: Notification, scheduled_for: datetime) -> Job:
        """Queue one notification to be sent at ``scheduled_for``.

        Raises:
            ValueError: If ``scheduled_for`` is in the past
        """
        scheduled_for = ensure_utc(scheduled_for)
        delay = (scheduled_for - self.clock()).total_seconds()
        if delay < 0:
            raise ValueError("Cannot schedule notification in the past")

        job = self._enqueue_scheduled(notification, scheduled_for, delay)
        logger.info(
            f"Scheduled notification job {job.id} added for {format_timestamp(scheduled_for)}",
            extra={
                "event": "jobs.scheduled",
                "job_id": job.id,
                "notification_id": notification.id,
                "scheduled_for": format_timestamp(scheduled_for),
            },
        )
        return job

    def _enqueue_scheduled(self, notification: Notification, scheduled_for: datetime, delay: float) -> Job:
        settings = self._settings(SCHEDULED_QUEUE)
        return self.broker.enqueue(
            SCHEDULED_QUEUE,
            SCHEDULED_JOB,
            {"notification": notification.model_dump(mode="json")},
            priority=self.get_job_priority(notification),
            delay=delay,
            attempts=settings.attempts,
            backoff=settings.backoff_delay,
            scheduled_for=scheduled_for,
        )

    # -- handlers -----------------------------------------------------------

    def _deliver(self, notification: Notification) -> Dict[str, Any]:
        """Send one notification and translate the outcome for the broker."""
        try:
            result = self.gateway.send(notification)
        except ChannelNotConfiguredError as e:
            # No retry can configure the channel
            raise UnrecoverableJobError(str(e)) from e
        if result.is_invalid:
            raise UnrecoverableJobError(result.error or "Invalid notification")
        if result.status == "failed":
            message = result.error or "Notification failed"
            if not result.retryable:
                raise UnrecoverableJobError(message)
            raise JobExecutionError(message)
        # Sent, or blocked by compliance: both complete the job
        return result.to_dict()

    def _process_immediate(self, job: Job) -> Dict[str, Any]:
        return self._deliver(Notification.model_validate(job.payload["notification"]))

    def _process_bulk(self, job: Job) -> Dict[str, Any]:
        notifications = [Notification.model_validate(n) for n in job.payload["notifications"]]
        batch_size = max(1, int(job.payload.get("batch_size") or self.bulk.batch_size))
        total = len(notifications)
        results: List[Dict[str, Any]] = []

        logger.info(
            f"Processing bulk notification job {job.id} with {total} notifications",
            extra={"event": "jobs.bulk.started", "total": total, "batch_size": batch_size},
        )

        for start in range(0, total, batch_size):
            batch = notifications[start : start + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix=f"bulk-{job.id}") as pool:
                results.extend(pool.map(self._send_isolated, batch))

            job.update_progress(round((start + len(batch)) / total * 100))
            if start + batch_size < total:
                self.sleep(self.bulk.batch_delay)

        if total == 0:
            job.update_progress(100)

        successful = sum(1 for result in results if result.get("success"))
        failed = total - successful
        logger.info(
            f"Bulk notification job {job.id} completed: {successful} successful, {failed} failed",
            extra={"event": "jobs.bulk.completed", "successful": successful, "failed": failed},
        )
        return {"total": total, "successful": successful, "failed": failed, "results": results}

    def _send_isolated(self, notification: Notification) -> Dict[str, Any]:
        """Send one bulk member; any error becomes a failed entry."""
        try:
            return self.gateway.send(notification).to_dict()
        except Exception as e:
            logger.error(
                f"Bulk member {notification.id} failed: {e}",
                exc_info=True,
                extra={"event": "jobs.bulk.member_failed", "notification_id": notification.id},
            )
            return {
                "success": False,
                "status": "failed",
                "error": str(e),
                "notification_id": notification.id,
            }

    def _process_scheduled(self, job: Job) -> Dict[str, Any]:
        notification = Notification.model_validate(job.payload["notification"])
        now = self.clock()
        if job.scheduled_for is not None and now < job.scheduled_for:
            delay = (job.scheduled_for - now).total_seconds()
            self._enqueue_scheduled(notification, job.scheduled_for, delay)
            logger.info(
                f"Scheduled job {job.id} not due yet, rescheduled in {delay:g}s",
                extra={"event": "jobs.scheduled.rescheduled", "delay": delay},
            )
            return {"rescheduled": True, "delay": delay}
        return self._deliver(notification)

    # -- events -------------------------------------------------------------

    def _on_completed(self, job: Job, result: Any) -> None:
        logger.debug(
            f"Job {job.id} in queue {job.queue} completed",
            extra={"event": "jobs.completed", "job_id": job.id, "queue": job.queue},
        )

    def _on_failed(self, job: Job, error: Any) -> None:
        logger.warning(
            f"Job {job.id} in queue {job.queue} exhausted its attempts: {error}",
            extra={
                "event": "jobs.failed",
                "job_id": job.id,
                "queue": job.queue,
                "attempts_made": job.attempts_made,
            },
        )

    def _on_stalled(self, job: Job, _: Any) -> None:
        logger.warning(
            f"Job {job.id} in queue {job.queue} stalled",
            extra={"event": "jobs.stalled", "job_id": job.id, "queue": job.queue},
        )

    def _on_progress(self, job: Job, progress: Any) -> None:
        logger.debug(
            f"Job {job.id} in queue {job.queue} progress: {progress}%",
            extra={"event": "jobs.progress", "job_id": job.id, "progress": progress},
        )

    # -- operations ---------------------------------------------------------

    def retry_failed_jobs(self, queue: str, limit: int = 10) -> int:
        """Put up to ``limit`` failed jobs of ``queue`` back to waiting."""
        self._settings(queue)
        failed = self.broker.get_jobs(queue, JobState.FAILED)[:limit]
        retried = sum(1 for job in failed if self.broker.retry(job.id))
        logger.info(
            f"Retried {retried} failed jobs in queue {queue}",
            extra={"event": "jobs.retried", "queue": queue, "count": retried},
        )
        return retried

    def clean_queue(self, queue: str, grace: float = DEFAULT_CLEAN_GRACE) -> int:
        """Remove completed and failed jobs older than ``grace`` seconds."""
        self._settings(queue)
        removed = self.broker.clean(queue, grace, JobState.COMPLETED)
        removed += self.broker.clean(queue, grace, JobState.FAILED)
        logger.info(
            f"Cleaned queue {queue} with grace period {grace:g}s",
            extra={"event": "jobs.cleaned", "queue": queue, "removed": removed},
        )
        return removed

    def pause(self, queue: str) -> None:
        self._settings(queue)
        self.broker.pause(queue)
        logger.info(f"Queue {queue} paused", extra={"event": "jobs.paused", "queue": queue})

    def resume(self, queue: str) -> None:
        self._settings(queue)
        self.broker.resume(queue)
        logger.info(f"Queue {queue} resumed", extra={"event": "jobs.resumed", "queue": queue})

    def get_stats(self, queue: Optional[str] = None) -> Dict[str, Any]:
        """Waiting, active, completed, failed, delayed and total per queue.

        Returns the counts of ``queue`` alone when given, else a dict keyed
        by queue name.
        """
        if queue is not None:
            self._settings(queue)
            return self.broker.counts(queue)
        return {name: self.broker.counts(name) for name in QUEUE_NAMES}

    def run_pending(self, queue: Optional[str] = None) -> int:
        """Drain due jobs synchronously (one queue, or all three)."""
        names = [queue] if queue else list(QUEUE_NAMES)
        return sum(self.broker.run_pending(name) for name in names)

    def run_worker(self, queue: Optional[str] = None) -> None:
        """Consume one queue, or all three, in a Celery worker (blocks)."""
        names = [queue] if queue else list(QUEUE_NAMES)
        for name in names:
            self._settings(name)
        self.broker.run_worker(names)

    def start(self) -> None:
        self.broker.start()
        logger.info("Job scheduler started", extra={"event": "jobs.started"})

    def close(self, wait: bool = True) -> None:
        self.broker.close(wait=wait)
        logger.info("All queues closed successfully", extra={"event": "jobs.closed"})
