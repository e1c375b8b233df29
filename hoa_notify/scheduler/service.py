"""Periodic maintenance: redeliver failed sends, clean queues, prune the ledger."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.models import LedgerConfig, MaintenanceConfig
from ..domain.models import Notification
from ..jobs.scheduler import QUEUE_NAMES, JobScheduler
from ..ledger.tracker import DeliveryLedger
from ..logging import get_logger

logger = get_logger(__name__, component="scheduler")

REDELIVER_JOB = "redeliver_failed"
CLEAN_JOB = "clean_queues"
PRUNE_JOB = "prune_ledger"


class MaintenanceScheduler:
    """
    Wraps APScheduler to run maintenance jobs at configured intervals.

    Uses BackgroundScheduler so the main thread stays free to handle signals
    and coordinate shutdown.
    """

    def __init__(
        self,
        ledger: DeliveryLedger,
        jobs: JobScheduler,
        maintenance: Optional[MaintenanceConfig] = None,
        ledger_config: Optional[LedgerConfig] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            ledger: Delivery ledger holding failed candidates and old records
            jobs: Job scheduler that redelivered notifications are queued on
            maintenance: Intervals, queue grace and redelivery batch size
            ledger_config: Retention of delivery records
            shutdown_event: Optional event set on shutdown for coordination
        """
        self.ledger = ledger
        self.jobs = jobs
        self.maintenance = maintenance or MaintenanceConfig()
        self.ledger_config = ledger_config or LedgerConfig()
        self.shutdown_event = shutdown_event

        self._tasks: Dict[str, Callable[[], int]] = {
            REDELIVER_JOB: self.redeliver_failed,
            CLEAN_JOB: self.clean_queues,
            PRUNE_JOB: self.prune_ledger,
        }

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # No overlapping runs
                "coalesce": True,  # A delayed run executes once
            },
            timezone=timezone.utc,
        )

    def redeliver_failed(self) -> int:
        """Mark failed candidates for retry and queue them again.

        The original template and caller data are read from the record's
        metadata; records without them cannot be rebuilt and are skipped.

        Returns:
            Number of notifications queued
        """
        queued = 0
        for record in self.ledger.get_failed_candidates(limit=self.maintenance.redeliver_limit):
            data = record.metadata.get("data")
            if not record.template or data is None:
                logger.warning(
                    f"Delivery {record.id} cannot be redelivered: template or data missing",
                    extra={"event": "maintenance.redeliver.skipped", "delivery_id": record.id},
                )
                continue

            marked = self.ledger.mark_for_retry(record.id)
            if marked is None:
                continue

            notification = Notification(
                id=record.notification_id,
                type=record.type,
                recipient=record.recipient,
                template=record.template,
                data=data,
                user_id=record.user_id,
                metadata={"retry_count": marked.retry_count, "retry_of": record.id},
            )
            self.jobs.enqueue(notification)
            queued += 1

        logger.info(
            f"Queued {queued} failed deliveries for redelivery",
            extra={"event": "maintenance.redeliver.completed", "queued": queued},
        )
        return queued

    def clean_queues(self) -> int:
        """Purge finished jobs older than the configured grace from every queue."""
        grace = self.maintenance.queue_grace_seconds
        return sum(self.jobs.clean_queue(queue, grace) for queue in QUEUE_NAMES)

    def prune_ledger(self) -> int:
        """Delete delivery records older than the retention period."""
        return self.ledger.cleanup(days_to_keep=self.ledger_config.retention_days)

    def start(self) -> None:
        """Register the maintenance jobs and start the scheduler thread."""
        intervals = {
            REDELIVER_JOB: self.maintenance.redeliver_interval_seconds,
            CLEAN_JOB: self.maintenance.clean_interval_seconds,
            PRUNE_JOB: self.maintenance.prune_interval_seconds,
        }
        for job_id, seconds in intervals.items():
            self.scheduler.add_job(
                func=self._tasks[job_id],
                trigger=IntervalTrigger(seconds=seconds, timezone=timezone.utc),
                id=job_id,
                name=job_id.replace("_", " ").capitalize(),
                replace_existing=True,
                misfire_grace_time=seconds,
            )

        self.scheduler.start()

        logger.info(
            "Maintenance scheduler started",
            extra={"event": "scheduler.started", "intervals": intervals},
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down maintenance scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Maintenance scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self, job_id: str) -> int:
        """Run one maintenance job synchronously in the current thread.

        Raises:
            KeyError: If ``job_id`` is not a maintenance job
        """
        if job_id not in self._tasks:
            raise KeyError(f"Unknown maintenance job: {job_id}")
        logger.info(
            f"Triggering maintenance job {job_id}",
            extra={"event": "scheduler.trigger_now", "job": job_id},
        )
        return self._tasks[job_id]()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str) -> Optional[datetime]:
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
