"""Celery application carrying queue wakeups over Redis.

Each queue job is a row in ``queue_jobs``; a Celery message only carries the
job id. Workers consume the immediate, bulk and scheduled queues:

    hoa-notify worker                     # all queues
    hoa-notify worker --queue immediate   # one queue, its own concurrency
"""

from typing import Optional

from celery import Celery, Task
from celery.signals import worker_ready, worker_shutdown

from ..logging import get_logger
from ..persistence import redact_url

logger = get_logger(__name__, component="celery")

DEFAULT_BROKER_URL = "redis://localhost:6379/0"

# Redis delivers lower numbers first; one step per job priority
PRIORITY_STEPS = list(range(10))


def create_celery_app(
    broker_url: Optional[str] = None,
    always_eager: bool = False,
    name: str = "hoa_notify",
) -> Celery:
    """
    Create and configure a Celery application.

    Args:
        broker_url: Redis URL ("memory://" for tests)
        always_eager: Run tasks in the calling process instead of a worker
        name: Application name

    Returns:
        Configured Celery application
    """
    broker_url = broker_url or DEFAULT_BROKER_URL
    app = Celery(name, broker=broker_url, set_as_current=False)

    app.conf.update(
        # Serialization
        task_serializer="json",
        accept_content=["json"],

        # Job state lives in the database
        task_ignore_result=True,

        # Task acknowledgment
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        # One message at a time so priorities hold
        worker_prefetch_multiplier=1,

        # Priorities
        task_default_priority=5,
        task_queue_max_priority=10,
        broker_transport_options={
            "priority_steps": PRIORITY_STEPS,
            "queue_order_strategy": "priority",
            "sep": ":",
        },

        # Eager mode for tests and one-shot runs
        task_always_eager=always_eager,

        # Timezone
        timezone="UTC",
        enable_utc=True,
    )

    logger.info(
        "Celery app configured",
        extra={
            "event": "celery.configured",
            "broker_url": redact_url(broker_url),
            "always_eager": always_eager,
        },
    )
    return app


class NotificationTask(Task):
    """Base task for queue wakeups: logs failures, retries and successes."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            extra={
                "event": "celery.task.failed",
                "task_id": task_id,
                "task_name": self.name,
                "job_id": args[0] if args else None,
                "error_type": type(exc).__name__,
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task {self.name}[{task_id}] retrying: {exc}",
            extra={
                "event": "celery.task.retrying",
                "task_id": task_id,
                "task_name": self.name,
                "job_id": args[0] if args else None,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.debug(
            f"Task {self.name}[{task_id}] succeeded",
            extra={"event": "celery.task.succeeded", "task_id": task_id, "task_name": self.name},
        )
        super().on_success(retval, task_id, args, kwargs)


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    logger.info(f"Celery worker ready: {sender}", extra={"event": "celery.worker.ready"})


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    logger.info(
        f"Celery worker shutting down: {sender}", extra={"event": "celery.worker.stopping"}
    )
