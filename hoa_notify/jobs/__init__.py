"""Prioritized, retryable job queues for notification delivery.

Example usage:
    >>> from hoa_notify.jobs import Broker, JobScheduler, create_celery_app
    >>> broker = Broker(create_celery_app("redis://localhost:6379/0"), database)
    >>> jobs = JobScheduler(broker, gateway)
    >>> jobs.enqueue(notification)
    >>> jobs.run_worker()
"""

from .broker import EVENTS, Broker, Job, JobState
from .celery_app import create_celery_app
from .exceptions import (
    BrokerClosedError,
    JobError,
    JobExecutionError,
    QueueNotFoundError,
    UnrecoverableJobError,
)
from .priorities import DEFAULT_PRIORITY, PRIORITY_MAP, job_priority
from .scheduler import (
    BULK_QUEUE,
    IMMEDIATE_QUEUE,
    QUEUE_NAMES,
    SCHEDULED_QUEUE,
    JobScheduler,
)

__all__ = [
    "Broker",
    "Job",
    "JobState",
    "EVENTS",
    "create_celery_app",
    "JobScheduler",
    # Queues
    "IMMEDIATE_QUEUE",
    "BULK_QUEUE",
    "SCHEDULED_QUEUE",
    "QUEUE_NAMES",
    # Priorities
    "PRIORITY_MAP",
    "DEFAULT_PRIORITY",
    "job_priority",
    # Exceptions
    "JobError",
    "JobExecutionError",
    "UnrecoverableJobError",
    "QueueNotFoundError",
    "BrokerClosedError",
]
