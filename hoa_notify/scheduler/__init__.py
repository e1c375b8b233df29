"""Periodic maintenance of the delivery ledger and job queues."""

from .service import CLEAN_JOB, PRUNE_JOB, REDELIVER_JOB, MaintenanceScheduler

__all__ = [
    "MaintenanceScheduler",
    "REDELIVER_JOB",
    "CLEAN_JOB",
    "PRUNE_JOB",
]
