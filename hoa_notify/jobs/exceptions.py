"""Custom exceptions for the job broker and scheduler."""


class JobError(Exception):
    """Base exception for job queue errors."""

    pass


class QueueNotFoundError(JobError):
    """The named queue was never registered with the broker."""

    def __init__(self, queue: str) -> None:
        super().__init__(f"Queue {queue} not found")
        self.queue = queue


class BrokerClosedError(JobError):
    """The broker has been closed and accepts no more jobs."""

    pass


class JobExecutionError(JobError):
    """A job handler failed in a way a later attempt may fix."""

    pass


class UnrecoverableJobError(JobError):
    """A job handler failed permanently; the broker must not retry it."""

    pass
