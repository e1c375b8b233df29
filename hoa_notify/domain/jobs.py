"""Queue job records.

A job row in the ``queue_jobs`` table is the durable state of one unit of
queued work; Celery messages only carry the job id. :class:`Job` objects are
snapshots of a row: re-read them through the broker to observe later changes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class JobState(str, Enum):
    """Lifecycle states of a job."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


#: States a job can be claimed from
CLAIMABLE_STATES = (JobState.WAITING.value, JobState.DELAYED.value)
#: States that end a job's life
FINISHED_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


@dataclass
class Job:
    """One unit of work on a queue."""

    id: str
    queue: str
    name: str
    payload: Any
    priority: int = 5
    attempts: int = 3
    backoff: int = 1
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    progress: int = 0
    result: Any = None
    failed_reason: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    created_at: Optional[datetime] = None
    run_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stalled: bool = False
    _broker: Any = field(default=None, repr=False, compare=False)

    def update_progress(self, progress: int) -> None:
        """Report progress (0-100); stored on the row and emitted as ``progress``."""
        self.progress = max(0, min(100, int(progress)))
        if self._broker is not None:
            self._broker.report_progress(self, self.progress)

    def summary(self) -> Dict[str, Any]:
        """Serializable view for CLIs and logs."""
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "state": self.state.value,
            "priority": self.priority,
            "attempts_made": self.attempts_made,
            "attempts": self.attempts,
            "progress": self.progress,
            "failed_reason": self.failed_reason,
        }
