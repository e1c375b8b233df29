"""Job broker: durable job rows delivered through Celery on Redis.

Every job is a row in ``queue_jobs`` holding its payload, priority, attempt
budget and state. Enqueueing stores the row, then publishes a Celery message
carrying only the job id, with the job's priority and, for delayed jobs, a
countdown. Whichever process receives the message claims the row with a
conditional update, so a duplicate or early message is a no-op.

Failed attempts are retried with exponential backoff
(``backoff * 2 ** (attempt - 1)`` seconds, capped at :data:`MAX_BACKOFF`):
the row becomes delayed and the Celery task's ``autoretry_for`` publishes the
next wakeup. Because the rows outlive the broker process, an APScheduler
sweep started by :meth:`Broker.start` promotes due delayed jobs, re-publishes
waiting jobs whose message was lost and flags stalled jobs.
:meth:`Broker.run_pending` drains a queue in the calling thread for tests and
one-shot runs.
"""

import threading
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from celery import Celery
from celery.utils.time import get_exponential_backoff_interval
from kombu.exceptions import OperationalError

from ..domain.jobs import Job, JobState
from ..logging import get_logger
from ..logging.context import log_context
from ..persistence import Database, JobRepository
from ..utils.timestamps import Clock, utc_now
from .celery_app import NotificationTask
from .exceptions import (
    BrokerClosedError,
    JobExecutionError,
    QueueNotFoundError,
    UnrecoverableJobError,
)

logger = get_logger(__name__, component="broker")

JobHandler = Callable[[Job], Any]
JobListener = Callable[[Job, Any], None]

EVENTS = ("completed", "failed", "stalled", "progress")

#: Longest wait between two attempts, in seconds
MAX_BACKOFF = 600

# Outcomes of one delivery of a job id
COMPLETED = "completed"
RETRYING = "retrying"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class _QueueState:
    name: str
    remove_on_complete: int
    remove_on_fail: int
    handler: Optional[JobHandler] = None
    concurrency: int = 1
    task: Any = None


class Broker:
    """Job queues stored in the database and woken through Celery."""

    def __init__(
        self,
        app: Celery,
        database: Database,
        clock: Clock = utc_now,
        poll_interval: float = 0.5,
        stall_timeout: float = 300.0,
    ):
        """
        Args:
            app: Celery application publishing and consuming job wakeups
            database: Database holding the job rows
            clock: Returns the current UTC time (drives delays and backoff)
            poll_interval: Seconds between recovery sweeps
            stall_timeout: Seconds a job may stay active before ``stalled``
                fires, and a waiting job may go unclaimed before it is
                published again
        """
        self.app = app
        self.database = database
        self.clock = clock
        self.poll_interval = poll_interval
        self.stall_timeout = stall_timeout

        self._queues: Dict[str, _QueueState] = {}
        self._listeners: Dict[str, List[JobListener]] = {event: [] for event in EVENTS}
        self._lock = threading.RLock()
        self._closing = threading.Event()
        self._started = False
        self._scheduler: Optional[BackgroundScheduler] = None

    # -- registration -----------------------------------------------------

    def register_queue(self, queue: str, remove_on_complete: int = 100, remove_on_fail: int = 50) -> None:
        """Declare a queue and how many finished jobs it keeps."""
        with self._lock:
            if queue not in self._queues:
                self._queues[queue] = _QueueState(
                    name=queue,
                    remove_on_complete=remove_on_complete,
                    remove_on_fail=remove_on_fail,
                )

    def process(self, queue: str, concurrency: int, handler: JobHandler, backoff: int = 1) -> None:
        """Attach the handler run for every job of ``queue``.

        Registers the queue's Celery task. ``concurrency`` is the worker
        concurrency used when a worker consumes this queue; ``backoff`` is the
        base of the task's retry countdown.
        """
        with self._lock:
            state = self._queue(queue)
            state.handler = handler
            state.concurrency = concurrency
            state.task = self._register_task(queue, backoff)

    def _register_task(self, queue: str, backoff: int):
        broker = self

        def run_job(task, job_id: str) -> Any:
            outcome, value = broker.execute(queue, job_id)
            if outcome == RETRYING:
                raise JobExecutionError(value)
            if outcome == FAILED:
                raise UnrecoverableJobError(value)
            return value

        return self.app.task(
            bind=True,
            shared=False,
            lazy=False,
            name=f"hoa_notify.jobs.{queue}",
            base=NotificationTask,
            autoretry_for=(JobExecutionError,),
            retry_backoff=max(1, int(backoff)),
            retry_backoff_max=MAX_BACKOFF,
            retry_jitter=False,
            max_retries=None,
            acks_late=True,
            queue=queue,
        )(run_job)

    def on(self, event: str, listener: JobListener) -> None:
        """Subscribe to ``completed``, ``failed``, ``stalled`` or ``progress``.

        Listeners are called as ``listener(job, value)`` where value is the
        result, the error, None or the progress percentage.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown job event: {event}")
        self._listeners[event].append(listener)

    # -- producing ----------------------------------------------------------

    def enqueue(
        self,
        queue: str,
        name: str,
        payload: Any,
        priority: int = 5,
        delay: float = 0.0,
        attempts: int = 3,
        backoff: int = 1,
        scheduled_for=None,
    ) -> Job:
        """Store a job, waiting now or delayed by ``delay`` seconds, and publish it.

        ``payload`` must be JSON-serializable.

        Returns:
            The job as stored

        Raises:
            QueueNotFoundError: If ``queue`` is not registered
            BrokerClosedError: If the broker is closing
        """
        if self._closing.is_set():
            raise BrokerClosedError("Broker is closed")
        self._queue(queue)

        now = self.clock()
        delayed = delay > 0
        with self.database.session() as session:
            job = JobRepository(session).add(
                Job(
                    id="",
                    queue=queue,
                    name=name,
                    payload=payload,
                    priority=priority,
                    attempts=max(1, attempts),
                    backoff=max(1, int(backoff)),
                    state=JobState.DELAYED if delayed else JobState.WAITING,
                    scheduled_for=scheduled_for,
                    created_at=now,
                    run_at=now + timedelta(seconds=delay) if delayed else None,
                )
            )

        logger.debug(
            f"Job {job.id} added to {queue}",
            extra={
                "event": "queue.job.added",
                "job_id": job.id,
                "queue": queue,
                "job_name": name,
                "priority": priority,
                "delay": delay,
            },
        )
        self._dispatch(job, countdown=delay if delayed else None)
        return self._bind(job)

    def _dispatch(self, job: Job, countdown: Optional[float] = None) -> bool:
        """Publish a wakeup for ``job``; a failed publish is left to the sweep."""
        state = self._queues.get(job.queue)
        if state is None or state.task is None:
            return False
        task = state.task
        try:
            task.apply_async(
                args=[job.id],
                queue=job.queue,
                priority=min(max(job.priority, 0), 9),
                countdown=countdown,
            )
        except OperationalError as e:
            logger.error(
                f"Could not publish job {job.id} to {job.queue}: {e}",
                extra={"event": "queue.dispatch.failed", "job_id": job.id, "queue": job.queue},
            )
            return False
        with self.database.session() as session:
            JobRepository(session).mark_dispatched(job.id, self.clock())
        return True

    def _bind(self, job: Job) -> Job:
        job._broker = self
        return job

    # -- consuming ----------------------------------------------------------

    def execute(self, queue: str, job_id: str) -> Tuple[str, Any]:
        """Claim and run one job by id, as a Celery task delivery does.

        Returns:
            (outcome, value): completed with the result, retrying or failed
            with the error message, or skipped when the job is not due, is
            already taken or its queue is paused
        """
        state = self._queue(queue)
        if state.handler is None or self.is_paused(queue):
            return SKIPPED, None
        with self.database.session() as session:
            job = JobRepository(session).claim(job_id, self.clock())
        if job is None:
            logger.debug(
                f"Job {job_id} in queue {queue} not claimable, skipped",
                extra={"event": "queue.job.skipped", "job_id": job_id, "queue": queue},
            )
            return SKIPPED, None
        return self._execute(self._bind(job), state.handler)

    def _claim_next(self, queue: str) -> Optional[Job]:
        now = self.clock()
        with self.database.session() as session:
            repo = JobRepository(session)
            for job_id in repo.due_ids(queue, now, limit=10):
                job = repo.claim(job_id, now)
                if job is not None:
                    return self._bind(job)
        return None

    def _execute(self, job: Job, handler: JobHandler) -> Tuple[str, Any]:
        with log_context(job_id=job.id, queue=job.queue):
            logger.info(
                f"Processing job {job.id} in queue {job.queue}",
                extra={"event": "queue.job.started", "attempt": job.attempts_made},
            )
            try:
                result = handler(job)
            except UnrecoverableJobError as e:
                return self._fail(job, e, retry=False)
            except Exception as e:
                return self._fail(job, e, retry=True)
            return self._complete(job, result)

    def _complete(self, job: Job, result: Any) -> Tuple[str, Any]:
        job.state = JobState.COMPLETED
        job.result = result
        job.finished_at = self.clock()
        self._save_finished(job)
        logger.info(
            f"Job {job.id} in queue {job.queue} completed",
            extra={"event": "queue.job.completed"},
        )
        self._emit("completed", job, result)
        return COMPLETED, result

    def _fail(self, job: Job, error: Exception, retry: bool) -> Tuple[str, Any]:
        job.failed_reason = str(error)
        if retry and job.attempts_made < job.attempts:
            delay = get_exponential_backoff_interval(
                factor=job.backoff,
                retries=job.attempts_made - 1,
                maximum=MAX_BACKOFF,
            )
            job.state = JobState.DELAYED
            job.run_at = self.clock() + timedelta(seconds=delay)
            with self.database.session() as session:
                JobRepository(session).save(job)
            logger.warning(
                f"Job {job.id} in queue {job.queue} failed, retrying in {delay:g}s: {error}",
                extra={
                    "event": "queue.job.retrying",
                    "attempt": job.attempts_made,
                    "max_attempts": job.attempts,
                    "delay": delay,
                },
            )
            return RETRYING, job.failed_reason

        job.state = JobState.FAILED
        job.finished_at = self.clock()
        self._save_finished(job)
        logger.error(
            f"Job {job.id} in queue {job.queue} failed: {error}",
            extra={
                "event": "queue.job.failed",
                "attempt": job.attempts_made,
                "max_attempts": job.attempts,
                "error_type": type(error).__name__,
            },
        )
        self._emit("failed", job, error)
        return FAILED, job.failed_reason

    def _save_finished(self, job: Job) -> None:
        """Store a finished job and drop the oldest beyond the queue's retention."""
        state = self._queues[job.queue]
        keep = state.remove_on_complete if job.state == JobState.COMPLETED else state.remove_on_fail
        with self.database.session() as session:
            repo = JobRepository(session)
            repo.save(job)
            repo.trim(job.queue, job.state, keep)

    def report_progress(self, job: Job, progress: int) -> None:
        with self.database.session() as session:
            JobRepository(session).set_progress(job.id, progress)
        self._emit("progress", job, progress)

    def _emit(self, event: str, job: Job, value: Any) -> None:
        for listener in self._listeners[event]:
            try:
                listener(job, value)
            except Exception as e:
                logger.error(
                    f"Job {event} listener failed: {e}",
                    exc_info=True,
                    extra={"event": "queue.listener.error", "job_id": job.id},
                )

    def run_pending(self, queue: str, max_jobs: Optional[int] = None) -> int:
        """Run due jobs of ``queue`` in the calling thread until none is due.

        Jobs that back off or reschedule themselves become delayed and are not
        re-run until a later call finds them due.

        Returns:
            Number of jobs executed
        """
        state = self._queue(queue)
        if state.handler is None:
            return 0
        executed = 0
        while max_jobs is None or executed < max_jobs:
            if self.is_paused(queue):
                break
            job = self._claim_next(queue)
            if job is None:
                break
            self._execute(job, state.handler)
            executed += 1
        return executed

    def run_worker(self, queues: Optional[List[str]] = None, loglevel: str = "INFO") -> None:
        """Consume ``queues`` (default: all) in a Celery worker until it is stopped.

        Concurrency is the sum of the consumed queues' concurrency; the thread
        pool keeps every task in this process, next to the database.
        """
        names = list(queues or self._queues)
        concurrency = sum(self._queue(name).concurrency for name in names)
        logger.info(
            f"Starting worker for {', '.join(names)} with concurrency {concurrency}",
            extra={"event": "broker.worker.starting", "queues": names, "concurrency": concurrency},
        )
        self.app.worker_main(
            argv=[
                "worker",
                f"--queues={','.join(names)}",
                f"--concurrency={concurrency}",
                "--pool=threads",
                f"--loglevel={loglevel}",
            ]
        )

    # -- maintenance --------------------------------------------------------

    def promote_due_jobs(self) -> int:
        """Move delayed jobs whose time has come back to waiting and publish them."""
        with self.database.session() as session:
            promoted = JobRepository(session).promote_due(self.clock())
        for job in promoted:
            self._dispatch(job)
        return len(promoted)

    def requeue_lost_jobs(self) -> int:
        """Publish again waiting jobs left unclaimed for longer than the stall timeout."""
        cutoff = self.clock() - timedelta(seconds=self.stall_timeout)
        with self.database.session() as session:
            stale = JobRepository(session).stale_waiting(cutoff)
        requeued = 0
        for job in stale:
            if job.queue in self._queues and not self.is_paused(job.queue):
                requeued += int(self._dispatch(job))
        if requeued:
            logger.warning(
                f"Published {requeued} unclaimed jobs again",
                extra={"event": "queue.jobs.requeued", "count": requeued},
            )
        return requeued

    def detect_stalled(self) -> int:
        """Emit ``stalled`` once for every job active longer than the stall timeout."""
        threshold = self.clock() - timedelta(seconds=self.stall_timeout)
        with self.database.session() as session:
            stalled = JobRepository(session).mark_stalled(threshold)

        for job in stalled:
            logger.warning(
                f"Job {job.id} in queue {job.queue} stalled",
                extra={"event": "queue.job.stalled", "job_id": job.id, "queue": job.queue},
            )
            self._emit("stalled", self._bind(job), None)
        return len(stalled)

    def _sweep(self) -> None:
        self.promote_due_jobs()
        self.requeue_lost_jobs()
        self.detect_stalled()

    # -- introspection and control ------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        """Current state of a job, or None once it has been removed."""
        with self.database.session() as session:
            job = JobRepository(session).get(job_id)
        return self._bind(job) if job else None

    def get_jobs(self, queue: str, state: JobState, limit: Optional[int] = None) -> List[Job]:
        """Jobs of ``queue`` in ``state``, in enqueue order."""
        self._queue(queue)
        with self.database.session() as session:
            jobs = JobRepository(session).list(queue, JobState(state), limit=limit)
        return [self._bind(job) for job in jobs]

    def counts(self, queue: str) -> Dict[str, int]:
        """Jobs per state plus ``total``."""
        self._queue(queue)
        with self.database.session() as session:
            counts = JobRepository(session).counts(queue)
        counts["total"] = sum(counts.values())
        return counts

    def retry(self, job_id: str) -> bool:
        """Put a failed job back to waiting with a fresh attempt budget."""
        with self.database.session() as session:
            repo = JobRepository(session)
            if not repo.reset_failed(job_id):
                return False
            job = repo.get(job_id)
        self._dispatch(job)
        return True

    def clean(self, queue: str, grace: float, state: JobState = JobState.COMPLETED) -> int:
        """Remove ``state`` jobs of ``queue`` that finished more than ``grace`` seconds ago."""
        self._queue(queue)
        cutoff = self.clock() - timedelta(seconds=grace)
        with self.database.session() as session:
            return JobRepository(session).delete_finished_before(queue, JobState(state), cutoff)

    def pause(self, queue: str) -> None:
        """Stop claiming jobs of ``queue`` in every process and ask workers to stop consuming it."""
        self._queue(queue)
        with self.database.session() as session:
            JobRepository(session).set_paused(queue, True)
        self._broadcast("cancel_consumer", queue)

    def resume(self, queue: str) -> None:
        """Resume ``queue`` and publish its due jobs again."""
        self._queue(queue)
        with self.database.session() as session:
            repo = JobRepository(session)
            repo.set_paused(queue, False)
            due = [repo.get(job_id) for job_id in repo.due_ids(queue, self.clock(), limit=None)]
        self._broadcast("add_consumer", queue)
        for job in due:
            if job is not None:
                self._dispatch(job)

    def _broadcast(self, command: str, queue: str) -> None:
        try:
            getattr(self.app.control, command)(queue)
        except OperationalError as e:
            logger.warning(
                f"Could not broadcast {command} for queue {queue}: {e}",
                extra={"event": "broker.broadcast.failed", "queue": queue},
            )

    def is_paused(self, queue: str) -> bool:
        self._queue(queue)
        with self.database.session() as session:
            return JobRepository(session).is_paused(queue)

    def queues(self) -> List[str]:
        with self._lock:
            return list(self._queues)

    def _queue(self, queue: str) -> _QueueState:
        state = self._queues.get(queue)
        if state is None:
            raise QueueNotFoundError(queue)
        return state

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Start the recovery sweep."""
        with self._lock:
            if self._started:
                return
            self._started = True

        self._scheduler = BackgroundScheduler(
            job_defaults={"max_instances": 1, "coalesce": True},
            timezone=timezone.utc,
        )
        self._scheduler.add_job(
            func=self._sweep,
            trigger=IntervalTrigger(seconds=self.poll_interval, timezone=timezone.utc),
            id="broker-sweep",
            name="Promote due jobs, publish lost ones and detect stalls",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Broker started",
            extra={"event": "broker.started", "queues": list(self._queues)},
        )

    def close(self, wait: bool = True) -> None:
        """Stop accepting jobs, stop the sweep and release broker connections."""
        logger.info("Closing broker", extra={"event": "broker.stopping", "wait_for_jobs": wait})
        self._closing.set()

        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)

        self.app.close()
        logger.info("Broker closed", extra={"event": "broker.stopped"})
