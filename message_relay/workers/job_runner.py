"""In-process execution of jobs held by ``InMemoryJobScheduler``.

A background task polls the scheduler for due jobs and runs each one through
the handler registered for its job type. A job that raises a retryable error
is rescheduled with exponential backoff until it has used ``max_attempts``;
non-retryable errors and exhausted jobs are discarded.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from message_relay.utils import utcnow
from message_relay.workers.jobs import (
    JOB_COMPLETED,
    JOB_DISCARDED,
    JOB_EXECUTING,
    JOB_RETRYABLE,
    InMemoryJobScheduler,
    Job,
)

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


def default_backoff(attempt: int) -> float:
    """Seconds to wait before ``attempt``: 2, 4, 8, ... capped at five minutes."""
    return float(min(2 ** (attempt - 1), 300))


class JobRunner:
    def __init__(
        self,
        scheduler: InMemoryJobScheduler,
        handlers: Mapping[str, JobHandler],
        poll_interval: float = 1.0,
        backoff: Callable[[int], float] = default_backoff,
    ):
        self.scheduler = scheduler
        self.handlers: Dict[str, JobHandler] = dict(handlers)
        self.poll_interval = poll_interval
        self.backoff = backoff
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the polling task; calling it again while running does nothing."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Job runner started (poll interval %.2fs)", self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Job runner stopped")

    async def run_due_jobs(self, now: Optional[datetime] = None) -> int:
        """Run every job that is due at ``now`` once.

        Returns:
            Number of jobs executed
        """
        due = self.scheduler.due_jobs(now)
        for job in due:
            await self.execute(job)
        return len(due)

    async def execute(self, job: Job) -> None:
        handler = self.handlers.get(job.job_type)
        if handler is None:
            job.state = JOB_DISCARDED
            job.errors.append(f"No handler for job type {job.job_type}")
            logger.error("Discarding job %s: no handler for %s", job.id, job.job_type)
            return

        job.state = JOB_EXECUTING
        try:
            await handler(job)
        except Exception as e:
            self._record_failure(job, e)
            return

        job.state = JOB_COMPLETED
        job.completed_at = utcnow()

    def _record_failure(self, job: Job, error: Exception) -> None:
        job.errors.append(str(error) or error.__class__.__name__)
        retryable = getattr(error, "retryable", True)

        if retryable and job.attempt < job.max_attempts:
            job.attempt += 1
            job.state = JOB_RETRYABLE
            job.scheduled_at = utcnow() + timedelta(seconds=self.backoff(job.attempt))
            logger.warning(
                "Job %s failed (%s); retry %d/%d at %s",
                job.id,
                error,
                job.attempt,
                job.max_attempts,
                job.scheduled_at.isoformat(),
            )
            return

        job.state = JOB_DISCARDED
        job.completed_at = utcnow()
        logger.error(
            "Discarding job %s after attempt %d/%d: %s",
            job.id,
            job.attempt,
            job.max_attempts,
            error,
        )

    async def _run(self) -> None:
        while True:
            await self.run_due_jobs()
            await asyncio.sleep(self.poll_interval)
