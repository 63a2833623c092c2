"""Job scheduler interface consumed by the delivery worker.

The scheduler itself (durable storage, due-job dispatch, retry with backoff)
is an external collaborator. ``InMemoryJobScheduler`` keeps jobs in process
memory for local development and tests; ``JobRunner`` executes its due jobs.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from message_relay.errors import ValidationFailed
from message_relay.utils import ensure_utc, utcnow

JOB_AVAILABLE = "available"
JOB_SCHEDULED = "scheduled"
JOB_EXECUTING = "executing"
JOB_RETRYABLE = "retryable"
JOB_COMPLETED = "completed"
JOB_DISCARDED = "discarded"
JOB_CANCELLED = "cancelled"
CANCELLABLE_STATES = (JOB_AVAILABLE, JOB_SCHEDULED)
RUNNABLE_STATES = (JOB_AVAILABLE, JOB_SCHEDULED, JOB_RETRYABLE)


@dataclass
class EnqueueOptions:
    queue: Optional[str] = None
    delay: Optional[Union[int, float, timedelta]] = None
    scheduled_at: Optional[datetime] = None
    max_attempts: Optional[int] = None

    def resolve_scheduled_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Turn ``delay``/``scheduled_at`` into an absolute time (None means now)."""
        if self.delay is not None and self.scheduled_at is not None:
            raise ValidationFailed.single("scheduled_at", "cannot be combined with delay")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValidationFailed.single("max_attempts", "must be greater than 0")
        if self.scheduled_at is not None:
            return ensure_utc(self.scheduled_at)
        if self.delay is not None:
            delay = self.delay if isinstance(self.delay, timedelta) else timedelta(seconds=self.delay)
            if delay < timedelta(0):
                raise ValidationFailed.single("delay", "must not be negative")
            return (now or utcnow()) + delay
        return None


@dataclass
class Job:
    job_type: str
    payload: Dict[str, Any]
    queue: str
    max_attempts: int
    scheduled_at: Optional[datetime] = None
    attempt: int = 1
    state: str = JOB_AVAILABLE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    inserted_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)


class JobScheduler(ABC):
    """At-least-once job scheduler contract."""

    @abstractmethod
    async def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        *,
        queue: str,
        max_attempts: int,
        scheduled_at: Optional[datetime] = None,
    ) -> Job:
        """Submit a job for execution now or at ``scheduled_at``."""

    @abstractmethod
    async def cancel(self, job_type: str, key: str, value: Any) -> int:
        """Cancel not-yet-executed jobs whose payload ``key`` equals ``value``.

        Returns:
            Number of jobs cancelled
        """

    @abstractmethod
    async def find(self, job_type: str, key: str, value: Any) -> List[Job]:
        """Return jobs whose payload ``key`` equals ``value``."""


class InMemoryJobScheduler(JobScheduler):
    def __init__(self) -> None:
        self.jobs: List[Job] = []

    async def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        *,
        queue: str,
        max_attempts: int,
        scheduled_at: Optional[datetime] = None,
    ) -> Job:
        job = Job(
            job_type=job_type,
            payload=dict(payload),
            queue=queue,
            max_attempts=max_attempts,
            scheduled_at=scheduled_at,
            state=JOB_SCHEDULED if scheduled_at and scheduled_at > utcnow() else JOB_AVAILABLE,
        )
        self.jobs.append(job)
        return job

    async def cancel(self, job_type: str, key: str, value: Any) -> int:
        cancelled = 0
        for job in self._matching(job_type, key, value):
            if job.state in CANCELLABLE_STATES:
                job.state = JOB_CANCELLED
                cancelled += 1
        return cancelled

    async def find(self, job_type: str, key: str, value: Any) -> List[Job]:
        return self._matching(job_type, key, value)

    def _matching(self, job_type: str, key: str, value: Any) -> List[Job]:
        return [
            job
            for job in self.jobs
            if job.job_type == job_type and job.payload.get(key) == value
        ]

    def due_jobs(self, now: Optional[datetime] = None) -> List[Job]:
        """Jobs ready to run at ``now``, oldest first."""
        now = now or utcnow()
        return [
            job
            for job in self.jobs
            if job.state in RUNNABLE_STATES
            and (job.scheduled_at is None or ensure_utc(job.scheduled_at) <= now)
        ]
