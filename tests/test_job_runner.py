import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from message_relay.errors import DeliveryFailedError, MessageNotFoundError
from message_relay.workers.job_runner import JobRunner, default_backoff
from message_relay.workers.jobs import InMemoryJobScheduler

JOB_TYPE = "deliver_message"


def no_backoff(attempt: int) -> float:
    return 0.0


class TestJobRunner:
    """Unit tests for in-process job execution."""

    @pytest.fixture
    def scheduler(self) -> InMemoryJobScheduler:
        return InMemoryJobScheduler()

    async def enqueue(self, scheduler: InMemoryJobScheduler, max_attempts: int = 3):
        return await scheduler.enqueue(
            JOB_TYPE, {"message_id": "m1"}, queue="messaging", max_attempts=max_attempts
        )

    @pytest.mark.asyncio
    async def test_successful_job_completes(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that a due job runs once and is marked completed."""
        handler = AsyncMock(return_value=None)
        runner = JobRunner(scheduler, {JOB_TYPE: handler})
        job = await self.enqueue(scheduler)

        assert await runner.run_due_jobs() == 1
        assert await runner.run_due_jobs() == 0

        handler.assert_awaited_once_with(job)
        assert job.state == "completed"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that a retryable error reschedules the job with the next attempt."""
        handler = AsyncMock(side_effect=[DeliveryFailedError("m1", "carrier down"), None])
        runner = JobRunner(scheduler, {JOB_TYPE: handler}, backoff=no_backoff)
        job = await self.enqueue(scheduler)

        await runner.run_due_jobs()
        assert job.state == "retryable"
        assert job.attempt == 2
        assert job.errors == ["carrier down"]

        await runner.run_due_jobs()
        assert job.state == "completed"
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that a job is discarded after its last attempt fails."""
        handler = AsyncMock(side_effect=DeliveryFailedError("m1", "carrier down"))
        runner = JobRunner(scheduler, {JOB_TYPE: handler}, backoff=no_backoff)
        job = await self.enqueue(scheduler, max_attempts=2)

        await runner.run_due_jobs()
        await runner.run_due_jobs()
        await runner.run_due_jobs()

        assert handler.await_count == 2
        assert job.state == "discarded"
        assert job.attempt == 2

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_discarded(
        self, scheduler: InMemoryJobScheduler
    ) -> None:
        """Test that a not-found error is never retried."""
        handler = AsyncMock(side_effect=MessageNotFoundError("m1"))
        runner = JobRunner(scheduler, {JOB_TYPE: handler}, backoff=no_backoff)
        job = await self.enqueue(scheduler)

        await runner.run_due_jobs()

        assert job.state == "discarded"
        assert job.attempt == 1
        assert job.errors == ["Message m1 not found"]

    @pytest.mark.asyncio
    async def test_retry_waits_for_backoff(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that a retried job is not due before its backoff elapses."""
        handler = AsyncMock(side_effect=DeliveryFailedError("m1", "carrier down"))
        runner = JobRunner(scheduler, {JOB_TYPE: handler}, backoff=lambda attempt: 60.0)
        job = await self.enqueue(scheduler)

        await runner.run_due_jobs()

        assert job.scheduled_at > datetime.now(timezone.utc) + timedelta(seconds=30)
        assert await runner.run_due_jobs() == 0

    @pytest.mark.asyncio
    async def test_unknown_job_type_is_discarded(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that jobs without a handler are discarded."""
        runner = JobRunner(scheduler, {})
        job = await self.enqueue(scheduler)

        await runner.run_due_jobs()

        assert job.state == "discarded"

    @pytest.mark.asyncio
    async def test_cancelled_jobs_do_not_run(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that cancellation keeps a job from executing."""
        handler = AsyncMock()
        runner = JobRunner(scheduler, {JOB_TYPE: handler})
        await self.enqueue(scheduler)
        await scheduler.cancel(JOB_TYPE, "message_id", "m1")

        assert await runner.run_due_jobs() == 0
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_background_task_runs_jobs(self, scheduler: InMemoryJobScheduler) -> None:
        """Test that the polling task picks up jobs enqueued after start."""
        handler = AsyncMock(return_value=None)
        runner = JobRunner(scheduler, {JOB_TYPE: handler}, poll_interval=0.01)

        await runner.start()
        assert runner.running
        job = await self.enqueue(scheduler)
        for _ in range(100):
            if job.state == "completed":
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        assert job.state == "completed"
        assert not runner.running

    def test_default_backoff(self) -> None:
        """Test the exponential backoff and its cap."""
        assert [default_backoff(attempt) for attempt in (2, 3, 4)] == [2.0, 4.0, 8.0]
        assert default_backoff(20) == 300.0
