import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from message_relay import config, telemetry
from message_relay.errors import (
    DeliveryFailedError,
    InvalidStatusTransition,
    MessageNotFoundError,
    MessageRelayError,
)
from message_relay.models.constants import (
    DIRECTION_INBOUND,
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    STATUS_SENT,
    can_transition,
)
from message_relay.models.db.message_model import MessageModel
from message_relay.providers.base_provider import OutboundMessage
from message_relay.providers.provider_router import ProviderRouter, SendResult
from message_relay.utils import duration_ms, ensure_utc, utcnow
from message_relay.workers.jobs import EnqueueOptions, Job, JobScheduler

logger = logging.getLogger(__name__)

DELIVER_MESSAGE_JOB = "deliver_message"


def format_failure_reason(error: BaseException) -> str:
    """Human-readable summary of a delivery error for ``failure_reason``."""
    if isinstance(error, MessageRelayError):
        return error.message
    text = str(error)
    return text or error.__class__.__name__


@dataclass
class Transition:
    from_status: str
    to_status: str
    at: datetime
    duration_ms: int


class MessageDeliveryWorker:
    """Outbound delivery state machine and job body.

    ``pending -> queued -> processing -> sent | failed``. Failures raise a
    retryable DeliveryFailedError so the scheduler can re-run the job; a
    missing message raises the non-retryable MessageNotFoundError. The job
    body is safe to run more than once for the same message.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        router: ProviderRouter,
        scheduler: JobScheduler,
        queue: Optional[str] = None,
        max_attempts: Optional[int] = None,
        tracer: Optional[Tracer] = None,
    ):
        self.session_factory = session_factory
        self.router = router
        self.scheduler = scheduler
        self.queue = queue or config.DELIVERY_QUEUE
        self.max_attempts = max_attempts or config.DELIVERY_MAX_ATTEMPTS
        self.tracer = tracer or telemetry.tracer

    async def enqueue_delivery(
        self, message_id: Union[str, UUID], options: Optional[EnqueueOptions] = None
    ) -> Job:
        """Move a message to ``queued`` and submit its delivery job."""
        options = options or EnqueueOptions()
        scheduled_at = options.resolve_scheduled_at()

        with self.tracer.start_as_current_span("message_delivery.enqueue") as span:
            span.set_attribute("message_id", str(message_id))
            async with self.session_factory() as db:
                message = await self._load(db, message_id)
                if message is None:
                    raise MessageNotFoundError(message_id)
                return await self._queue_and_submit(db, message, options, scheduled_at)

    async def enqueue_scheduled_delivery(
        self,
        message_id: Union[str, UUID],
        scheduled_at: datetime,
        options: Optional[EnqueueOptions] = None,
    ) -> Job:
        options = options or EnqueueOptions()
        return await self.enqueue_delivery(
            message_id,
            EnqueueOptions(
                queue=options.queue,
                scheduled_at=scheduled_at,
                max_attempts=options.max_attempts,
            ),
        )

    async def enqueue_batch_delivery(
        self,
        message_ids: Sequence[Union[str, UUID]],
        options: Optional[EnqueueOptions] = None,
    ) -> List[Job]:
        """Queue many messages, one independent job each.

        Unknown ids and messages that cannot be queued are logged and skipped.
        Each message is committed as ``queued`` only together with its job; if
        the scheduler fails, that message is put back and the error propagates.
        """
        if not message_ids:
            return []

        options = options or EnqueueOptions()
        scheduled_at = options.resolve_scheduled_at()

        jobs: List[Job] = []
        queued_ids: List[str] = []
        with self.tracer.start_as_current_span("message_delivery.enqueue_batch") as span:
            span.set_attribute("batch_size", len(message_ids))
            async with self.session_factory() as db:
                for message_id in message_ids:
                    message = await self._load(db, message_id)
                    if message is None:
                        logger.warning(
                            "Skipping batch delivery for unknown message %s", message_id
                        )
                        continue
                    try:
                        job = await self._queue_and_submit(db, message, options, scheduled_at)
                    except InvalidStatusTransition as e:
                        logger.warning(
                            "Skipping batch delivery for message %s: %s", message.id, e
                        )
                        continue
                    jobs.append(job)
                    queued_ids.append(str(message.id))

            telemetry.record_batch_enqueued(
                {"count": len(jobs), "timestamp": utcnow()},
                {"message_ids": queued_ids},
            )
        logger.info("Enqueued %d of %d messages for delivery", len(jobs), len(message_ids))
        return jobs

    async def cancel_delivery(self, message_id: Union[str, UUID]) -> int:
        """Cancel not-yet-executed delivery jobs; in-flight deliveries are not interrupted."""
        cancelled = await self.scheduler.cancel(DELIVER_MESSAGE_JOB, "message_id", str(message_id))
        logger.info("Cancelled %d delivery job(s) for message %s", cancelled, message_id)
        return cancelled

    async def perform(self, job: Job) -> Optional[SendResult]:
        """Delivery job body.

        Returns the send result, or None when the job was a no-op because the
        message is already complete.
        """
        message_id = job.payload.get("message_id")

        with self.tracer.start_as_current_span("message_delivery.perform") as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("attempt", job.attempt)
            span.set_attribute("message_id", str(message_id))

            async with self.session_factory() as db:
                # Step 1: Load the message; a missing row is permanent
                message = await self._load(db, message_id)
                if message is None:
                    logger.warning(
                        "Discarding delivery job %s: message %s not found", job.id, message_id
                    )
                    raise MessageNotFoundError(message_id)

                # Step 2: Idempotency guard for re-delivered jobs
                if self._is_complete(message, job):
                    logger.info(
                        "Skipping delivery job %s: message %s already %s",
                        job.id,
                        message.id,
                        message.status,
                    )
                    return None

                # Step 3: Mark processing
                start_time = ensure_utc(message.queued_at or message.created_at) or utcnow()
                transition = self._transition(message, STATUS_PROCESSING)
                message.delivery_attempts = (message.delivery_attempts or 0) + 1
                await db.commit()
                self._emit_transition(message, transition)

                # Step 4: Route and send
                try:
                    result = await self.router.send(OutboundMessage.from_model(message))
                except MessageRelayError as e:
                    reason = format_failure_reason(e)
                    await self._mark_failed(db, message, reason, start_time)
                    logger.warning(
                        "Delivery attempt %d/%d for message %s failed: %s",
                        job.attempt,
                        job.max_attempts,
                        message.id,
                        reason,
                    )
                    raise DeliveryFailedError(message.id, reason) from e
                except Exception as e:
                    reason = format_failure_reason(e)
                    await self._mark_failed(db, message, reason, start_time)
                    logger.exception(
                        "Delivery attempt %d/%d for message %s raised unexpectedly",
                        job.attempt,
                        job.max_attempts,
                        message.id,
                    )
                    raise DeliveryFailedError(message.id, reason) from e

                # Step 5: Record the provider's acceptance
                await self._mark_sent(db, message, result, start_time)
                return result

    async def record_provider_status(
        self, message_id: Union[str, UUID], provider_status: str
    ) -> MessageModel:
        """Apply a normalized provider status report to a sent message."""
        with self.tracer.start_as_current_span("message_delivery.provider_status") as span:
            span.set_attribute("message_id", str(message_id))
            span.set_attribute("provider_status", provider_status)

            async with self.session_factory() as db:
                message = await self._load(db, message_id)
                if message is None:
                    raise MessageNotFoundError(message_id)

                if message.status == STATUS_SENT and provider_status == STATUS_DELIVERED:
                    transition = self._transition(message, STATUS_DELIVERED)
                    if message.delivered_at is None:
                        message.delivered_at = transition.at
                elif message.status == STATUS_SENT and provider_status == STATUS_FAILED:
                    transition = self._transition(message, STATUS_FAILED)
                    message.failed_at = transition.at
                    message.failure_reason = "Provider reported delivery failure"
                else:
                    return message

                await db.commit()
                self._emit_transition(message, transition)
                return message

    def _is_complete(self, message: MessageModel, job: Job) -> bool:
        if message.direction == DIRECTION_INBOUND:
            return True
        if message.status in (STATUS_SENT, STATUS_DELIVERED):
            return True
        return (
            message.status == STATUS_FAILED
            and (message.delivery_attempts or 0) >= job.max_attempts
        )

    def _queue(self, message: MessageModel) -> Transition:
        transition = self._transition(message, STATUS_QUEUED)
        if message.queued_at is None:
            message.queued_at = transition.at
        return transition

    async def _queue_and_submit(
        self,
        db: AsyncSession,
        message: MessageModel,
        options: EnqueueOptions,
        scheduled_at: Optional[datetime],
    ) -> Job:
        previous = (message.status, message.queued_at, message.updated_at)
        transition = self._queue(message)
        await db.commit()

        try:
            job = await self._submit(message.id, options, scheduled_at)
        except Exception:
            # No job was recorded, so the message must not stay queued
            message.status, message.queued_at, message.updated_at = previous
            await db.commit()
            logger.error(
                "Could not submit delivery job for message %s; status restored to %s",
                message.id,
                message.status,
            )
            raise

        self._emit_transition(message, transition)
        return job

    async def _mark_sent(
        self, db: AsyncSession, message: MessageModel, result: SendResult, start_time: datetime
    ) -> None:
        transition = self._transition(message, STATUS_SENT)
        if message.sent_at is None:
            message.sent_at = transition.at
        message.messaging_provider_id = result.provider_message_id
        message.provider_name = result.provider_name
        await db.commit()
        self._emit_transition(message, transition)
        self._emit_completed(message, start_time, transition.at, STATUS_SENT)

    async def _mark_failed(
        self, db: AsyncSession, message: MessageModel, reason: str, start_time: datetime
    ) -> None:
        transition = self._transition(message, STATUS_FAILED)
        message.failed_at = transition.at
        message.failure_reason = reason
        await db.commit()
        self._emit_transition(message, transition)
        self._emit_completed(message, start_time, transition.at, STATUS_FAILED)

    def _transition(self, message: MessageModel, to_status: str) -> Transition:
        from_status = message.status
        if not can_transition(from_status, to_status):
            raise InvalidStatusTransition(from_status, to_status)

        now = utcnow()
        previous = message.updated_at or message.created_at
        message.status = to_status
        message.updated_at = now
        return Transition(
            from_status=from_status,
            to_status=to_status,
            at=now,
            duration_ms=duration_ms(previous, now),
        )

    async def _submit(
        self, message_id: UUID, options: EnqueueOptions, scheduled_at: Optional[datetime]
    ) -> Job:
        job = await self.scheduler.enqueue(
            DELIVER_MESSAGE_JOB,
            {"message_id": str(message_id)},
            queue=options.queue or self.queue,
            max_attempts=options.max_attempts or self.max_attempts,
            scheduled_at=scheduled_at,
        )
        logger.info("Enqueued delivery job %s for message %s", job.id, message_id)
        return job

    async def _load(self, db: AsyncSession, message_id: Any) -> Optional[MessageModel]:
        try:
            key = message_id if isinstance(message_id, UUID) else UUID(str(message_id))
        except ValueError:
            return None
        result = await db.execute(select(MessageModel).where(MessageModel.id == key))
        return result.scalar_one_or_none()

    def _emit_transition(self, message: MessageModel, transition: Transition) -> None:
        logger.debug(
            "Message %s transitioned %s -> %s",
            message.id,
            transition.from_status,
            transition.to_status,
        )
        telemetry.record_status_transition(
            {"duration_ms": transition.duration_ms, "timestamp": transition.at},
            {
                "message_id": str(message.id),
                "message_type": message.type,
                "direction": message.direction,
                "from_status": transition.from_status,
                "to_status": transition.to_status,
            },
        )

    def _emit_completed(
        self, message: MessageModel, start_time: datetime, completion_time: datetime, result: str
    ) -> None:
        measurements: Dict[str, Any] = {
            "duration_ms": duration_ms(start_time, completion_time),
            "start_time": start_time,
            "completion_time": completion_time,
        }
        telemetry.record_delivery_completed(
            measurements,
            {"message_id": str(message.id), "message_type": message.type, "result": result},
        )
