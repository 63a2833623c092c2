from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends

from message_relay.dependencies import get_delivery_worker, get_message_service
from message_relay.models.api.messages import (
    MessageResponse,
    MessageStatusResponse,
    SendMessageRequest,
)
from message_relay.services.message_service import MessageService
from message_relay.workers.jobs import EnqueueOptions
from message_relay.workers.message_delivery_worker import MessageDeliveryWorker

router = APIRouter()


async def _send(
    message_type: str, request: SendMessageRequest, service: MessageService
) -> MessageResponse:
    attrs = request.message_attrs()
    attrs["type"] = message_type
    options = EnqueueOptions(
        queue=request.queue,
        delay=request.delay_seconds,
        scheduled_at=request.scheduled_at,
        max_attempts=request.max_attempts,
    )
    return await service.send_outbound_message(attrs, options, request.attachments)


@router.post("/sms", response_model=MessageResponse, status_code=202)
async def send_sms(
    request: SendMessageRequest, service: MessageService = Depends(get_message_service)
) -> MessageResponse:
    """Queue an SMS message for delivery."""
    return await _send("sms", request, service)


@router.post("/mms", response_model=MessageResponse, status_code=202)
async def send_mms(
    request: SendMessageRequest, service: MessageService = Depends(get_message_service)
) -> MessageResponse:
    """Queue an MMS message for delivery."""
    return await _send("mms", request, service)


@router.post("/email", response_model=MessageResponse, status_code=202)
async def send_email(
    request: SendMessageRequest, service: MessageService = Depends(get_message_service)
) -> MessageResponse:
    """Queue an email message for delivery."""
    return await _send("email", request, service)


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: UUID, service: MessageService = Depends(get_message_service)
) -> MessageResponse:
    return await service.get_message(message_id)


@router.get("/{message_id}/status", response_model=MessageStatusResponse)
async def get_message_status(
    message_id: UUID, service: MessageService = Depends(get_message_service)
) -> MessageStatusResponse:
    """Ask the provider that accepted the message for its delivery status."""
    return await service.get_outbound_status(message_id)


@router.post("/{message_id}/status/refresh", response_model=MessageResponse)
async def refresh_message_status(
    message_id: UUID, service: MessageService = Depends(get_message_service)
) -> MessageResponse:
    return await service.refresh_outbound_status(message_id)


@router.post("/{message_id}/cancel")
async def cancel_message_delivery(
    message_id: UUID, worker: MessageDeliveryWorker = Depends(get_delivery_worker)
) -> Dict[str, int]:
    """Cancel delivery jobs that have not started yet."""
    return {"cancelled": await worker.cancel_delivery(message_id)}
