from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from message_relay.dependencies import get_inbound_webhook_service
from message_relay.models.api.messages import MessageResponse
from message_relay.services.inbound_webhook_service import InboundWebhookService

router = APIRouter()


@router.post("/sms", response_model=MessageResponse)
async def receive_sms_webhook(
    webhook_data: Dict[str, Any] = Body(...),
    service: InboundWebhookService = Depends(get_inbound_webhook_service),
) -> MessageResponse:
    """
    Handle incoming SMS/MMS webhooks from the SMS provider.
    Supports both Twilio-like format and unified format.
    """
    return await service.receive_sms(webhook_data)


@router.post("/email", response_model=MessageResponse)
async def receive_email_webhook(
    webhook_data: Dict[str, Any] = Body(...),
    service: InboundWebhookService = Depends(get_inbound_webhook_service),
) -> MessageResponse:
    """
    Handle incoming email webhooks from the email provider.
    Supports both SendGrid-like format and unified format.
    """
    return await service.receive_email(webhook_data)
