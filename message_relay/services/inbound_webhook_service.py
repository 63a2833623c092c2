import mimetypes
from typing import Any, Dict, List, Mapping, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from message_relay.errors import ValidationErrors, ValidationFailed
from message_relay.models.api.messages import MessageResponse
from message_relay.models.constants import DIRECTION_INBOUND
from message_relay.providers.provider_router import ProviderRouter
from message_relay.services.message_service import MessageService

ParsedWebhook = Tuple[str, Dict[str, Any], List[Dict[str, Any]]]


def attachment_from_url(url: str) -> Dict[str, Any]:
    """Describe a provider-hosted media URL as an attachment."""
    content_type, _ = mimetypes.guess_type(url)
    major = (content_type or "").split("/", 1)[0]
    attachment_type = major if major in ("image", "video", "audio", "text") else "other"
    attachment: Dict[str, Any] = {"url": url, "attachment_type": attachment_type}
    if content_type:
        attachment["content_type"] = content_type
    return attachment


def parse_sms_webhook(payload: Any) -> ParsedWebhook:
    """Normalize unified or Twilio-like SMS/MMS webhook payloads."""
    if not isinstance(payload, Mapping):
        raise ValidationFailed.single("payload", "must be an object")

    if "from" in payload:
        # Unified format
        media = payload.get("attachments") or []
        message_type = str(payload.get("type") or ("mms" if media else "sms"))
        attrs = {
            "from": payload.get("from"),
            "to": payload.get("to"),
            "body": payload.get("body"),
            "messaging_provider_id": payload.get("messaging_provider_id"),
            "timestamp": payload.get("timestamp"),
        }
    elif "From" in payload:
        # SMS provider format (Twilio-like)
        media = payload.get("MediaUrl") or []
        message_type = "mms" if media else "sms"
        attrs = {
            "from": payload.get("From"),
            "to": payload.get("To"),
            "body": payload.get("Body"),
            "messaging_provider_id": payload.get("MessageSid"),
            "timestamp": payload.get("Timestamp"),
        }
    else:
        raise ValidationFailed.single("payload", "Invalid webhook format: missing required fields")

    if message_type not in ("sms", "mms"):
        raise ValidationFailed.single("type", "must be one of: sms, mms")
    if isinstance(media, str):
        media = [media]

    return message_type, _inbound(attrs), [attachment_from_url(str(url)) for url in media]


def parse_email_webhook(payload: Any) -> ParsedWebhook:
    """Normalize unified or SendGrid-like inbound email payloads."""
    if not isinstance(payload, Mapping):
        raise ValidationFailed.single("payload", "must be an object")

    if "from_email" in payload:
        # Email provider format (SendGrid-like)
        subject = str(payload.get("subject") or "")
        body = payload.get("html_content") or payload.get("content") or ""
        if subject:
            body = f"Subject: {subject}\n\n{body}"
        attrs = {
            "from": payload.get("from_email"),
            "to": payload.get("to_email"),
            "body": body,
            "messaging_provider_id": payload.get("x_message_id"),
            "timestamp": payload.get("timestamp"),
        }
        media: List[Any] = []
    elif "from" in payload:
        # Unified format
        attrs = {
            "from": payload.get("from"),
            "to": payload.get("to"),
            "body": payload.get("body"),
            "messaging_provider_id": payload.get("messaging_provider_id"),
            "timestamp": payload.get("timestamp"),
        }
        media = payload.get("attachments") or []
    else:
        raise ValidationFailed.single("payload", "Invalid webhook format: missing required fields")

    return "email", _inbound(attrs), [attachment_from_url(str(url)) for url in media]


def _inbound(attrs: Dict[str, Any]) -> Dict[str, Any]:
    errors = ValidationErrors()
    for field in ("from", "to", "body"):
        if not attrs.get(field):
            errors.add(field, "can't be blank")
    if errors:
        raise ValidationFailed(errors)

    inbound = {key: value for key, value in attrs.items() if value is not None}
    inbound["direction"] = DIRECTION_INBOUND
    return inbound


class InboundWebhookService:
    """Service for storing inbound messages reported by provider webhooks."""

    def __init__(self, db: AsyncSession, router: ProviderRouter):
        self.message_service = MessageService(db, router)

    async def receive_sms(self, payload: Any) -> MessageResponse:
        """
        Process an incoming SMS/MMS webhook:
        1. Normalize the payload
        2. Store it as a received message in its conversation
        """
        message_type, attrs, attachments = parse_sms_webhook(payload)
        return await self.message_service.create_message(message_type, attrs, attachments)

    async def receive_email(self, payload: Any) -> MessageResponse:
        message_type, attrs, attachments = parse_email_webhook(payload)
        return await self.message_service.create_message(message_type, attrs, attachments)
