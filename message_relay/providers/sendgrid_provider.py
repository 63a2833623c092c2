import base64
import logging
import uuid
from typing import Any, Dict, FrozenSet, List, Mapping

import httpx

from message_relay.addresses import is_valid_email
from message_relay.errors import ProviderConfigError, ProviderError, ProviderTransportError
from message_relay.providers.base_provider import BaseProvider, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sendgrid.com/v3"
DEFAULT_TIMEOUT = 10.0
DEFAULT_SUBJECT = "Message from MessageRelay"

MAX_ATTACHMENTS = 10
MAX_TOTAL_ATTACHMENT_SIZE = 30 * 1024 * 1024

# Normalize SendGrid event statuses to our message statuses
STATUS_MAPPING = {
    "processed": "sent",
    "deferred": "queued",
    "delivered": "delivered",
    "not_delivered": "failed",
    "dropped": "failed",
    "bounce": "failed",
    "blocked": "failed",
}


def extract_subject(body: str) -> str:
    """Use the first line as subject when it is short enough."""
    first_line = body.split("\n", 1)[0].strip()
    if first_line and len(first_line) < 100:
        return first_line
    return DEFAULT_SUBJECT


class SendGridProvider(BaseProvider):
    """Email transport. All recipients share a single API call."""

    name = "sendgrid"
    required_config_keys = ("api_key", "from_email", "from_name")

    def supported_types(self) -> FrozenSet[str]:
        return frozenset({"email"})

    def _check_config(self, config: Mapping[str, Any]) -> None:
        if not str(config["api_key"]).startswith("SG."):
            raise ProviderConfigError("Invalid SendGrid API key format")
        if not is_valid_email(config["from_email"]):
            raise ProviderConfigError("Invalid from_email format")

    def _check_attachments(self, message: OutboundMessage) -> None:
        if len(message.attachments) > MAX_ATTACHMENTS:
            raise ProviderError(f"Too many attachments (max {MAX_ATTACHMENTS})")
        total_size = sum(attachment.size or 0 for attachment in message.attachments)
        if total_size > MAX_TOTAL_ATTACHMENT_SIZE:
            raise ProviderError("Total attachment size exceeds 30MB")

    def build_payload(self, message: OutboundMessage, config: Mapping[str, Any]) -> Dict[str, Any]:
        body = message.body
        linked = [a.url for a in message.attachments if a.data is None and a.url]
        if linked:
            body = body + "\n\nAttachments:\n" + "\n".join(linked)

        payload: Dict[str, Any] = {
            "personalizations": [
                {"to": [{"email": recipient} for recipient in message.recipients]}
            ],
            "from": {"email": message.from_address, "name": config["from_name"]},
            "reply_to": {"email": config["from_email"]},
            "subject": extract_subject(message.body),
            "content": [{"type": "text/plain", "value": body}],
        }

        inline: List[Dict[str, Any]] = [
            {
                "content": base64.b64encode(attachment.data).decode("ascii"),
                "type": attachment.content_type or "application/octet-stream",
                "filename": attachment.filename or "attachment",
                "disposition": "attachment",
            }
            for attachment in message.attachments
            if attachment.data is not None
        ]
        if inline:
            payload["attachments"] = inline
        return payload

    async def send(self, message: OutboundMessage, config: Mapping[str, Any]) -> str:
        self.validate_message(message)
        payload = self.build_payload(message, config)

        try:
            async with httpx.AsyncClient(timeout=config.get("timeout", DEFAULT_TIMEOUT)) as client:
                response = await client.post(
                    f"{self._base_url(config)}/mail/send",
                    json=payload,
                    headers=self._headers(config),
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderTransportError(
                f"SendGrid API error: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Network error: {e}") from e

        message_id = response.headers.get("X-Message-Id")
        if not isinstance(message_id, str) or not message_id:
            message_id = f"SG{uuid.uuid4().hex}"
            logger.debug("SendGrid response had no X-Message-Id, using %s", message_id)
        return message_id

    async def get_status(self, provider_message_id: str, config: Mapping[str, Any]) -> str:
        try:
            async with httpx.AsyncClient(timeout=config.get("timeout", DEFAULT_TIMEOUT)) as client:
                response = await client.get(
                    f"{self._base_url(config)}/messages/{provider_message_id}",
                    headers=self._headers(config),
                )
                response.raise_for_status()
                data: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderTransportError(
                f"SendGrid API error: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Network error: {e}") from e
        except ValueError as e:
            raise ProviderTransportError(f"SendGrid returned an unreadable response: {e}") from e

        return STATUS_MAPPING.get(str(data.get("status", "")), "unknown")

    def _base_url(self, config: Mapping[str, Any]) -> str:
        return str(config.get("base_url") or DEFAULT_BASE_URL).rstrip("/")

    def _headers(self, config: Mapping[str, Any]) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config['api_key']}",
        }
