import logging
from typing import Any, Dict, FrozenSet, List, Mapping

import httpx

from message_relay.addresses import is_valid_phone
from message_relay.errors import ProviderConfigError, ProviderError, ProviderTransportError
from message_relay.providers.base_provider import BaseProvider, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.twilio.com/2010-04-01"
DEFAULT_TIMEOUT = 10.0

MMS_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

# Normalize Twilio statuses to our message statuses
STATUS_MAPPING = {
    "accepted": "queued",
    "queued": "queued",
    "sending": "processing",
    "sent": "sent",
    "delivered": "delivered",
    "undelivered": "failed",
    "failed": "failed",
    "receiving": "received",
    "received": "received",
}


class TwilioProvider(BaseProvider):
    """Phone transport for SMS and MMS.

    Multi-recipient messages are fanned out as one request per recipient.
    The first failed request aborts the send; recipients already sent to are
    not recalled.
    """

    name = "twilio"
    required_config_keys = ("account_sid", "auth_token", "from_number")

    def supported_types(self) -> FrozenSet[str]:
        return frozenset({"sms", "mms"})

    def _check_config(self, config: Mapping[str, Any]) -> None:
        if not str(config["account_sid"]).startswith("AC"):
            raise ProviderConfigError("Invalid Twilio Account SID format")
        if len(str(config["auth_token"])) < 32:
            raise ProviderConfigError("Invalid Twilio Auth Token format")
        if not is_valid_phone(config["from_number"]):
            raise ProviderConfigError("Invalid from_number format")

    def _check_attachments(self, message: OutboundMessage) -> None:
        if not message.attachments:
            return
        if message.type == "sms":
            raise ProviderError("SMS messages cannot have attachments")
        for attachment in message.attachments:
            if (attachment.content_type or "").lower() not in MMS_CONTENT_TYPES:
                raise ProviderError("MMS attachments must be images (JPEG, PNG, GIF, WebP)")
            if not attachment.url:
                raise ProviderError("MMS attachments must be hosted at a URL")

    async def send(self, message: OutboundMessage, config: Mapping[str, Any]) -> str:
        """Send to every recipient, stopping at the first failure."""
        self.validate_message(message)

        message_ids: List[str] = []
        async with httpx.AsyncClient(timeout=config.get("timeout", DEFAULT_TIMEOUT)) as client:
            for recipient in message.recipients:
                message_ids.append(await self._send_one(client, message, recipient, config))

        if len(message_ids) > 1:
            logger.info(
                "Twilio fan-out for message %s produced ids %s",
                message.id,
                ", ".join(message_ids),
            )
        return message_ids[0]

    async def _send_one(
        self,
        client: Any,
        message: OutboundMessage,
        recipient: str,
        config: Mapping[str, Any],
    ) -> str:
        payload: Dict[str, Any] = {
            "From": message.from_address,
            "To": recipient,
            "Body": message.body,
            "MediaUrl": [attachment.url for attachment in message.attachments],
        }
        try:
            response = await client.post(
                self._messages_url(config),
                json=payload,
                auth=(config["account_sid"], config["auth_token"]),
            )
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderTransportError(
                f"Twilio API error: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Network error: {e}") from e
        except ValueError as e:
            raise ProviderTransportError(f"Twilio returned an unreadable response: {e}") from e

        message_id = str(data.get("sid") or "")
        if not message_id:
            raise ProviderTransportError("Twilio response did not include a message sid")
        return message_id

    async def get_status(self, provider_message_id: str, config: Mapping[str, Any]) -> str:
        url = f"{self._account_url(config)}/Messages/{provider_message_id}.json"
        try:
            async with httpx.AsyncClient(timeout=config.get("timeout", DEFAULT_TIMEOUT)) as client:
                response = await client.get(
                    url, auth=(config["account_sid"], config["auth_token"])
                )
                response.raise_for_status()
                data: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderTransportError(
                f"Twilio API error: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Network error: {e}") from e
        except ValueError as e:
            raise ProviderTransportError(f"Twilio returned an unreadable response: {e}") from e

        return STATUS_MAPPING.get(str(data.get("status", "")), "unknown")

    def _account_url(self, config: Mapping[str, Any]) -> str:
        base_url = str(config.get("base_url") or DEFAULT_BASE_URL).rstrip("/")
        return f"{base_url}/Accounts/{config['account_sid']}"

    def _messages_url(self, config: Mapping[str, Any]) -> str:
        return f"{self._account_url(config)}/Messages.json"
