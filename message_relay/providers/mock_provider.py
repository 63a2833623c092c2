import itertools
import logging
from typing import Any, Dict, FrozenSet, List, Mapping

from message_relay.errors import ProviderError, ProviderTransportError
from message_relay.providers.base_provider import BaseProvider, OutboundMessage

logger = logging.getLogger(__name__)


class MockProvider(BaseProvider):
    """Test transport: no network I/O, deterministic ids, in-memory outbox.

    Set ``fail_with`` in the config to make every send fail with that reason.
    """

    name = "mock"
    required_config_keys = ("provider_name",)

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.sent: List[Dict[str, Any]] = []
        self._statuses: Dict[str, str] = {}

    def supported_types(self) -> FrozenSet[str]:
        return frozenset({"sms", "mms", "email"})

    async def send(self, message: OutboundMessage, config: Mapping[str, Any]) -> str:
        self.validate_message(message)
        if config.get("fail_with"):
            raise ProviderTransportError(str(config["fail_with"]))

        provider_message_id = f"MOCK{next(self._counter):010d}"
        self.sent.append(
            {
                "provider_message_id": provider_message_id,
                "message_id": message.id,
                "type": message.type,
                "to": message.recipients,
                "from": message.from_address,
                "body": message.body,
                "attachments": len(message.attachments),
            }
        )
        self._statuses[provider_message_id] = "delivered"
        logger.debug("Mock provider accepted message %s as %s", message.id, provider_message_id)
        return provider_message_id

    async def get_status(self, provider_message_id: str, config: Mapping[str, Any]) -> str:
        status = self._statuses.get(provider_message_id)
        if status is None:
            raise ProviderError(f"Message {provider_message_id} not found")
        return status
