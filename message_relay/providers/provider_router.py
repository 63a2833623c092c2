import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from message_relay.errors import (
    MessageRelayError,
    NoSuitableProviderError,
    ProviderConfigurationErrors,
    UnknownProviderError,
    UnsupportedMessageTypeError,
)
from message_relay.providers.base_provider import BaseProvider, OutboundMessage
from message_relay.providers.mock_provider import MockProvider
from message_relay.providers.sendgrid_provider import SendGridProvider
from message_relay.providers.twilio_provider import TwilioProvider

logger = logging.getLogger(__name__)

# Primary vendors first, test transport last
PROVIDER_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "sms": ("twilio", "mock"),
    "mms": ("twilio", "mock"),
    "email": ("sendgrid", "mock"),
}


def default_providers() -> Dict[str, BaseProvider]:
    return {
        "twilio": TwilioProvider(),
        "sendgrid": SendGridProvider(),
        "mock": MockProvider(),
    }


def provider_config(entry: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the capability config of a configuration entry.

    Entries are ``{"enabled": bool, "config": {...}}``; a bare map is treated
    as the config itself.
    """
    inner = entry.get("config")
    return inner if isinstance(inner, Mapping) else entry


@dataclass
class SendResult:
    provider_message_id: str
    provider_name: str


class ProviderRouter:
    """Selects a transport for a message and delegates send/status calls.

    The configuration map is passed in explicitly and kept in configuration
    order, which is the tie-breaker when no priority member is available.
    """

    def __init__(
        self,
        configs: Mapping[str, Mapping[str, Any]],
        providers: Optional[Mapping[str, BaseProvider]] = None,
    ):
        self.configs: Dict[str, Mapping[str, Any]] = dict(configs)
        self.providers: Dict[str, BaseProvider] = dict(
            providers if providers is not None else default_providers()
        )

    def get_provider(self, name: str) -> BaseProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise UnknownProviderError(name)
        return provider

    def get_provider_config(self, name: str) -> Mapping[str, Any]:
        entry = self.configs.get(name)
        if entry is None:
            raise UnknownProviderError(name)
        return provider_config(entry)

    def is_enabled(self, name: str) -> bool:
        entry = self.configs.get(name) or {}
        return bool(entry.get("enabled", False))

    def candidates(self, message_type: str) -> List[str]:
        """Enabled providers that support ``message_type``, in configuration order."""
        return [
            name
            for name in self.configs
            if self.is_enabled(name)
            and name in self.providers
            and self.providers[name].supports(message_type)
        ]

    def select(self, message: OutboundMessage) -> str:
        candidates = self.candidates(message.type)
        if not candidates:
            raise NoSuitableProviderError(message.type)
        if len(candidates) == 1:
            return candidates[0]

        for name in PROVIDER_PRIORITY.get(message.type, ()):
            if name in candidates:
                return name
        return candidates[0]

    async def send(self, message: OutboundMessage) -> SendResult:
        """Select, validate the config, then send; any failing stage short-circuits."""
        name = self.select(message)
        provider = self.providers[name]
        config = self.get_provider_config(name)
        provider.validate_config(config)

        try:
            provider_message_id = await provider.send(message, config)
        except MessageRelayError as e:
            logger.error(
                "Provider %s failed to send message %s: %s", name, message.id, e.message
            )
            raise

        logger.info(
            "Message %s sent via %s with provider id %s",
            message.id,
            name,
            provider_message_id,
        )
        return SendResult(provider_message_id=provider_message_id, provider_name=name)

    async def get_status(self, provider_message_id: str, provider_name: str) -> str:
        provider = self.get_provider(provider_name)
        config = self.get_provider_config(provider_name)
        return await provider.get_status(provider_message_id, config)

    def validate_configurations(
        self, configs: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> None:
        """Validate every configured provider, aggregating all failures."""
        configs = self.configs if configs is None else configs
        errors: List[Tuple[str, str]] = []
        for name, entry in configs.items():
            provider = self.providers.get(name)
            if provider is None:
                errors.append((name, f"Unknown provider: {name}"))
                continue
            if not isinstance(entry, Mapping):
                errors.append((name, "Configuration must be a map"))
                continue
            try:
                provider.validate_config(provider_config(entry))
            except MessageRelayError as e:
                errors.append((name, e.message))

        if errors:
            raise ProviderConfigurationErrors(errors)

    def validate_message_for_provider(
        self, message: OutboundMessage, provider_name: str
    ) -> None:
        """Pre-flight type and recipient checks without sending."""
        provider = self.get_provider(provider_name)
        if not provider.supports(message.type):
            raise UnsupportedMessageTypeError(provider_name, message.type)
        for recipient in message.recipients:
            provider.validate_recipient(recipient, message.type)

    def list_providers(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "name": name,
                "supported_types": sorted(self.providers[name].supported_types()),
                "enabled": self.is_enabled(name),
            }
            for name in self.configs
            if name in self.providers
        }
