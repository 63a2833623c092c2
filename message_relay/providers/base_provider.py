from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Sequence, Union
from uuid import UUID

from message_relay.addresses import address_error, is_valid_address
from message_relay.errors import (
    InvalidRecipientError,
    ProviderConfigError,
    ProviderError,
    StatusNotSupportedError,
    UnsupportedMessageTypeError,
)


@dataclass
class OutboundAttachment:
    """Attachment as handed to a transport."""

    attachment_type: str
    content_type: Optional[str] = None
    url: Optional[str] = None
    data: Optional[bytes] = None
    filename: Optional[str] = None
    size: Optional[int] = None


@dataclass
class OutboundMessage:
    """Provider-facing view of a stored message."""

    type: str
    to: Union[str, List[str]]
    from_address: str
    body: str
    attachments: List[OutboundAttachment] = field(default_factory=list)
    id: Optional[UUID] = None

    @property
    def recipients(self) -> List[str]:
        return list(self.to) if isinstance(self.to, list) else [self.to]

    @classmethod
    def from_model(cls, model: Any) -> "OutboundMessage":
        return cls(
            id=model.id,
            type=model.type,
            to=model.to,
            from_address=model.from_address,
            body=model.body,
            attachments=[
                OutboundAttachment(
                    attachment_type=attachment.attachment_type,
                    content_type=attachment.content_type,
                    url=attachment.url,
                    data=attachment.blob,
                    filename=attachment.filename,
                    size=attachment.size,
                )
                for attachment in model.attachments
            ],
        )


class BaseProvider(ABC):
    """Abstract base class for message transports.

    Providers hold no persisted state; everything they need arrives through
    ``config`` and the message itself.
    """

    name: str = ""
    required_config_keys: Sequence[str] = ()

    @abstractmethod
    def supported_types(self) -> FrozenSet[str]:
        """Return the message types this transport can deliver."""

    @abstractmethod
    async def send(self, message: OutboundMessage, config: Mapping[str, Any]) -> str:
        """Send a message and return the provider's message ID.

        Args:
            message: The message to deliver
            config: Provider configuration (credentials, endpoints, timeouts)

        Returns:
            The provider message ID

        Raises:
            ProviderError: if the message is rejected or the transport fails
        """

    async def get_status(
        self, provider_message_id: str, config: Mapping[str, Any]
    ) -> str:
        """Return the normalized delivery status for a provider message ID.

        Optional capability; the default reports status polling as unsupported.
        """
        raise StatusNotSupportedError(self.name)

    @property
    def supports_status_polling(self) -> bool:
        return type(self).get_status is not BaseProvider.get_status

    def supports(self, message_type: str) -> bool:
        return message_type in self.supported_types()

    def validate_config(self, config: Any) -> None:
        """Structural checks only; never performs network I/O."""
        if not isinstance(config, Mapping):
            raise ProviderConfigError("Configuration must be a map")
        missing = [key for key in self.required_config_keys if not config.get(key)]
        if missing:
            raise ProviderConfigError(
                f"Missing required configuration keys: {', '.join(missing)}"
            )
        self._check_config(config)

    def _check_config(self, config: Mapping[str, Any]) -> None:
        """Provider-specific format checks, run after presence checks."""

    def validate_recipient(self, address: Any, message_type: str) -> None:
        if not self.supports(message_type):
            raise UnsupportedMessageTypeError(self.name, message_type)
        if not is_valid_address(address, message_type):
            raise InvalidRecipientError(
                f"Invalid recipient {address!r}: {address_error(message_type)}"
            )

    def validate_message(self, message: OutboundMessage) -> None:
        """Check a message against this transport's constraints before sending."""
        if not self.supports(message.type):
            raise UnsupportedMessageTypeError(self.name, message.type)
        if not message.recipients:
            raise InvalidRecipientError("Message has no recipients")
        for recipient in message.recipients:
            self.validate_recipient(recipient, message.type)
        if not is_valid_address(message.from_address, message.type):
            raise InvalidRecipientError(
                f"Invalid sender {message.from_address!r}: {address_error(message.type)}"
            )
        if not message.body:
            raise ProviderError("Message body cannot be empty")
        self._check_attachments(message)

    def _check_attachments(self, message: OutboundMessage) -> None:
        """Provider-specific attachment rules."""
