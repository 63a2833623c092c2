"""Exception hierarchy for the message relay core."""

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple


class ValidationErrors:
    """Multi-map of field name to error messages.

    Collects every validation failure rather than stopping at the first one.
    """

    def __init__(self) -> None:
        self._errors: "OrderedDict[str, List[str]]" = OrderedDict()

    def add(self, field: str, message: str) -> None:
        messages = self._errors.setdefault(field, [])
        if message not in messages:
            messages.append(message)

    def merge(self, other: "ValidationErrors", prefix: Optional[str] = None) -> None:
        for field, messages in other.items():
            key = f"{prefix}.{field}" if prefix else field
            for message in messages:
                self.add(key, message)

    def get(self, field: str) -> List[str]:
        return list(self._errors.get(field, []))

    def items(self) -> Iterable[Tuple[str, List[str]]]:
        return self._errors.items()

    def to_dict(self) -> Dict[str, List[str]]:
        return {field: list(messages) for field, messages in self._errors.items()}

    def __contains__(self, field: object) -> bool:
        return field in self._errors

    def __bool__(self) -> bool:
        return bool(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __repr__(self) -> str:
        return f"ValidationErrors({self.to_dict()!r})"


class MessageRelayError(Exception):
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(MessageRelayError):
    status_code = 422
    error_code = "VALIDATION_FAILED"

    def __init__(self, errors: ValidationErrors, message: str = "Validation failed") -> None:
        super().__init__(message, {"errors": errors.to_dict()})
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        errors = ValidationErrors()
        errors.add(field, message)
        return cls(errors)


class InvalidStatusTransition(MessageRelayError):
    status_code = 409
    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Cannot transition message from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class ProviderError(MessageRelayError):
    status_code = 400
    error_code = "PROVIDER_ERROR"
    retryable = True


class NoSuitableProviderError(ProviderError):
    error_code = "NO_SUITABLE_PROVIDER"

    def __init__(self, message_type: str) -> None:
        super().__init__(f"No suitable provider found for {message_type} messages")
        self.message_type = message_type


class UnknownProviderError(ProviderError):
    error_code = "UNKNOWN_PROVIDER"

    def __init__(self, provider_name: str) -> None:
        super().__init__(f"Unknown provider: {provider_name}")
        self.provider_name = provider_name


class ProviderConfigError(ProviderError):
    error_code = "INVALID_PROVIDER_CONFIG"


class UnsupportedMessageTypeError(ProviderError):
    error_code = "UNSUPPORTED_MESSAGE_TYPE"

    def __init__(self, provider_name: str, message_type: str) -> None:
        super().__init__(f"Provider {provider_name} does not support {message_type} messages")
        self.provider_name = provider_name
        self.message_type = message_type


class InvalidRecipientError(ProviderError):
    error_code = "INVALID_RECIPIENT"


class StatusNotSupportedError(ProviderError):
    error_code = "STATUS_NOT_SUPPORTED"

    def __init__(self, provider_name: str) -> None:
        super().__init__(f"Provider {provider_name} does not support status polling")
        self.provider_name = provider_name


class ProviderTransportError(ProviderError):
    status_code = 502
    error_code = "PROVIDER_TRANSPORT_ERROR"


class ProviderConfigurationErrors(ProviderError):
    """Aggregated configuration failures, one ``(provider_name, reason)`` per provider."""

    error_code = "INVALID_PROVIDER_CONFIGURATIONS"

    def __init__(self, errors: List[Tuple[str, str]]) -> None:
        summary = "; ".join(f"{name}: {reason}" for name, reason in errors)
        super().__init__(
            f"Invalid provider configurations: {summary}",
            {"errors": [{"provider": name, "reason": reason} for name, reason in errors]},
        )
        self.errors = errors


class NotFoundError(MessageRelayError):
    status_code = 404
    error_code = "NOT_FOUND"


class MessageNotFoundError(NotFoundError):
    error_code = "MESSAGE_NOT_FOUND"
    retryable = False

    def __init__(self, message_id: Any) -> None:
        super().__init__(f"Message {message_id} not found", {"message_id": str(message_id)})
        self.message_id = message_id


class ConversationNotFoundError(NotFoundError):
    error_code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: Any) -> None:
        super().__init__(
            f"Conversation {conversation_id} not found",
            {"conversation_id": str(conversation_id)},
        )
        self.conversation_id = conversation_id


class DeliveryFailedError(MessageRelayError):
    """Raised from the delivery job body so the scheduler can retry."""

    status_code = 502
    error_code = "DELIVERY_FAILED"
    retryable = True

    def __init__(self, message_id: Any, reason: str) -> None:
        super().__init__(reason, {"message_id": str(message_id)})
        self.message_id = message_id
        self.reason = reason
