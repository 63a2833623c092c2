from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from message_relay.addresses import address_error, is_valid_address
from message_relay.errors import ValidationErrors, ValidationFailed
from message_relay.models.api.attachments import (
    AttachmentCreate,
    AttachmentResponse,
    coerce_attachment,
)
from message_relay.models.api.common import UtcDatetime, validation_errors_from_pydantic
from message_relay.models.constants import (
    BODY_LIMITS,
    DIRECTION_INBOUND,
    PHONE_MESSAGE_TYPES,
    STATUS_PENDING,
    STATUS_RECEIVED,
)
from message_relay.sanitizers import sanitize_body
from message_relay.utils import utcnow

MessageType = Literal["sms", "mms", "email"]
Direction = Literal["inbound", "outbound"]
MessageStatus = Literal[
    "pending", "queued", "processing", "sent", "delivered", "failed", "received"
]

_TYPE_LABELS = {"sms": "SMS", "mms": "MMS", "email": "Email"}


class MessageCreate(BaseModel):
    """Validated message attributes.

    Field order matters: later validators read ``type`` and ``direction``
    from the already-validated data.
    """

    type: MessageType
    direction: Direction = "outbound"
    from_address: str = Field(..., alias="from")
    to: Union[str, List[str]]
    body: str
    status: Optional[MessageStatus] = Field(default=None, validate_default=True)
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    messaging_provider_id: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("from_address")
    @classmethod
    def _check_from(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip()
        message_type = info.data.get("type")
        if message_type and not is_valid_address(value, message_type):
            raise ValueError(address_error(message_type))
        return value

    @field_validator("to")
    @classmethod
    def _check_to(
        cls, value: Union[str, List[str]], info: ValidationInfo
    ) -> Union[str, List[str]]:
        if isinstance(value, list):
            if not value:
                raise ValueError("must have at least one recipient")
            value = [address.strip() for address in value]
            addresses: Iterable[str] = value
        else:
            value = value.strip()
            addresses = [value]

        message_type = info.data.get("type")
        if message_type and not all(
            is_valid_address(address, message_type) for address in addresses
        ):
            raise ValueError(address_error(message_type))
        return value

    @field_validator("body")
    @classmethod
    def _sanitize_body(cls, value: str, info: ValidationInfo) -> str:
        message_type = info.data.get("type")
        value = sanitize_body(message_type or "sms", value)
        if not value:
            raise ValueError("cannot be empty")
        if message_type:
            limit = BODY_LIMITS[message_type]
            if len(value) > limit:
                raise ValueError(
                    f"{_TYPE_LABELS[message_type]} body cannot exceed {limit} characters"
                )
        return value

    @field_validator("status")
    @classmethod
    def _default_status(cls, value: Optional[str], info: ValidationInfo) -> str:
        inbound = info.data.get("direction") == DIRECTION_INBOUND
        expected = STATUS_RECEIVED if inbound else STATUS_PENDING
        if value is None:
            return expected
        if value != expected:
            raise ValueError(
                f"{'inbound' if inbound else 'outbound'} messages must start as {expected}"
            )
        return value

    @property
    def recipients(self) -> List[str]:
        return list(self.to) if isinstance(self.to, list) else [self.to]


def validate_message(
    message_type: str,
    attrs: Mapping[str, Any],
    attachments: Optional[Iterable[Any]] = None,
) -> Tuple[MessageCreate, List[AttachmentCreate]]:
    """Run the message and attachment pipelines, collecting every error.

    ``message_type`` always wins over any ``type`` present in ``attrs``.
    Raises ValidationFailed with a field -> messages map.
    """
    errors = ValidationErrors()
    data = dict(attrs)
    data["type"] = message_type

    message: Optional[MessageCreate] = None
    try:
        message = MessageCreate.model_validate(data)
    except ValidationError as exc:
        errors.merge(validation_errors_from_pydantic(exc))

    validated: List[AttachmentCreate] = []
    attachments = list(attachments or [])
    if attachments and not supports_attachments(message_type):
        errors.add(
            "attachments",
            f"{_TYPE_LABELS.get(message_type, message_type)} messages cannot have attachments",
        )
    for index, raw in enumerate(attachments):
        try:
            validated.append(AttachmentCreate.model_validate(coerce_attachment(raw)))
        except ValidationError as exc:
            errors.merge(validation_errors_from_pydantic(exc, prefix=f"attachments.{index}"))

    if errors or message is None:
        raise ValidationFailed(errors)
    return message, validated


def is_phone_message(message_type: str) -> bool:
    return message_type in PHONE_MESSAGE_TYPES


def is_email_message(message_type: str) -> bool:
    return message_type == "email"


def supports_attachments(message_type: str) -> bool:
    return message_type in ("mms", "email")


def character_limit(message_type: str) -> int:
    return BODY_LIMITS[message_type]


class SendMessageRequest(BaseModel):
    """Request model for sending a message."""

    from_address: str = Field(..., alias="from", description="Sender address")
    to: Union[str, List[str]] = Field(..., description="Recipient address(es)")
    body: str = Field(..., description="Message content")
    attachments: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Attachments referenced by URL or carried inline"
    )
    timestamp: Optional[UtcDatetime] = Field(default=None, description="Message timestamp")
    queue: Optional[str] = None
    delay_seconds: Optional[int] = Field(default=None, ge=0)
    scheduled_at: Optional[UtcDatetime] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(populate_by_name=True)

    def message_attrs(self) -> Dict[str, Any]:
        attrs: Dict[str, Any] = {
            "from": self.from_address,
            "to": self.to,
            "body": self.body,
            "direction": "outbound",
        }
        if self.timestamp is not None:
            attrs["timestamp"] = self.timestamp
        return attrs


class MessageResponse(BaseModel):
    """Response model for message data."""

    id: UUID
    conversation_id: UUID
    type: str  # 'sms', 'mms', 'email'
    to: Union[str, List[str]]
    from_address: str
    body: str
    status: str
    direction: str  # 'inbound' or 'outbound'
    timestamp: UtcDatetime
    messaging_provider_id: Optional[str] = None
    provider_name: Optional[str] = None
    delivery_attempts: int = 0
    queued_at: Optional[UtcDatetime] = None
    sent_at: Optional[UtcDatetime] = None
    delivered_at: Optional[UtcDatetime] = None
    failed_at: Optional[UtcDatetime] = None
    failure_reason: Optional[str] = None
    attachments: List[AttachmentResponse] = Field(default_factory=list)
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageStatusResponse(BaseModel):
    message_id: UUID
    status: str
    provider_name: Optional[str]
    provider_status: str
