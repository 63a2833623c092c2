import hashlib
import re
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from message_relay.models.api.common import UtcDatetime
from message_relay.models.constants import MAX_ATTACHMENT_SIZE

AttachmentType = Literal["image", "document", "video", "audio", "archive", "text", "other"]

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_CONTENT_TYPE_RE = re.compile(r"^[a-z-]+/[a-z0-9.\-+]+$", re.IGNORECASE)
_FILENAME_RE = re.compile(r'^[^/\\<>:"|?*]+$')


class AttachmentCreate(BaseModel):
    """Validated attachment input. Exactly one of ``url`` or ``blob`` is set."""

    url: Optional[str] = Field(default=None, max_length=2048)
    blob: Optional[bytes] = Field(default=None, validate_default=True)
    attachment_type: AttachmentType
    filename: Optional[str] = Field(default=None, max_length=255)
    content_type: Optional[str] = Field(default=None, max_length=255)
    size: Optional[int] = Field(default=None, gt=0, le=MAX_ATTACHMENT_SIZE)
    checksum: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _URL_RE.match(value):
            raise ValueError("must be a valid HTTP/HTTPS URL")
        return value

    @field_validator("blob")
    @classmethod
    def _check_source(cls, value: Optional[bytes], info: ValidationInfo) -> Optional[bytes]:
        if "url" not in info.data:
            # url already failed its own validation
            return value
        url = info.data["url"]
        if url and value is not None:
            raise ValueError("cannot have both URL and blob")
        if not url and value is None:
            raise ValueError("must provide either URL or blob")
        return value

    @field_validator("content_type")
    @classmethod
    def _check_content_type(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _CONTENT_TYPE_RE.match(value):
            raise ValueError("must be a valid MIME type")
        return value

    @field_validator("filename")
    @classmethod
    def _check_filename(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _FILENAME_RE.match(value):
            raise ValueError("contains invalid characters")
        return value

    @model_validator(mode="after")
    def _compute_blob_metadata(self) -> "AttachmentCreate":
        if self.blob is not None:
            self.size = len(self.blob)
            if self.size == 0:
                raise ValueError("blob cannot be empty")
            if self.size > MAX_ATTACHMENT_SIZE:
                raise ValueError("size must be at most 50MB")
            self.checksum = hashlib.sha256(self.blob).hexdigest()
        return self

    @property
    def storage_type(self) -> str:
        return "url" if self.url else "blob"

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").lower().startswith("image/")


def human_size(size: Optional[int]) -> str:
    """Format a byte count as B/KB/MB/GB with one decimal place."""
    if size is None:
        return "Unknown"
    if size < 1024:
        return f"{size} B"
    if size < 1024 ** 2:
        return f"{round(size / 1024, 1)} KB"
    if size < 1024 ** 3:
        return f"{round(size / 1024 ** 2, 1)} MB"
    return f"{round(size / 1024 ** 3, 1)} GB"


class AttachmentResponse(BaseModel):
    """Response model for attachment metadata (inline content is not echoed)."""

    id: UUID
    message_id: UUID
    url: Optional[str]
    storage_type: str
    attachment_type: str
    filename: Optional[str]
    content_type: Optional[str]
    size: Optional[int]
    checksum: Optional[str]
    created_at: Optional[UtcDatetime]

    model_config = ConfigDict(from_attributes=True)


def coerce_attachment(value: Any) -> Any:
    """Accept already-validated attachments as well as raw mappings."""
    if isinstance(value, AttachmentCreate):
        return value.model_dump()
    return value
