import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    LargeBinary,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship

from message_relay.database import Base
from message_relay.utils import utcnow


class AttachmentModel(Base):
    """SQLAlchemy model for attachments table."""

    __tablename__ = "attachments"
    __table_args__ = (
        CheckConstraint(
            "(url IS NULL) <> (blob IS NULL)", name="attachments_url_xor_blob"
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = Column(String(2048))
    blob = Column(LargeBinary)
    attachment_type = Column(String(20), nullable=False)
    filename = Column(String(255))
    content_type = Column(String(255))
    size = Column(BigInteger)
    checksum = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    message = relationship("MessageModel", back_populates="attachments")

    @property
    def storage_type(self) -> str:
        return "url" if self.url else "blob"
