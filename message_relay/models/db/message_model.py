import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from message_relay.database import Base
from message_relay.utils import utcnow


class MessageModel(Base):
    """SQLAlchemy model for messages table."""

    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(10), nullable=False)
    to = Column(JSON, nullable=False)  # single address or ordered list
    from_address = Column(String(320), nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    direction = Column(String(10), nullable=False, default="outbound")
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messaging_provider_id = Column(String(255))
    provider_name = Column(String(50))
    delivery_attempts = Column(Integer, nullable=False, default=0)

    queued_at = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    failure_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    attachments = relationship(
        "AttachmentModel",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="AttachmentModel.created_at",
    )

    # Constraints (enforced by CHECK constraints in the initial migration)
    # type IN ('sms', 'mms', 'email')
    # direction IN ('inbound', 'outbound')
    # status IN ('pending', 'queued', 'processing', 'sent', 'delivered', 'failed', 'received')
