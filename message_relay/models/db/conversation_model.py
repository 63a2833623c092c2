import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from message_relay.database import Base
from message_relay.utils import utcnow


class ConversationModel(Base):
    """SQLAlchemy model for conversations table."""

    __tablename__ = "conversations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_type = Column(String(10), nullable=False, default="direct")
    # Legacy pair; for groups the first two sorted participants are mirrored here
    participant_one = Column(String(320), nullable=False, index=True)
    participant_two = Column(String(320), nullable=False, index=True)
    # Digest of (type, canonical participants); the uniqueness arbiter for find-or-create
    conversation_key = Column(String(64), nullable=False, unique=True)
    last_message_at = Column(DateTime(timezone=True), index=True)
    message_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    participants = relationship(
        "ConversationParticipantModel",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ConversationParticipantModel.position",
    )

    # Constraints (enforced by CHECK constraints in the initial migration)
    # conversation_type IN ('direct', 'group')
    # participant_one < participant_two

    @property
    def participant_addresses(self) -> list:
        return [participant.address for participant in self.participants]


class ConversationParticipantModel(Base):
    """SQLAlchemy model for conversation_participants table."""

    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "address", name="uq_conversation_participant"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    address = Column(String(320), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # index in canonical order

    # Relationships
    conversation = relationship("ConversationModel", back_populates="participants")
