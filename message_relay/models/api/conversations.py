from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from message_relay.models.api.common import UtcDatetime


class ConversationResponse(BaseModel):
    """Response model for conversation data."""

    id: UUID
    conversation_type: str  # 'direct' or 'group'
    participant_one: str
    participant_two: str
    participants: List[str]  # canonical (sorted, unique) participant addresses
    message_count: int
    last_message_at: Optional[UtcDatetime]
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_name(self) -> str:
        if self.conversation_type == "group":
            return ", ".join(self.participants)
        return f"{self.participant_one} ↔ {self.participant_two}"


class ConversationStats(BaseModel):
    total: int
    active_last_30_days: int
    average_messages: float


class ConversationPage(BaseModel):
    conversations: List[ConversationResponse]
    total_count: int
    page: int
    per_page: int
    total_pages: int
    has_next: bool
    has_prev: bool
