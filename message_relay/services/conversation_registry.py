import hashlib
import json
import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from message_relay.errors import ConversationNotFoundError, ValidationErrors, ValidationFailed
from message_relay.models.api.conversations import (
    ConversationPage,
    ConversationResponse,
    ConversationStats,
)
from message_relay.models.constants import CONVERSATION_DIRECT, CONVERSATION_GROUP
from message_relay.models.db.conversation_model import ConversationModel
from message_relay.repositories.conversation_repository import ConversationRepository
from message_relay.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def normalize_pair(a: str, b: str) -> Tuple[str, str]:
    """Order two addresses lexicographically so (a, b) and (b, a) share an identity."""
    return (a, b) if a <= b else (b, a)


def canonical_participants(participants: Iterable[str]) -> List[str]:
    """Deduplicated, lexicographically sorted participant list."""
    return sorted({participant for participant in participants})


def conversation_key(conversation_type: str, participants: List[str]) -> str:
    """Stable identity digest for a conversation type and canonical participant list."""
    canonical = json.dumps([conversation_type, participants], separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def is_participant(conversation: ConversationResponse, address: str) -> bool:
    return address in conversation.participants


def other_participants(conversation: ConversationResponse, address: str) -> List[str]:
    return [participant for participant in conversation.participants if participant != address]


def display_name(conversation: ConversationResponse) -> str:
    return conversation.display_name


def has_recent_activity(conversation: ConversationResponse, days: int = 7) -> bool:
    if conversation.last_message_at is None:
        return False
    return ensure_utc(conversation.last_message_at) >= utcnow() - timedelta(days=days)


class ConversationRegistry:
    """Canonical conversation identity and rolling conversation metadata.

    Identity is derived from the participant set only, so the same people
    always land in the same thread regardless of who sent the message.
    Creation relies on the unique ``conversation_key`` as the final arbiter:
    a concurrent creator that loses the race re-reads the winner's row.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversation_repo = ConversationRepository(db)

    async def find_or_create_direct(self, a: str, b: str) -> ConversationResponse:
        """Find or create the direct conversation between two participants."""
        conversation = await self._find_or_create_direct_model(a, b)
        return self.conversation_repo.to_response(conversation)

    async def find_or_create_group(self, participants: Iterable[str]) -> ConversationResponse:
        """Find or create the group conversation for a participant set."""
        conversation = await self._find_or_create_group_model(participants)
        return self.conversation_repo.to_response(conversation)

    async def find_or_create_for_participants(
        self, sender: str, recipients: Union[str, Iterable[str]]
    ) -> ConversationResponse:
        """Two unique participants make a direct conversation, more make a group."""
        recipients = [recipients] if isinstance(recipients, str) else list(recipients)
        participants = canonical_participants([sender, *recipients])
        if len(participants) == 2:
            return await self.find_or_create_direct(*participants)
        if len(participants) < 2:
            raise ValidationFailed.single(
                "participants", "cannot start a conversation with yourself"
            )
        return await self.find_or_create_group(participants)

    async def _find_or_create_direct_model(self, a: str, b: str) -> ConversationModel:
        errors = ValidationErrors()
        if not a:
            errors.add("participant_one", "can't be blank")
        if not b:
            errors.add("participant_two", "can't be blank")
        if a and b and a == b:
            errors.add("participant_two", "cannot start a conversation with yourself")
        if errors:
            raise ValidationFailed(errors)

        participants = list(normalize_pair(a, b))
        return await self._find_or_create(CONVERSATION_DIRECT, participants)

    async def _find_or_create_group_model(self, participants: Iterable[str]) -> ConversationModel:
        participants = list(participants)
        errors = ValidationErrors()
        if any(not participant for participant in participants):
            errors.add("participants", "can't contain blank addresses")
        canonical = canonical_participants(p for p in participants if p)
        if len(canonical) < 2:
            errors.add("participants", "must have at least 2 participants")
        if errors:
            raise ValidationFailed(errors)

        return await self._find_or_create(CONVERSATION_GROUP, canonical)

    async def _find_or_create(
        self, conversation_type: str, participants: List[str]
    ) -> ConversationModel:
        key = conversation_key(conversation_type, participants)

        # Step 1: Look up by canonical identity
        existing = await self.conversation_repo.get_model_by_key(key)
        if existing is not None:
            return existing

        # Step 2: Create, falling back to the concurrent winner on conflict
        conversation, created = await self.conversation_repo.insert_or_get(
            conversation_type, participants, key
        )
        if created:
            logger.info(
                "Created %s conversation %s for %d participants",
                conversation_type,
                conversation.id,
                len(participants),
            )
        return conversation

    async def record_message(
        self,
        conversation_id: Union[str, UUID],
        message_timestamp: datetime,
        commit: bool = True,
    ) -> Optional[ConversationResponse]:
        """Count one appended message and advance ``last_message_at``.

        With ``commit=False`` the update joins the caller's transaction and
        nothing is returned.
        """
        await self.conversation_repo.increment_message_count(conversation_id, message_timestamp)
        if not commit:
            return None

        await self.db.commit()
        conversation = await self.conversation_repo.refresh_model(conversation_id)
        return self.conversation_repo.to_response(conversation)

    async def get_conversation(self, conversation_id: Union[str, UUID]) -> ConversationResponse:
        conversation = await self.conversation_repo.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def list_for_participant(
        self, address: str, limit: Optional[int] = 50, offset: Optional[int] = 0
    ) -> List[ConversationResponse]:
        return await self.conversation_repo.list_for_participant(address, limit, offset)

    async def get_recent_conversations(
        self, days: int = 30, limit: int = 50
    ) -> List[ConversationResponse]:
        return await self.conversation_repo.list_recent(days=days, limit=limit)

    async def search_conversations(self, term: str, limit: int = 50) -> List[ConversationResponse]:
        term = term.strip()
        if not term:
            return []
        return await self.conversation_repo.search(term, limit=limit)

    async def get_conversation_stats(self) -> ConversationStats:
        """Totals, 30-day active count and average messages per conversation."""
        total = await self.conversation_repo.count()
        active = await self.conversation_repo.count_active_since(utcnow() - timedelta(days=30))
        average = await self.conversation_repo.average_message_count()
        return ConversationStats(
            total=total,
            active_last_30_days=active,
            average_messages=round(average, 1),
        )

    async def get_most_active_conversations(self, limit: int = 10) -> List[ConversationResponse]:
        return await self.conversation_repo.most_active(limit=limit)

    async def count_archivable_conversations(self, days: int = 90) -> int:
        """Conversations idle for ``days`` or that never received a message."""
        return await self.conversation_repo.count_inactive_since(utcnow() - timedelta(days=days))

    async def list_conversations_paginated(
        self, page: int = 1, per_page: int = 20, participant: Optional[str] = None
    ) -> ConversationPage:
        if page < 1 or per_page < 1:
            errors = ValidationErrors()
            if page < 1:
                errors.add("page", "must be greater than 0")
            if per_page < 1:
                errors.add("per_page", "must be greater than 0")
            raise ValidationFailed(errors)

        total_count = await self.conversation_repo.count(participant=participant)
        conversations = await self.conversation_repo.list_conversations(
            limit=per_page, offset=(page - 1) * per_page, participant=participant
        )
        total_pages = math.ceil(total_count / per_page) if total_count else 0
        return ConversationPage(
            conversations=conversations,
            total_count=total_count,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
