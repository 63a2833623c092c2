from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import DateTime, case, func, literal, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from message_relay.errors import ConversationNotFoundError
from message_relay.models.api.conversations import ConversationResponse
from message_relay.models.db.conversation_model import (
    ConversationModel,
    ConversationParticipantModel,
)
from message_relay.repositories.base_repository import BaseRepository, as_uuid
from message_relay.utils import ensure_utc, utcnow


class ConversationRepository(BaseRepository[ConversationModel, ConversationResponse]):
    """Repository for conversation operations."""

    response_class = ConversationResponse

    def __init__(self, db: AsyncSession):
        super().__init__(db, ConversationModel)

    async def get_model_by_key(self, conversation_key: str) -> Optional[ConversationModel]:
        query = (
            select(self.model_class)
            .where(self.model_class.conversation_key == conversation_key)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def insert_or_get(
        self,
        conversation_type: str,
        participants: List[str],
        conversation_key: str,
    ) -> Tuple[ConversationModel, bool]:
        """Insert a conversation, or return the row that won a concurrent insert.

        Returns ``(conversation, created)``.
        """
        db_model = ConversationModel(
            conversation_type=conversation_type,
            participant_one=participants[0],
            participant_two=participants[1],
            conversation_key=conversation_key,
            message_count=0,
            last_message_at=None,
            participants=[
                ConversationParticipantModel(address=address, position=position)
                for position, address in enumerate(participants)
            ],
        )
        self.db.add(db_model)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost the race; the unique key now points at the winner's row
            await self.db.rollback()
            existing = await self.get_model_by_key(conversation_key)
            if existing is None:
                raise
            return existing, False
        return db_model, True

    async def increment_message_count(
        self, conversation_id: Union[str, UUID], timestamp: datetime
    ) -> None:
        """Atomically bump ``message_count`` and advance ``last_message_at``.

        A single UPDATE relative to the stored values; ``last_message_at``
        only ever moves forward. Does not commit.
        """
        ts = literal(ensure_utc(timestamp), type_=DateTime(timezone=True))
        stmt = (
            update(self.model_class)
            .where(self.model_class.id == as_uuid(conversation_id))
            .values(
                message_count=self.model_class.message_count + 1,
                last_message_at=case(
                    (
                        or_(
                            self.model_class.last_message_at.is_(None),
                            self.model_class.last_message_at < ts,
                        ),
                        ts,
                    ),
                    else_=self.model_class.last_message_at,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise ConversationNotFoundError(conversation_id)

    async def refresh_model(self, conversation_id: Union[str, UUID]) -> ConversationModel:
        query = (
            select(self.model_class)
            .where(self.model_class.id == as_uuid(conversation_id))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        db_model = result.scalar_one_or_none()
        if db_model is None:
            raise ConversationNotFoundError(conversation_id)
        return db_model

    def _participant_filter(self, condition: Any) -> Any:
        return self.model_class.id.in_(
            select(ConversationParticipantModel.conversation_id).where(condition)
        )

    def _recent_first(self) -> Tuple[Any, Any]:
        return (
            self.model_class.last_message_at.desc().nulls_last(),
            self.model_class.created_at.desc(),
        )

    async def list_for_participant(
        self, address: str, limit: Optional[int] = 50, offset: Optional[int] = 0
    ) -> List[ConversationResponse]:
        """Conversations that include ``address``, most recent activity first."""
        query = (
            select(self.model_class)
            .where(self._participant_filter(ConversationParticipantModel.address == address))
            .order_by(*self._recent_first())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return await self._fetch(query)

    async def list_recent(self, days: int = 30, limit: int = 50) -> List[ConversationResponse]:
        threshold = utcnow() - timedelta(days=days)
        query = (
            select(self.model_class)
            .where(self.model_class.last_message_at >= threshold)
            .order_by(*self._recent_first())
            .limit(limit)
        )
        return await self._fetch(query)

    async def search(self, term: str, limit: int = 50) -> List[ConversationResponse]:
        """Case-insensitive substring match on any participant address."""
        pattern = f"%{term}%"
        query = (
            select(self.model_class)
            .where(self._participant_filter(ConversationParticipantModel.address.ilike(pattern)))
            .order_by(*self._recent_first())
            .limit(limit)
        )
        return await self._fetch(query)

    async def most_active(self, limit: int = 10) -> List[ConversationResponse]:
        query = (
            select(self.model_class)
            .where(self.model_class.message_count > 0)
            .order_by(self.model_class.message_count.desc(), *self._recent_first())
            .limit(limit)
        )
        return await self._fetch(query)

    async def count(self, participant: Optional[str] = None) -> int:
        query = select(func.count()).select_from(self.model_class)
        if participant:
            query = query.where(
                self._participant_filter(ConversationParticipantModel.address == participant)
            )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def count_active_since(self, threshold: datetime) -> int:
        query = (
            select(func.count())
            .select_from(self.model_class)
            .where(self.model_class.last_message_at >= threshold)
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def count_inactive_since(self, threshold: datetime) -> int:
        query = (
            select(func.count())
            .select_from(self.model_class)
            .where(
                or_(
                    self.model_class.last_message_at < threshold,
                    self.model_class.last_message_at.is_(None),
                )
            )
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def average_message_count(self) -> float:
        result = await self.db.execute(select(func.avg(self.model_class.message_count)))
        average = result.scalar_one_or_none()
        return float(average or 0)

    async def list_conversations(
        self,
        limit: Optional[int] = 50,
        offset: Optional[int] = 0,
        participant: Optional[str] = None,
    ) -> List[ConversationResponse]:
        """List conversations with optional participant filtering."""
        query = select(self.model_class)
        if participant:
            query = query.where(
                self._participant_filter(ConversationParticipantModel.address == participant)
            )
        query = query.order_by(*self._recent_first())
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return await self._fetch(query)

    async def _fetch(self, query: Any) -> List[ConversationResponse]:
        result = await self.db.execute(query)
        return [self._to_pydantic(db_model) for db_model in result.scalars().all()]

    def _to_pydantic(self, db_model: Any) -> ConversationResponse:
        """Convert SQLAlchemy ConversationModel to Pydantic ConversationResponse."""
        return ConversationResponse(
            id=db_model.id,
            conversation_type=db_model.conversation_type,
            participant_one=db_model.participant_one,
            participant_two=db_model.participant_two,
            participants=db_model.participant_addresses,
            message_count=db_model.message_count,
            last_message_at=db_model.last_message_at,
            created_at=db_model.created_at,
            updated_at=db_model.updated_at,
        )
