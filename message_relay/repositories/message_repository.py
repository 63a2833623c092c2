from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from message_relay.models.api.attachments import AttachmentCreate
from message_relay.models.api.messages import MessageCreate, MessageResponse
from message_relay.models.db.attachment_model import AttachmentModel
from message_relay.models.db.message_model import MessageModel
from message_relay.repositories.base_repository import BaseRepository, as_uuid


class MessageRepository(BaseRepository[MessageModel, MessageResponse]):
    """Repository for message and attachment rows."""

    response_class = MessageResponse

    def __init__(self, db: AsyncSession):
        super().__init__(db, MessageModel)

    def build(
        self,
        conversation_id: UUID,
        message: MessageCreate,
        attachments: Optional[List[AttachmentCreate]] = None,
    ) -> MessageModel:
        """Build (but do not stage) a message row with its attachments."""
        return MessageModel(
            conversation_id=conversation_id,
            type=message.type,
            to=message.to,
            from_address=message.from_address,
            body=message.body,
            status=message.status,
            direction=message.direction,
            timestamp=message.timestamp,
            messaging_provider_id=message.messaging_provider_id,
            delivery_attempts=0,
            attachments=[
                AttachmentModel(
                    url=attachment.url,
                    blob=attachment.blob,
                    attachment_type=attachment.attachment_type,
                    filename=attachment.filename,
                    content_type=attachment.content_type,
                    size=attachment.size,
                    checksum=attachment.checksum,
                )
                for attachment in attachments or []
            ],
        )

    async def list_for_conversation(
        self,
        conversation_id: Union[str, UUID],
        limit: Optional[int] = 100,
        offset: Optional[int] = 0,
        direction: Optional[str] = None,
    ) -> List[MessageResponse]:
        """List messages for a conversation ordered by timestamp."""
        query = select(self.model_class).where(
            self.model_class.conversation_id == as_uuid(conversation_id)
        )

        if direction:
            query = query.where(self.model_class.direction == direction)

        query = query.order_by(self.model_class.timestamp.asc())

        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)

        result = await self.db.execute(query)
        return [self._to_pydantic(db_model) for db_model in result.scalars().all()]

