import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from message_relay.errors import (
    MessageNotFoundError,
    ProviderConfigurationErrors,
    ProviderError,
    ValidationFailed,
)
from message_relay.models.api.messages import (
    MessageResponse,
    MessageStatusResponse,
    validate_message,
)
from message_relay.models.api.providers import ProviderInfo
from message_relay.models.constants import DIRECTION_OUTBOUND
from message_relay.providers.provider_router import ProviderRouter
from message_relay.repositories.message_repository import MessageRepository
from message_relay.services.conversation_registry import ConversationRegistry
from message_relay.workers.jobs import EnqueueOptions
from message_relay.workers.message_delivery_worker import MessageDeliveryWorker

logger = logging.getLogger(__name__)


class MessageService:
    """Create, send and inspect messages.

    Outbound sends are persist-first: the message is stored as ``pending``
    and then handed to the delivery worker, which talks to providers from a
    background job.
    """

    def __init__(
        self,
        db: AsyncSession,
        router: ProviderRouter,
        worker: Optional[MessageDeliveryWorker] = None,
    ):
        self.db = db
        self.router = router
        self.worker = worker
        self.message_repo = MessageRepository(db)
        self.registry = ConversationRegistry(db)

    async def create_message(
        self,
        message_type: str,
        attrs: Mapping[str, Any],
        attachments: Optional[Iterable[Any]] = None,
    ) -> MessageResponse:
        """
        Store a message in its conversation:
        1. Validate message and attachments, collecting every error
        2. Find or create the conversation for sender + recipients
        3. Insert message + attachments and bump the conversation in one transaction
        """
        # Step 1: Validate
        message, validated_attachments = validate_message(message_type, attrs, attachments)

        # Step 2: Attach to a conversation
        conversation = await self.registry.find_or_create_for_participants(
            message.from_address, message.recipients
        )

        # Step 3: Insert message and update conversation atomically
        db_message = self.message_repo.add(
            self.message_repo.build(conversation.id, message, validated_attachments)
        )
        try:
            await self.db.flush()
            await self.registry.record_message(conversation.id, message.timestamp, commit=False)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Stored %s %s message %s in conversation %s",
            message.direction,
            message.type,
            db_message.id,
            conversation.id,
        )
        return self.message_repo.to_response(db_message)

    async def create_sms_message(self, attrs: Mapping[str, Any]) -> MessageResponse:
        return await self.create_message("sms", attrs)

    async def create_mms_message(
        self, attrs: Mapping[str, Any], attachments: Optional[Iterable[Any]] = None
    ) -> MessageResponse:
        return await self.create_message("mms", attrs, attachments)

    async def create_email_message(
        self, attrs: Mapping[str, Any], attachments: Optional[Iterable[Any]] = None
    ) -> MessageResponse:
        return await self.create_message("email", attrs, attachments)

    async def send_outbound_message(
        self,
        attrs: Mapping[str, Any],
        options: Optional[EnqueueOptions] = None,
        attachments: Optional[Iterable[Any]] = None,
    ) -> MessageResponse:
        """Persist an outbound message as pending, then enqueue its delivery.

        ``attrs`` must carry ``type``; the returned message is ``queued``.
        """
        if self.worker is None:
            raise RuntimeError("MessageService needs a delivery worker to send messages")

        message_type = attrs.get("type")
        if not isinstance(message_type, str):
            raise ValidationFailed.single("type", "can't be blank")

        options = options or EnqueueOptions()
        options.resolve_scheduled_at()

        outbound = dict(attrs)
        outbound["direction"] = DIRECTION_OUTBOUND
        message = await self.create_message(message_type, outbound, attachments)

        await self.worker.enqueue_delivery(message.id, options)
        refreshed = await self.get_message(message.id)
        return refreshed

    async def send_sms(
        self, attrs: Mapping[str, Any], options: Optional[EnqueueOptions] = None
    ) -> MessageResponse:
        return await self.send_outbound_message({**attrs, "type": "sms"}, options)

    async def send_mms(
        self,
        attrs: Mapping[str, Any],
        attachments: Optional[Iterable[Any]] = None,
        options: Optional[EnqueueOptions] = None,
    ) -> MessageResponse:
        return await self.send_outbound_message({**attrs, "type": "mms"}, options, attachments)

    async def send_email(
        self,
        attrs: Mapping[str, Any],
        attachments: Optional[Iterable[Any]] = None,
        options: Optional[EnqueueOptions] = None,
    ) -> MessageResponse:
        return await self.send_outbound_message({**attrs, "type": "email"}, options, attachments)

    async def get_message(self, message_id: Union[str, UUID]) -> MessageResponse:
        db_message = await self._get_model(message_id)
        return self.message_repo.to_response(db_message)

    async def list_conversation_messages(
        self,
        conversation_id: Union[str, UUID],
        limit: Optional[int] = 100,
        offset: Optional[int] = 0,
        direction: Optional[str] = None,
    ) -> List[MessageResponse]:
        await self.registry.get_conversation(conversation_id)
        return await self.message_repo.list_for_conversation(
            conversation_id, limit=limit, offset=offset, direction=direction
        )

    async def get_outbound_status(self, message_id: Union[str, UUID]) -> MessageStatusResponse:
        """Ask the accepting provider for the current delivery status."""
        db_message = await self._get_model(message_id)
        if not db_message.messaging_provider_id or not db_message.provider_name:
            raise ProviderError("No provider message ID found")

        provider_status = await self.router.get_status(
            db_message.messaging_provider_id, db_message.provider_name
        )
        return MessageStatusResponse(
            message_id=db_message.id,
            status=db_message.status,
            provider_name=db_message.provider_name,
            provider_status=provider_status,
        )

    async def refresh_outbound_status(self, message_id: Union[str, UUID]) -> MessageResponse:
        """Poll the provider and record ``delivered``/``failed`` reports."""
        if self.worker is None:
            raise RuntimeError("MessageService needs a delivery worker to record statuses")

        status = await self.get_outbound_status(message_id)
        await self.worker.record_provider_status(message_id, status.provider_status)
        return await self.get_message(message_id)

    def list_providers(self) -> List[ProviderInfo]:
        return [ProviderInfo(**info) for info in self.router.list_providers().values()]

    def validate_provider_configs(
        self, configs: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> List[Dict[str, str]]:
        """Return every configuration problem as ``{"provider", "reason"}`` entries."""
        try:
            self.router.validate_configurations(configs)
        except ProviderConfigurationErrors as e:
            return [{"provider": name, "reason": reason} for name, reason in e.errors]
        return []

    async def _get_model(self, message_id: Union[str, UUID]) -> Any:
        try:
            db_message = await self.message_repo.get_model(message_id)
        except ValueError:
            db_message = None
        if db_message is None:
            raise MessageNotFoundError(message_id)
        return db_message
