"""FastAPI dependencies that expose the objects built in the app lifespan."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from message_relay.database import get_db
from message_relay.providers.provider_router import ProviderRouter
from message_relay.services.conversation_registry import ConversationRegistry
from message_relay.services.inbound_webhook_service import InboundWebhookService
from message_relay.services.message_service import MessageService
from message_relay.workers.message_delivery_worker import MessageDeliveryWorker


def get_provider_router(request: Request) -> ProviderRouter:
    return request.app.state.provider_router


def get_delivery_worker(request: Request) -> MessageDeliveryWorker:
    return request.app.state.delivery_worker


def get_message_service(
    db: AsyncSession = Depends(get_db),
    router: ProviderRouter = Depends(get_provider_router),
    worker: MessageDeliveryWorker = Depends(get_delivery_worker),
) -> MessageService:
    return MessageService(db, router, worker)


def get_conversation_registry(db: AsyncSession = Depends(get_db)) -> ConversationRegistry:
    return ConversationRegistry(db)


def get_inbound_webhook_service(
    db: AsyncSession = Depends(get_db),
    router: ProviderRouter = Depends(get_provider_router),
) -> InboundWebhookService:
    return InboundWebhookService(db, router)
