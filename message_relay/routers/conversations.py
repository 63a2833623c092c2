from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from message_relay.dependencies import get_conversation_registry, get_message_service
from message_relay.models.api.conversations import (
    ConversationPage,
    ConversationResponse,
    ConversationStats,
)
from message_relay.models.api.messages import MessageResponse
from message_relay.services.conversation_registry import ConversationRegistry
from message_relay.services.message_service import MessageService

router = APIRouter()


@router.get("", response_model=ConversationPage)
async def list_conversations(
    page: int = Query(1, description="Page number", ge=1),
    per_page: int = Query(20, description="Conversations per page", ge=1, le=1000),
    participant: Optional[str] = Query(None, description="Filter by participant address"),
    registry: ConversationRegistry = Depends(get_conversation_registry),
) -> ConversationPage:
    """
    List conversations, most recent activity first.

    Query parameters:
    - page: Page number (default: 1)
    - per_page: Conversations per page (default: 20, max: 1000)
    - participant: Filter conversations by participant address
    """
    return await registry.list_conversations_paginated(
        page=page, per_page=per_page, participant=participant
    )


@router.get("/search", response_model=List[ConversationResponse])
async def search_conversations(
    q: str = Query(..., min_length=1, description="Participant address fragment"),
    limit: int = Query(50, ge=1, le=1000),
    registry: ConversationRegistry = Depends(get_conversation_registry),
) -> List[ConversationResponse]:
    return await registry.search_conversations(q, limit=limit)


@router.get("/stats", response_model=ConversationStats)
async def conversation_stats(
    registry: ConversationRegistry = Depends(get_conversation_registry),
) -> ConversationStats:
    return await registry.get_conversation_stats()


@router.get("/most-active", response_model=List[ConversationResponse])
async def most_active_conversations(
    limit: int = Query(10, ge=1, le=100),
    registry: ConversationRegistry = Depends(get_conversation_registry),
) -> List[ConversationResponse]:
    return await registry.get_most_active_conversations(limit=limit)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    registry: ConversationRegistry = Depends(get_conversation_registry),
) -> ConversationResponse:
    return await registry.get_conversation(conversation_id)


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def get_conversation_messages(
    conversation_id: UUID,
    limit: Optional[int] = Query(
        100, description="Maximum number of messages to return", ge=1, le=1000
    ),
    offset: Optional[int] = Query(0, description="Number of messages to skip", ge=0),
    direction: Optional[str] = Query(
        None, description="Filter by message direction ('inbound', 'outbound')"
    ),
    service: MessageService = Depends(get_message_service),
) -> List[MessageResponse]:
    """Get the messages of a conversation in timestamp order."""
    return await service.list_conversation_messages(
        conversation_id, limit=limit, offset=offset, direction=direction
    )
