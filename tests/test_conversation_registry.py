import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from message_relay.errors import ConversationNotFoundError, ValidationFailed
from message_relay.models.db.conversation_model import ConversationModel
from message_relay.services.conversation_registry import (
    ConversationRegistry,
    canonical_participants,
    conversation_key,
    display_name,
    has_recent_activity,
    is_participant,
    normalize_pair,
    other_participants,
)

ALICE = "+15551110000"
BOB = "+15552220000"
CAROL = "+15553330000"


class TestConversationIdentity:
    """Unit tests for canonical conversation identity."""

    def test_normalize_pair(self) -> None:
        """Test that a pair is ordered lexicographically."""
        assert normalize_pair(BOB, ALICE) == (ALICE, BOB)
        assert normalize_pair(ALICE, BOB) == (ALICE, BOB)

    def test_canonical_participants(self) -> None:
        """Test that participants are deduplicated and sorted."""
        assert canonical_participants([CAROL, ALICE, CAROL, BOB]) == [ALICE, BOB, CAROL]

    def test_conversation_key_depends_on_type(self) -> None:
        """Test that direct and group identities never collide."""
        assert conversation_key("direct", [ALICE, BOB]) != conversation_key("group", [ALICE, BOB])
        assert conversation_key("group", [ALICE, BOB]) == conversation_key("group", [ALICE, BOB])


class TestConversationRegistry:
    """Integration tests for ConversationRegistry against sqlite."""

    @pytest.fixture
    def registry(self, test_db: AsyncSession) -> ConversationRegistry:
        return ConversationRegistry(test_db)

    @pytest.mark.asyncio
    async def test_direct_is_symmetric(self, registry: ConversationRegistry) -> None:
        """Test that direct(a, b) and direct(b, a) are the same conversation."""
        first = await registry.find_or_create_direct(ALICE, BOB)
        second = await registry.find_or_create_direct(BOB, ALICE)

        assert first.id == second.id
        assert first.conversation_type == "direct"
        assert (first.participant_one, first.participant_two) == (ALICE, BOB)
        assert first.participants == [ALICE, BOB]
        assert first.message_count == 0
        assert first.last_message_at is None

    @pytest.mark.asyncio
    async def test_direct_with_self_rejected(self, registry: ConversationRegistry) -> None:
        """Test that a conversation needs two different participants."""
        with pytest.raises(ValidationFailed) as exc_info:
            await registry.find_or_create_direct(ALICE, ALICE)

        assert exc_info.value.errors.get("participant_two") == [
            "cannot start a conversation with yourself"
        ]

    @pytest.mark.asyncio
    async def test_direct_blank_rejected(self, registry: ConversationRegistry) -> None:
        """Test that blank participants are rejected."""
        with pytest.raises(ValidationFailed) as exc_info:
            await registry.find_or_create_direct("", BOB)

        assert exc_info.value.errors.get("participant_one") == ["can't be blank"]

    @pytest.mark.asyncio
    async def test_group_idempotent_under_shuffle_and_duplicates(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that order and repeats do not change a group's identity."""
        first = await registry.find_or_create_group([CAROL, ALICE, BOB])
        second = await registry.find_or_create_group([BOB, CAROL, ALICE, BOB, CAROL])

        assert first.id == second.id
        assert first.conversation_type == "group"
        assert second.participants == [ALICE, BOB, CAROL]

    @pytest.mark.asyncio
    async def test_group_needs_two_participants(self, registry: ConversationRegistry) -> None:
        """Test that a group of one (after dedup) is rejected."""
        with pytest.raises(ValidationFailed) as exc_info:
            await registry.find_or_create_group([ALICE, ALICE])

        assert exc_info.value.errors.get("participants") == ["must have at least 2 participants"]

    @pytest.mark.asyncio
    async def test_group_of_two_is_distinct_from_direct(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that a two-person group and the direct pair are different threads."""
        direct = await registry.find_or_create_direct(ALICE, BOB)
        group = await registry.find_or_create_group([ALICE, BOB])
        assert direct.id != group.id

    @pytest.mark.asyncio
    async def test_for_participants_picks_direct_or_group(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that two unique participants make a direct thread and more a group."""
        direct = await registry.find_or_create_for_participants(ALICE, [BOB, ALICE])
        group = await registry.find_or_create_for_participants(ALICE, [BOB, CAROL])

        assert direct.conversation_type == "direct"
        assert group.conversation_type == "group"
        assert other_participants(group, ALICE) == [BOB, CAROL]
        assert is_participant(direct, BOB) and not is_participant(direct, CAROL)
        assert display_name(direct) == f"{ALICE} ↔ {BOB}"

    @pytest.mark.asyncio
    async def test_record_message_advances_only_forward(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that an older message bumps the count but not last_message_at."""
        conversation = await registry.find_or_create_direct(ALICE, BOB)
        newer = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)
        older = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

        after_newer = await registry.record_message(conversation.id, newer)
        after_older = await registry.record_message(conversation.id, older)

        assert after_newer.message_count == 1
        assert after_newer.last_message_at == newer
        assert after_older.message_count == 2
        assert after_older.last_message_at == newer

    @pytest.mark.asyncio
    async def test_record_message_unknown_conversation(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that recording against a missing conversation fails."""
        with pytest.raises(ConversationNotFoundError):
            await registry.record_message(uuid4(), datetime.now(timezone.utc))

    @pytest.mark.asyncio
    async def test_concurrent_record_message_counts_every_call(
        self,
        registry: ConversationRegistry,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Test that N concurrent record_message calls add exactly N."""
        conversation = await registry.find_or_create_direct(ALICE, BOB)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)

        async def record(offset: int) -> None:
            async with session_factory() as session:
                await ConversationRegistry(session).record_message(
                    conversation.id, base + timedelta(minutes=offset)
                )

        await asyncio.gather(*(record(i) for i in range(10)))

        result = await registry.get_conversation(conversation.id)
        assert result.message_count == 10
        assert result.last_message_at == base + timedelta(minutes=9)

    @pytest.mark.asyncio
    async def test_concurrent_find_or_create_makes_one_row(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_db: AsyncSession,
    ) -> None:
        """Test that racing creators of the same pair all get one conversation."""

        async def create():
            async with session_factory() as session:
                return await ConversationRegistry(session).find_or_create_direct(ALICE, BOB)

        results = await asyncio.gather(*(create() for _ in range(5)))

        assert len({conversation.id for conversation in results}) == 1
        count = await test_db.execute(select(func.count()).select_from(ConversationModel))
        assert count.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_get_conversation_not_found(self, registry: ConversationRegistry) -> None:
        """Test the not-found error."""
        with pytest.raises(ConversationNotFoundError):
            await registry.get_conversation(uuid4())

    @pytest.mark.asyncio
    async def test_list_for_participant_most_recent_first(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that a participant's threads come back by recent activity."""
        with_bob = await registry.find_or_create_direct(ALICE, BOB)
        with_carol = await registry.find_or_create_direct(ALICE, CAROL)
        await registry.find_or_create_direct(BOB, CAROL)
        await registry.record_message(with_bob.id, datetime(2024, 1, 1, tzinfo=timezone.utc))
        await registry.record_message(with_carol.id, datetime(2024, 2, 1, tzinfo=timezone.utc))

        conversations = await registry.list_for_participant(ALICE)

        assert [c.id for c in conversations] == [with_carol.id, with_bob.id]

    @pytest.mark.asyncio
    async def test_search_matches_any_participant(self, registry: ConversationRegistry) -> None:
        """Test case-insensitive participant search."""
        await registry.find_or_create_direct("alice@example.com", "bob@example.com")
        await registry.find_or_create_direct("carol@example.com", "dave@example.com")

        results = await registry.search_conversations("BOB@")

        assert len(results) == 1
        assert "bob@example.com" in results[0].participants
        assert await registry.search_conversations("   ") == []

    @pytest.mark.asyncio
    async def test_stats_and_activity(self, registry: ConversationRegistry) -> None:
        """Test totals, 30-day activity, averages, archivable and most active."""
        busy = await registry.find_or_create_direct(ALICE, BOB)
        quiet = await registry.find_or_create_direct(ALICE, CAROL)
        await registry.find_or_create_direct(BOB, CAROL)

        now = datetime.now(timezone.utc)
        await registry.record_message(busy.id, now)
        await registry.record_message(busy.id, now)
        await registry.record_message(quiet.id, now - timedelta(days=120))

        stats = await registry.get_conversation_stats()
        assert stats.total == 3
        assert stats.active_last_30_days == 1
        assert stats.average_messages == 1.0

        # quiet is idle for 120 days and the third never had a message
        assert await registry.count_archivable_conversations(90) == 2

        most_active = await registry.get_most_active_conversations()
        assert [c.id for c in most_active] == [busy.id, quiet.id]

        recent = await registry.get_recent_conversations(days=30)
        assert [c.id for c in recent] == [busy.id]
        assert has_recent_activity(recent[0])

    @pytest.mark.asyncio
    async def test_paginated_listing(self, registry: ConversationRegistry) -> None:
        """Test page arithmetic and participant filtering."""
        await registry.find_or_create_direct(ALICE, BOB)
        await registry.find_or_create_direct(ALICE, CAROL)
        await registry.find_or_create_direct(BOB, CAROL)

        first_page = await registry.list_conversations_paginated(page=1, per_page=2)
        assert first_page.total_count == 3
        assert first_page.total_pages == 2
        assert len(first_page.conversations) == 2
        assert first_page.has_next and not first_page.has_prev

        second_page = await registry.list_conversations_paginated(page=2, per_page=2)
        assert len(second_page.conversations) == 1
        assert second_page.has_prev and not second_page.has_next

        filtered = await registry.list_conversations_paginated(participant=CAROL)
        assert filtered.total_count == 2

    @pytest.mark.asyncio
    async def test_paginated_listing_rejects_bad_page(
        self, registry: ConversationRegistry
    ) -> None:
        """Test that page and per_page must be positive."""
        with pytest.raises(ValidationFailed) as exc_info:
            await registry.list_conversations_paginated(page=0, per_page=0)

        assert set(exc_info.value.errors.to_dict()) == {"page", "per_page"}
