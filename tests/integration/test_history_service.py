"""
Integration Tests for XpHistoryService
======================================

Test Coverage
-------------
- Entity history: newest first, annotated, filtered, paginated
- Recent feed across entity types with orphaned rows
- Summary per entity type and breakdown per source type
- Ownership checks on entity-scoped reads
"""

import uuid

import pytest

from questlog.core.database.service import DatabaseService
from questlog.database.models import ContentTag
from questlog.modules.shared.exceptions import NotFoundError, ValidationError


@pytest.mark.integration
@pytest.mark.database
class TestEntityHistory:
    async def test_newest_first_with_annotations(self, container, user_id, stat):
        # Arrange
        for amount in (10, 20, 30):
            await container.stats.grant_adhoc_xp(user_id, stat.id, amount, f"+{amount}")

        # Act
        history = await container.history.get_entity_history(user_id, "character_stat", stat.id)

        # Assert
        assert [h.xp_amount for h in history] == [30, 20, 10]
        assert {h.entity_name for h in history} == {"Strength"}
        assert history[0].entity_description == "Physical power"
        assert history[0].reason == "+30"

    async def test_source_filter_and_pagination(self, container, user_id, stat):
        task_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 5, "task", task_id)
        for amount in (1, 2, 3):
            await container.stats.grant_adhoc_xp(user_id, stat.id, amount)

        adhoc = await container.history.get_entity_history(
            user_id, "character_stat", stat.id, source_type="adhoc", limit=2, offset=1
        )

        assert [h.xp_amount for h in adhoc] == [2, 1]

    async def test_limit_above_maximum_is_rejected(self, container, user_id, stat):
        with pytest.raises(ValidationError):
            await container.history.get_entity_history(
                user_id, "character_stat", stat.id, limit=10_000
            )

    async def test_foreign_entity_is_not_found(self, container, other_user_id, stat):
        with pytest.raises(NotFoundError):
            await container.history.get_entity_history(other_user_id, "character_stat", stat.id)

    async def test_to_dict(self, container, user_id, member):
        await container.family.record_interaction(user_id, member.id, note="Dinner")

        entry = (await container.history.get_entity_history(user_id, "family_member", member.id))[0]

        data = entry.to_dict()
        assert data["entity_name"] == "Mom"
        assert data["entity_description"] == "mother"
        assert data["source_type"] == "interaction"
        assert data["reason"] == "Dinner"


@pytest.mark.integration
@pytest.mark.database
class TestRecentAndAggregates:
    async def test_recent_feed_spans_entity_types(self, container, user_id, stat, member):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 10)
        await container.family.record_interaction(user_id, member.id)

        recent = await container.history.get_recent(user_id)

        assert [h.entity_type for h in recent] == ["family_member", "character_stat"]
        assert [h.entity_name for h in recent] == ["Mom", "Strength"]

    async def test_recent_filters(self, container, user_id, stat, member):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 10)
        await container.family.record_interaction(user_id, member.id)

        only_family = await container.history.get_recent(user_id, entity_type="family_member")
        only_adhoc = await container.history.get_recent(user_id, source_type="adhoc")

        assert [h.entity_id for h in only_family] == [member.id]
        assert [h.entity_id for h in only_adhoc] == [stat.id]

    async def test_orphaned_rows_annotate_as_none(self, container, user_id):
        """Test that rows whose target was removed outside the services still list."""
        # Arrange: tag deleted directly, bypassing the services
        source_id = str(uuid.uuid4())
        tag = await container.journal.create_tag(user_id, "reading")
        await container.grants.grant_xp(
            user_id, "content_tag", tag.id, 0, "journal", source_id, allow_zero=True
        )

        async with DatabaseService.get_transaction() as session:
            await session.delete(await session.get(ContentTag, tag.id))

        # Act
        rows = await container.history.get_grants_for_source(user_id, "journal", source_id)

        # Assert
        assert len(rows) == 1
        assert rows[0].entity_name is None
        assert rows[0].entity_description is None

    async def test_summary_by_entity_type(self, container, user_id, stat, member):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 10)
        await container.stats.grant_adhoc_xp(user_id, stat.id, 20)
        await container.family.record_interaction(user_id, member.id, enjoyed=True)

        summary = await container.history.get_summary_by_entity_type(user_id)

        assert summary["character_stat"].total_xp == 30
        assert summary["character_stat"].grant_count == 2
        assert summary["family_member"].total_xp == 15

    async def test_breakdown_by_source_for_one_entity(self, container, user_id, stat):
        other = await container.stats.create_stat(user_id, "Wisdom")
        task = await container.tasks.create_task(user_id, "Lift", xp_rewards={stat.id: 40})
        await container.tasks.complete_task(user_id, task.id)
        await container.stats.grant_adhoc_xp(user_id, stat.id, 5)
        await container.stats.grant_adhoc_xp(user_id, other.id, 99)

        breakdown = await container.history.get_breakdown_by_source(
            user_id, "character_stat", stat.id
        )

        assert breakdown["task"].total_xp == 40
        assert breakdown["adhoc"].total_xp == 5
        assert breakdown["adhoc"].grant_count == 1

    async def test_users_see_only_their_own_rows(
        self, container, user_id, other_user_id, stat
    ):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 10)

        assert await container.history.get_recent(other_user_id) == []
        assert await container.history.get_summary_by_entity_type(other_user_id) == {}
