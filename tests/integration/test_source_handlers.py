"""
Integration Tests for XP source handlers
========================================

Test Coverage
-------------
- Journal: review, finalize (grants + tags), double finalize, edit, delete
- Tasks: completion, double completion, reopen, delete
- Quests and experiments: source_type follows kind, abandonment
- Family: interaction XP, enjoyed bonus, delete_interaction, delete_member

Testing Strategy
----------------
- Real database per test
- Assertions go through the services' own read methods and the history
  service rather than raw SQL
"""

import uuid

import pytest

from questlog.modules.shared.exceptions import (
    AlreadyCompletedError,
    AlreadyProcessedError,
    InvalidAmountError,
    InvalidOperationError,
    NotFoundError,
)


# ============================================================================
# JOURNAL
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestJournalService:
    async def _reviewed_entry(self, container, user_id, stat, member, tag_ids=None):
        entry = await container.journal.create_entry(user_id, "Ran 5k with Mom", title="Sunday")
        await container.journal.submit_for_review(
            user_id,
            entry.id,
            stat_awards=[{"entity_id": stat.id, "xp": 25, "reason": "Running"}],
            family_awards=[{"entity_id": member.id, "xp": 10}],
            tag_ids=tag_ids,
        )
        return entry

    async def test_submit_for_review(self, container, user_id, stat, member):
        entry = await self._reviewed_entry(container, user_id, stat, member)

        stored = await container.journal.get_entry(user_id, entry.id)
        assert stored.status == "in_review"
        assert stored.suggested_awards["stats"] == [
            {"entity_id": stat.id, "xp": 25, "reason": "Running"}
        ]

    async def test_submit_rejects_non_positive_awards(self, container, user_id, stat):
        entry = await container.journal.create_entry(user_id, "Lazy day")

        with pytest.raises(InvalidAmountError):
            await container.journal.submit_for_review(
                user_id, entry.id, stat_awards=[{"entity_id": stat.id, "xp": 0}]
            )

    async def test_finalize_grants_and_completes(
        self, container, user_id, stat, member, recorded_events
    ):
        # Arrange
        tag = await container.journal.create_tag(user_id, "outdoors")
        entry = await self._reviewed_entry(container, user_id, stat, member, [tag.id])

        # Act
        results = await container.journal.finalize_entry(user_id, entry.id)

        # Assert
        assert sorted(r.grant.xp_amount for r in results) == [0, 10, 25]
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 25
        assert (await container.family.get_member(user_id, member.id)).connection_xp == 10

        stored = await container.journal.get_entry(user_id, entry.id)
        assert stored.status == "complete"
        assert stored.completed_at is not None

        rows = await container.history.get_grants_for_source(user_id, "journal", entry.id)
        tag_rows = [r for r in rows if r.entity_type == "content_tag"]
        assert len(tag_rows) == 1
        assert tag_rows[0].xp_amount == 0
        assert tag_rows[0].entity_name == "outdoors"

        finalized = [p for name, p in recorded_events if name == "journal.finalized"]
        assert finalized == [
            {"user_id": user_id, "entry_id": entry.id, "grant_count": 3, "total_xp": 35}
        ]

    async def test_finalize_twice_is_rejected(self, container, user_id, stat, member):
        entry = await self._reviewed_entry(container, user_id, stat, member)
        await container.journal.finalize_entry(user_id, entry.id)

        with pytest.raises(AlreadyProcessedError):
            await container.journal.finalize_entry(user_id, entry.id)

        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 25

    async def test_finalize_with_missing_target_changes_nothing(self, container, user_id, stat):
        # Arrange
        entry = await container.journal.create_entry(user_id, "Mixed day")
        await container.journal.submit_for_review(
            user_id,
            entry.id,
            stat_awards=[
                {"entity_id": stat.id, "xp": 25},
                {"entity_id": str(uuid.uuid4()), "xp": 10},
            ],
        )

        # Act
        with pytest.raises(NotFoundError):
            await container.journal.finalize_entry(user_id, entry.id)

        # Assert
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0
        assert (await container.journal.get_entry(user_id, entry.id)).status == "in_review"

    async def test_crash_mid_finalize_leaves_entry_in_review(
        self, container, user_id, stat, member, recorded_events, crash_on_grant
    ):
        # Arrange: stat, family and tag grants; the tag grant crashes
        tag = await container.journal.create_tag(user_id, "outdoors")
        entry = await self._reviewed_entry(container, user_id, stat, member, [tag.id])
        crash_on_grant(3)

        # Act
        with pytest.raises(RuntimeError):
            await container.journal.finalize_entry(user_id, entry.id)

        # Assert
        assert await container.history.get_grants_for_source(user_id, "journal", entry.id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0
        assert (await container.family.get_member(user_id, member.id)).connection_xp == 0
        assert (await container.journal.get_entry(user_id, entry.id)).status == "in_review"
        assert recorded_events == []

    async def test_draft_entry_can_be_finalized_directly(self, container, user_id, stat, member):
        """Test that an edited entry is finalized from draft with its kept awards."""
        entry = await self._reviewed_entry(container, user_id, stat, member)
        await container.journal.finalize_entry(user_id, entry.id)
        await container.journal.edit_entry(user_id, entry.id, content="Ran 6k with Mom")
        assert (await container.journal.get_entry(user_id, entry.id)).status == "draft"

        await container.journal.finalize_entry(user_id, entry.id)

        assert (await container.journal.get_entry(user_id, entry.id)).status == "complete"
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 25
        assert (await container.family.get_member(user_id, member.id)).connection_xp == 10

    async def test_submit_after_complete_is_rejected(self, container, user_id, stat, member):
        entry = await self._reviewed_entry(container, user_id, stat, member)
        await container.journal.finalize_entry(user_id, entry.id)

        with pytest.raises(InvalidOperationError):
            await container.journal.submit_for_review(user_id, entry.id)

    async def test_edit_reverses_and_returns_to_draft(self, container, user_id, stat, member):
        # Arrange
        entry = await self._reviewed_entry(container, user_id, stat, member)
        await container.journal.finalize_entry(user_id, entry.id)

        # Act
        edited = await container.journal.edit_entry(user_id, entry.id, content="Ran 10k")

        # Assert
        assert edited.status == "draft"
        assert edited.content == "Ran 10k"
        assert edited.completed_at is None
        assert edited.suggested_awards["stats"][0]["xp"] == 25
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0
        assert await container.history.get_grants_for_source(user_id, "journal", entry.id) == []

        # resubmitting the kept awards grants them again
        await container.journal.submit_for_review(
            user_id, entry.id, stat_awards=edited.suggested_awards["stats"]
        )
        await container.journal.finalize_entry(user_id, entry.id)
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 25

    async def test_delete_entry_reverses(self, container, user_id, stat, member):
        entry = await self._reviewed_entry(container, user_id, stat, member)
        await container.journal.finalize_entry(user_id, entry.id)

        reversal = await container.journal.delete_entry(user_id, entry.id)

        assert reversal.deleted_count == 2
        assert (await container.family.get_member(user_id, member.id)).connection_xp == 0
        with pytest.raises(NotFoundError):
            await container.journal.get_entry(user_id, entry.id)

    async def test_create_tag_is_get_or_create(self, container, user_id):
        first = await container.journal.create_tag(user_id, "music")
        second = await container.journal.create_tag(user_id, "music")

        assert first.id == second.id
        assert [t.name for t in await container.journal.list_tags(user_id)] == ["music"]


# ============================================================================
# TASKS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestTaskService:
    async def test_complete_task(self, container, user_id, stat, recorded_events):
        # Arrange
        task = await container.tasks.create_task(user_id, "Deadlift PR", xp_rewards={stat.id: 40})

        # Act
        results = await container.tasks.complete_task(user_id, task.id)

        # Assert
        assert [r.grant.source_type for r in results] == ["task"]
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 40
        assert (await container.tasks.get_task(user_id, task.id)).status == "completed"
        assert ("task.completed", {"user_id": user_id, "task_id": task.id, "total_xp": 40}) in (
            recorded_events
        )

    async def test_complete_twice_is_rejected(self, container, user_id, stat):
        task = await container.tasks.create_task(user_id, "Stretch", xp_rewards={stat.id: 5})
        await container.tasks.complete_task(user_id, task.id)

        with pytest.raises(AlreadyCompletedError) as exc_info:
            await container.tasks.complete_task(user_id, task.id)

        assert exc_info.value.message == "Task is already completed"
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 5

    async def test_reopen_reverses(self, container, user_id, stat):
        task = await container.tasks.create_task(user_id, "Swim", xp_rewards={stat.id: 20})
        await container.tasks.complete_task(user_id, task.id)

        reversal = await container.tasks.reopen_task(user_id, task.id)

        assert reversal.deleted_count == 1
        assert (await container.tasks.get_task(user_id, task.id)).status == "pending"
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_reopen_pending_task_is_rejected(self, container, user_id):
        task = await container.tasks.create_task(user_id, "Swim")

        with pytest.raises(InvalidOperationError):
            await container.tasks.reopen_task(user_id, task.id)

    async def test_update_rewards_only_while_pending(self, container, user_id, stat):
        task = await container.tasks.create_task(user_id, "Hike", xp_rewards={stat.id: 10})
        updated = await container.tasks.update_rewards(user_id, task.id, {stat.id: 30})
        assert updated.xp_rewards == {stat.id: 30}

        await container.tasks.complete_task(user_id, task.id)
        with pytest.raises(InvalidOperationError):
            await container.tasks.update_rewards(user_id, task.id, {stat.id: 50})

    async def test_delete_task_reverses(self, container, user_id, stat):
        task = await container.tasks.create_task(user_id, "Climb", xp_rewards={stat.id: 15})
        await container.tasks.complete_task(user_id, task.id)

        reversal = await container.tasks.delete_task(user_id, task.id)

        assert reversal.deleted_count == 1
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0
        assert await container.tasks.list_tasks(user_id) == []


# ============================================================================
# QUESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestQuestService:
    async def test_experiment_grants_with_experiment_source(self, container, user_id, stat):
        quest = await container.quests.create_quest(
            user_id, "Cold showers for a week", kind="experiment", xp_rewards={stat.id: 50}
        )

        results = await container.quests.complete_quest(user_id, quest.id)

        assert results[0].grant.source_type == "experiment"
        breakdown = await container.history.get_breakdown_by_source(user_id)
        assert breakdown["experiment"].total_xp == 50

    async def test_complete_twice_is_rejected(self, container, user_id, stat):
        quest = await container.quests.create_quest(user_id, "Learn a song", xp_rewards={stat.id: 5})
        await container.quests.complete_quest(user_id, quest.id)

        with pytest.raises(AlreadyCompletedError) as exc_info:
            await container.quests.complete_quest(user_id, quest.id)

        assert exc_info.value.resource_type == "Quest"

    async def test_abandoned_quest_cannot_complete(self, container, user_id, stat):
        quest = await container.quests.create_quest(user_id, "Marathon", xp_rewards={stat.id: 500})
        await container.quests.abandon_quest(user_id, quest.id)

        with pytest.raises(InvalidOperationError):
            await container.quests.complete_quest(user_id, quest.id)

        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_delete_quest_reverses(self, container, user_id, stat):
        quest = await container.quests.create_quest(
            user_id, "Fast", kind="experiment", xp_rewards={stat.id: 30}
        )
        await container.quests.complete_quest(user_id, quest.id)

        reversal = await container.quests.delete_quest(user_id, quest.id)

        assert reversal.source_type == "experiment"
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_list_by_kind(self, container, user_id):
        await container.quests.create_quest(user_id, "Quest A")
        await container.quests.create_quest(user_id, "Experiment B", kind="experiment")

        experiments = await container.quests.list_quests(user_id, kind="experiment")

        assert [q.title for q in experiments] == ["Experiment B"]


# ============================================================================
# FAMILY
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestFamilyService:
    @pytest.mark.parametrize("enjoyed,expected_xp", [(False, 10), (True, 15)])
    async def test_record_interaction(self, container, user_id, member, enjoyed, expected_xp):
        # Act
        interaction, result = await container.family.record_interaction(
            user_id, member.id, note="Phone call", enjoyed=enjoyed
        )

        # Assert
        assert interaction.xp_awarded == expected_xp
        assert result.grant.source_type == "interaction"
        assert result.grant.source_id == interaction.id

        refreshed = await container.family.get_member(user_id, member.id)
        assert refreshed.connection_xp == expected_xp
        assert refreshed.last_interaction_date is not None

    async def test_interaction_event(self, container, user_id, member, recorded_events):
        interaction, _ = await container.family.record_interaction(user_id, member.id)

        recorded = [p for name, p in recorded_events if name == "family.interaction_recorded"]
        assert recorded[0]["interaction_id"] == interaction.id
        assert recorded[0]["xp_awarded"] == 10
        assert [name for name, _ in recorded_events] == [
            "xp.granted",
            "family.interaction_recorded",
        ]

    async def test_delete_interaction_reverses(self, container, user_id, member):
        keep, _ = await container.family.record_interaction(user_id, member.id, enjoyed=True)
        drop, _ = await container.family.record_interaction(user_id, member.id)

        reversal = await container.family.delete_interaction(user_id, drop.id)

        assert reversal.deleted_count == 1
        refreshed = await container.family.get_member(user_id, member.id)
        assert refreshed.connection_xp == 15
        assert refreshed.last_interaction_date is not None
        remaining = await container.family.list_interactions(user_id, member.id)
        assert [i.id for i in remaining] == [keep.id]

    async def test_delete_member_removes_ledger_rows(self, container, user_id, member):
        await container.family.record_interaction(user_id, member.id)
        await container.family.record_interaction(user_id, member.id)

        removed = await container.family.delete_member(user_id, member.id)

        assert removed == 2
        assert await container.history.get_recent(user_id) == []
        with pytest.raises(NotFoundError):
            await container.family.get_member(user_id, member.id)

    async def test_update_member_clears_relationship(self, container, user_id, member):
        assert member.relationship_label == "mother"

        updated = await container.family.update_member(user_id, member.id, relationship=None)

        assert updated.relationship_label is None
        assert updated.name == "Mom"
