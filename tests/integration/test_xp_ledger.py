"""
Integration Tests for the XP ledger
===================================

Purpose
-------
Exercise grant and reversal against a real database and check that every
cached total equals the sum of its ledger rows afterwards.

Test Coverage
-------------
- Single grants, eligibility reporting, xp.granted payloads
- Reversal by source, idempotency, xp.reversed
- Cached total == ledger sum across random grant/reverse sequences
- All-or-nothing batches
- Ownership isolation between users
- Concurrent grants on one entity
- Drift repair via recalculate_entity
- Stat deletion removes its ledger rows
- Source context bound to log records during grants and reversals

Testing Strategy
----------------
- Per-test SQLite database (see conftest `database`)
- Events captured with `recorded_events`
"""

import asyncio
import random
import uuid

import pytest
from sqlalchemy import func, select

from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import get_log_context
from questlog.database.models import CharacterStat, XpGrant
from questlog.modules.shared.exceptions import (
    InvalidAmountError,
    NotFoundError,
    ValidationError,
)
from questlog.modules.stats.service import stat_award
from questlog.modules.xp.grant_service import GrantRequest


async def ledger_rows(user_id, entity_id=None):
    async with DatabaseService.get_session() as session:
        stmt = select(XpGrant).where(XpGrant.user_id == user_id)
        if entity_id is not None:
            stmt = stmt.where(XpGrant.entity_id == entity_id)
        return list((await session.execute(stmt.order_by(XpGrant.id))).scalars().all())


async def ledger_sum(user_id, entity_id):
    async with DatabaseService.get_session() as session:
        total = await session.scalar(
            select(func.coalesce(func.sum(XpGrant.xp_amount), 0)).where(
                XpGrant.user_id == user_id, XpGrant.entity_id == entity_id
            )
        )
    return int(total)


# ============================================================================
# GRANTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestGrantXp:
    async def test_grant_appends_row_and_updates_total(self, container, user_id, stat):
        """Test that a grant writes one ledger row and bumps the cached total."""
        # Arrange
        entry_id = str(uuid.uuid4())

        # Act
        result = await container.grants.grant_xp(
            user_id, "character_stat", stat.id, 25, "journal", entry_id, reason="Went running"
        )

        # Assert
        assert result.new_total == 25
        assert result.can_level_up is True
        assert result.xp_to_next_level == 75

        rows = await ledger_rows(user_id)
        assert len(rows) == 1
        assert rows[0].xp_amount == 25
        assert rows[0].source_type == "journal"
        assert rows[0].source_id == entry_id

        refreshed = await container.stats.get_stat(user_id, stat.id)
        assert refreshed.total_xp == 25
        assert refreshed.current_level == 1

    async def test_grant_never_changes_level(self, container, user_id, stat):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 450)

        refreshed = await container.stats.get_stat(user_id, stat.id)
        assert refreshed.total_xp == 450
        assert refreshed.current_level == 1

    async def test_xp_granted_event_payload(self, container, user_id, stat, recorded_events):
        # Act
        result = await container.stats.grant_adhoc_xp(user_id, stat.id, 30, "Manual")

        # Assert
        granted = [payload for name, payload in recorded_events if name == "xp.granted"]
        assert granted == [
            {
                "grant_id": result.grant.id,
                "user_id": user_id,
                "entity_type": "character_stat",
                "entity_id": stat.id,
                "xp_amount": 30,
                "source_type": "adhoc",
                "source_id": None,
                "new_total": 30,
                "can_level_up": True,
            }
        ]

    async def test_event_is_published_after_commit(self, container, user_id, stat):
        """Test that a listener sees the committed total, not a pending one."""
        # Arrange
        seen_totals = []

        async def on_granted(payload):
            fresh = await container.stats.get_stat(payload["user_id"], payload["entity_id"])
            seen_totals.append(fresh.total_xp)

        container.event_bus.subscribe("xp.granted", on_granted, identifier="commit-check")

        # Act
        await container.stats.grant_adhoc_xp(user_id, stat.id, 40)

        # Assert
        assert seen_totals == [40]

    @pytest.mark.parametrize("amount", [-10, 0])
    async def test_rejects_non_positive_amount(self, container, user_id, stat, amount):
        with pytest.raises(InvalidAmountError):
            await container.stats.grant_adhoc_xp(user_id, stat.id, amount)

        assert await ledger_rows(user_id) == []

    async def test_zero_allowed_for_content_tags(self, container, user_id):
        tag = await container.journal.create_tag(user_id, "outdoors")

        result = await container.grants.grant_xp(
            user_id, "content_tag", tag.id, 0, "journal", str(uuid.uuid4()), allow_zero=True
        )

        assert result.new_total is None
        assert result.can_level_up is False
        assert len(await ledger_rows(user_id, tag.id)) == 1

    async def test_reserved_entity_type_rejected(self, container, user_id):
        with pytest.raises(ValidationError):
            await container.grants.grant_xp(user_id, "goal", str(uuid.uuid4()), 10, "adhoc")

    async def test_unknown_source_type_rejected(self, container, user_id, stat):
        with pytest.raises(ValidationError):
            await container.grants.grant_xp(user_id, "character_stat", stat.id, 10, "bonus")

        assert await ledger_rows(user_id) == []

    async def test_family_member_uses_connection_columns(self, container, user_id, member):
        result = await container.grants.grant_xp(
            user_id, "family_member", member.id, 100, "adhoc"
        )

        refreshed = await container.family.get_member(user_id, member.id)
        assert refreshed.connection_xp == 100
        assert refreshed.connection_level == 1
        assert result.can_level_up is True


# ============================================================================
# BATCHES
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestGrantBatch:
    async def test_batch_writes_all_rows(self, container, user_id, stat, member):
        source_id = str(uuid.uuid4())

        results = await container.grants.grant_batch(
            user_id,
            [
                stat_award(stat.id, 20),
                GrantRequest("family_member", member.id, 15),
                stat_award(stat.id, 5),
            ],
            "journal",
            source_id,
        )

        assert [r.new_total for r in results] == [20, 15, 25]
        assert len(await ledger_rows(user_id)) == 3

    async def test_invalid_amount_in_batch_writes_nothing(self, container, user_id, stat):
        """Test that a bad second award rolls back the whole batch."""
        with pytest.raises(InvalidAmountError):
            await container.grants.grant_batch(
                user_id,
                [stat_award(stat.id, 20), stat_award(stat.id, -5)],
                "task",
                str(uuid.uuid4()),
            )

        assert await ledger_rows(user_id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_missing_entity_in_batch_writes_nothing(self, container, user_id, stat):
        with pytest.raises(NotFoundError):
            await container.grants.grant_batch(
                user_id,
                [stat_award(stat.id, 20), stat_award(str(uuid.uuid4()), 10)],
                "task",
                str(uuid.uuid4()),
            )

        assert await ledger_rows(user_id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_crash_after_rows_were_flushed_rolls_back_batch(
        self, container, user_id, stat, recorded_events, crash_on_grant
    ):
        """Test that rows written before a mid-batch crash do not survive it."""
        # Arrange
        calls = crash_on_grant(3)
        source_id = str(uuid.uuid4())

        # Act
        with pytest.raises(RuntimeError):
            await container.grants.grant_batch(
                user_id, [stat_award(stat.id, 10)] * 3, "journal", source_id
            )

        # Assert
        assert calls["count"] == 3
        assert await ledger_rows(user_id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0
        assert [name for name, _ in recorded_events if name == "xp.granted"] == []

    async def test_failed_batch_publishes_nothing(self, container, user_id, stat, recorded_events):
        with pytest.raises(NotFoundError):
            await container.grants.grant_batch(
                user_id, [stat_award(stat.id, 5), stat_award(str(uuid.uuid4()), 5)], "adhoc"
            )

        assert recorded_events == []


# ============================================================================
# OWNERSHIP
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestOwnership:
    async def test_foreign_stat_is_not_found(self, container, user_id, other_user_id, stat):
        """Test that another user's stat looks exactly like a missing one."""
        with pytest.raises(NotFoundError) as exc_info:
            await container.grants.grant_xp(other_user_id, "character_stat", stat.id, 10, "adhoc")

        assert exc_info.value.resource_type == "CharacterStat"
        assert await ledger_rows(other_user_id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

    async def test_foreign_level_up_is_not_found(self, container, user_id, other_user_id, stat):
        await container.stats.grant_adhoc_xp(user_id, stat.id, 150)

        with pytest.raises(NotFoundError):
            await container.level_up.level_up(other_user_id, "character_stat", stat.id)

        assert (await container.stats.get_stat(user_id, stat.id)).current_level == 1

    async def test_reversal_only_touches_own_rows(self, container, user_id, other_user_id, stat):
        source_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 10, "task", source_id)

        result = await container.recalculation.reverse_grants_for_source(
            other_user_id, "task", source_id
        )

        assert result.deleted_count == 0
        assert len(await ledger_rows(user_id)) == 1


# ============================================================================
# REVERSAL
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestReversal:
    async def test_reverse_restores_total(self, container, user_id, stat, recorded_events):
        # Arrange
        entry_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 25, "journal", entry_id)

        # Act
        result = await container.recalculation.reverse_grants_for_source(
            user_id, "journal", entry_id
        )

        # Assert
        assert result.deleted_count == 1
        assert result.affected_entity_ids == [stat.id]
        assert result.recalculated[0].new_total == 0
        assert await ledger_rows(user_id) == []
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 0

        reversed_events = [p for name, p in recorded_events if name == "xp.reversed"]
        assert reversed_events == [
            {
                "user_id": user_id,
                "source_type": "journal",
                "source_id": entry_id,
                "deleted_count": 1,
                "affected_entity_ids": [stat.id],
            }
        ]

    async def test_reversal_is_idempotent(self, container, user_id, stat, recorded_events):
        source_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 25, "task", source_id)

        first = await container.recalculation.reverse_grants_for_source(user_id, "task", source_id)
        second = await container.recalculation.reverse_grants_for_source(user_id, "task", source_id)

        assert first.deleted_count == 1
        assert second.deleted_count == 0
        assert second.recalculated == []
        assert [name for name, _ in recorded_events].count("xp.reversed") == 1

    async def test_reversal_leaves_level_alone(self, container, user_id, stat):
        source_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 150, "quest", source_id)
        await container.level_up.level_up(user_id, "character_stat", stat.id)

        await container.recalculation.reverse_grants_for_source(user_id, "quest", source_id)

        refreshed = await container.stats.get_stat(user_id, stat.id)
        assert refreshed.total_xp == 0
        assert refreshed.current_level == 2

    async def test_reversal_keeps_other_sources(self, container, user_id, stat):
        keep, drop = str(uuid.uuid4()), str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 30, "task", keep)
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 20, "task", drop)

        await container.recalculation.reverse_grants_for_source(user_id, "task", drop)

        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 30

    async def test_cached_total_matches_ledger_after_random_sequence(self, container, user_id):
        """Test that totals equal ledger sums after many grants and reversals."""
        # Arrange
        rng = random.Random(20241018)
        stats = [
            await container.stats.create_stat(user_id, name)
            for name in ("Strength", "Wisdom", "Charisma")
        ]
        sources = []

        # Act
        for _ in range(30):
            if sources and rng.random() < 0.3:
                source_id = sources.pop(rng.randrange(len(sources)))
                await container.recalculation.reverse_grants_for_source(user_id, "task", source_id)
                continue
            source_id = str(uuid.uuid4())
            awards = [
                stat_award(s.id, rng.randint(1, 60))
                for s in rng.sample(stats, rng.randint(1, len(stats)))
            ]
            await container.grants.grant_batch(user_id, awards, "task", source_id)
            sources.append(source_id)

        # Assert
        for s in stats:
            refreshed = await container.stats.get_stat(user_id, s.id)
            assert refreshed.total_xp == await ledger_sum(user_id, s.id)

    async def test_recalculate_repairs_drift(self, container, user_id, stat):
        # Arrange
        await container.stats.grant_adhoc_xp(user_id, stat.id, 40)
        async with DatabaseService.get_transaction() as session:
            drifted = await session.get(CharacterStat, stat.id)
            drifted.total_xp = 999

        # Act
        result = await container.recalculation.recalculate_entity(
            user_id, "character_stat", stat.id
        )

        # Assert
        assert result.changed is True
        assert (result.old_total, result.new_total) == (999, 40)
        assert (await container.stats.get_stat(user_id, stat.id)).total_xp == 40


# ============================================================================
# CONCURRENCY
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestConcurrentGrants:
    async def test_concurrent_grants_lose_no_updates(self, container, user_id, stat):
        """Test that five simultaneous grants all land on the cached total."""
        await asyncio.gather(
            *[container.stats.grant_adhoc_xp(user_id, stat.id, 10) for _ in range(5)]
        )

        refreshed = await container.stats.get_stat(user_id, stat.id)
        assert refreshed.total_xp == 50
        assert len(await ledger_rows(user_id, stat.id)) == 5


# ============================================================================
# ENTITY DELETION
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDeleteStat:
    async def test_delete_stat_removes_its_ledger_rows(self, container, user_id, stat):
        # Arrange
        other = await container.stats.create_stat(user_id, "Wisdom")
        await container.stats.grant_adhoc_xp(user_id, stat.id, 10)
        await container.stats.grant_adhoc_xp(user_id, stat.id, 15)
        await container.stats.grant_adhoc_xp(user_id, other.id, 5)

        # Act
        removed = await container.stats.delete_stat(user_id, stat.id)

        # Assert
        assert removed == 2
        assert await ledger_rows(user_id, stat.id) == []
        assert len(await ledger_rows(user_id, other.id)) == 1
        with pytest.raises(NotFoundError):
            await container.stats.get_stat(user_id, stat.id)


# ============================================================================
# LOG CONTEXT
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestLogContextPropagation:
    def _capture(self, event_bus, event_name):
        seen = []

        async def _record(payload):
            seen.append(get_log_context())

        event_bus.subscribe(event_name, _record)
        return seen

    async def test_grant_batch_binds_source_context(self, container, event_bus, user_id, stat):
        seen = self._capture(event_bus, "xp.granted")
        entry_id = str(uuid.uuid4())

        await container.grants.grant_xp(user_id, "character_stat", stat.id, 5, "journal", entry_id)

        assert seen[0]["operation"] == "xp.grant_batch"
        assert seen[0]["user_id"] == user_id
        assert seen[0]["source_type"] == "journal"
        assert seen[0]["source_id"] == entry_id
        assert get_log_context() == {}

    async def test_reversal_binds_source_context(self, container, event_bus, user_id, stat):
        seen = self._capture(event_bus, "xp.reversed")
        task_id = str(uuid.uuid4())
        await container.grants.grant_xp(user_id, "character_stat", stat.id, 5, "task", task_id)

        await container.recalculation.reverse_grants_for_source(user_id, "task", task_id)

        assert seen[0]["operation"] == "xp.reverse_grants_for_source"
        assert seen[0]["source_id"] == task_id
