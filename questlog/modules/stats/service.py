"""
CharacterStatService - user-defined life stats
==============================================

Handles:
- Stat CRUD (identity fields only; XP and level are never edited directly)
- Manual ("adhoc") XP grants to a stat
- Deleting a stat together with its ledger rows

XP flows through `XpGrantService`; levels change only through
`LevelUpService`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from questlog.core.database.service import DatabaseService
from questlog.database.models import CharacterStat, EntityType, SourceType, XpGrant
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import NotFoundError, ValidationError
from questlog.modules.xp.grant_service import GrantRequest, GrantResult
from questlog.modules.xp.repository import XpGrantRepository

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus
    from questlog.modules.xp.grant_service import XpGrantService


_UNSET: Any = object()


class CharacterStatService(BaseService):
    """
    CharacterStatService handles character stat operations.

    Public Methods
    --------------
    - create_stat(), get_stat(), list_stats(), update_stat(), delete_stat()
    - grant_adhoc_xp() -> Manual XP grant with `source_type="adhoc"`
    """

    def __init__(
        self,
        grant_service: XpGrantService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.grants = grant_service
        self._stat_repo = BaseRepository[CharacterStat](CharacterStat, self.log)
        self._ledger = XpGrantRepository(XpGrant, self.log)

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    async def create_stat(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        example_activities: Optional[Sequence[str]] = None,
    ) -> CharacterStat:
        """
        Create a stat at level 1 with zero XP.

        Raises:
            ValidationError: Empty name or malformed activities
        """
        user_id = self.validate_user_id(user_id)
        name = self.validate_name(name)
        activities = self._validate_activities(example_activities)

        async with DatabaseService.get_transaction() as session:
            stat = self._stat_repo.add(
                session,
                CharacterStat(
                    user_id=user_id,
                    name=name,
                    description=description,
                    example_activities=activities,
                    total_xp=0,
                    current_level=1,
                ),
            )
            await session.flush()

        self.log_operation("create_stat", user_id=user_id, stat_id=stat.id)
        return stat

    async def get_stat(self, user_id: str, stat_id: str) -> CharacterStat:
        user_id = self.validate_user_id(user_id)
        stat_id = self.validate_entity_id(stat_id, "stat_id")

        async with DatabaseService.get_session() as session:
            stat = await self._stat_repo.get_owned(session, user_id, stat_id)

        if stat is None:
            raise NotFoundError("CharacterStat", stat_id)
        return stat

    async def list_stats(self, user_id: str) -> List[CharacterStat]:
        user_id = self.validate_user_id(user_id)

        async with DatabaseService.get_session() as session:
            return await self._stat_repo.find_many_where(
                session,
                CharacterStat.user_id == user_id,
                order_by=[CharacterStat.created_at, CharacterStat.id],
            )

    async def update_stat(
        self,
        user_id: str,
        stat_id: str,
        name: Optional[str] = None,
        description: Optional[str] = _UNSET,
        example_activities: Optional[Sequence[str]] = None,
    ) -> CharacterStat:
        """
        Update identity fields. `description=None` clears the description;
        omitting it leaves it unchanged.
        """
        user_id = self.validate_user_id(user_id)
        stat_id = self.validate_entity_id(stat_id, "stat_id")
        if name is not None:
            name = self.validate_name(name)
        activities = (
            self._validate_activities(example_activities)
            if example_activities is not None
            else None
        )

        async with DatabaseService.get_transaction() as session:
            stat = await self._stat_repo.get_owned(session, user_id, stat_id, for_update=True)
            if stat is None:
                raise NotFoundError("CharacterStat", stat_id)

            if name is not None:
                stat.name = name
            if description is not _UNSET:
                stat.description = description
            if activities is not None:
                stat.example_activities = activities
            await session.flush()

        self.log_operation("update_stat", user_id=user_id, stat_id=stat_id)
        return stat

    async def delete_stat(self, user_id: str, stat_id: str) -> int:
        """
        Delete a stat and every ledger row that targets it.

        This is a **write operation** using get_transaction().

        Returns:
            Number of ledger rows removed
        """
        user_id = self.validate_user_id(user_id)
        stat_id = self.validate_entity_id(stat_id, "stat_id")

        async with DatabaseService.get_transaction() as session:
            stat = await self._stat_repo.get_owned(session, user_id, stat_id, for_update=True)
            if stat is None:
                raise NotFoundError("CharacterStat", stat_id)

            removed = await self._ledger.delete_for_entity(
                session, user_id, EntityType.CHARACTER_STAT.value, stat_id
            )
            await self._stat_repo.delete(session, stat)

        self.log_operation(
            "delete_stat", user_id=user_id, stat_id=stat_id, ledger_rows_removed=removed
        )
        return removed

    async def grant_adhoc_xp(
        self,
        user_id: str,
        stat_id: str,
        amount: int,
        reason: Optional[str] = None,
    ) -> GrantResult:
        """Manual grant; amount must be positive."""
        return await self.grants.grant_xp(
            user_id=user_id,
            entity_type=EntityType.CHARACTER_STAT.value,
            entity_id=stat_id,
            amount=amount,
            source_type=SourceType.ADHOC.value,
            reason=reason,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_activities(activities: Optional[Sequence[str]]) -> List[str]:
        if activities is None:
            return []
        if isinstance(activities, str):
            raise ValidationError("example_activities", "Must be a list of strings")
        cleaned = []
        for item in activities:
            if not isinstance(item, str):
                raise ValidationError("example_activities", "Must be a list of strings")
            if item.strip():
                cleaned.append(item.strip())
        return cleaned


def stat_award(stat_id: str, amount: int, reason: Optional[str] = None) -> GrantRequest:
    """Shorthand for a character-stat award inside a batch."""
    return GrantRequest(EntityType.CHARACTER_STAT.value, stat_id, amount, reason)
