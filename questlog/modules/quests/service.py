"""
QuestService - quests and experiments
=====================================

Quests and experiments share one table and one flow; the only difference is
the `source_type` their completion grants carry (`quest` or `experiment`).

Handles:
- Creation with `kind` and per-stat `xp_rewards`
- Completion (grants + status flip, one transaction)
- Abandonment (no XP)
- Deletion (explicit reversal, then delete)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from questlog.core.database.base import utc_now
from questlog.core.database.service import DatabaseService
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import Quest, QuestKind, QuestStatus
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import (
    AlreadyCompletedError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from questlog.modules.stats.service import stat_award
from questlog.modules.xp.grant_service import GrantResult
from questlog.modules.xp.recalculation_service import ReversalResult

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus
    from questlog.modules.xp.grant_service import XpGrantService
    from questlog.modules.xp.recalculation_service import XpRecalculationService


QUEST_KINDS = [k.value for k in QuestKind]


class QuestService(BaseService):
    """
    QuestService handles quest and experiment completion.

    Public Methods
    --------------
    - create_quest(), get_quest(), list_quests()
    - complete_quest() -> Grant rewards with source_type == kind
    - abandon_quest()
    - delete_quest() -> Reverse rewards, delete
    """

    def __init__(
        self,
        grant_service: XpGrantService,
        recalculation_service: XpRecalculationService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.grants = grant_service
        self.recalculation = recalculation_service
        self._quest_repo = BaseRepository[Quest](Quest, self.log)

    async def create_quest(
        self,
        user_id: str,
        title: str,
        kind: str = QuestKind.QUEST.value,
        xp_rewards: Optional[Mapping[str, int]] = None,
        description: Optional[str] = None,
    ) -> Quest:
        user_id = self.validate_user_id(user_id)
        title = self.validate_name(title, "title")
        kind = InputValidator.validate_choice(kind, "kind", QUEST_KINDS)
        if xp_rewards is not None and not isinstance(xp_rewards, Mapping):
            raise ValidationError("xp_rewards", "Must map stat ids to XP amounts")
        rewards: Dict[str, int] = {
            self.validate_entity_id(stat_id, "stat_id"): self.grants.validate_amount(amount)
            for stat_id, amount in (xp_rewards or {}).items()
        }

        async with DatabaseService.get_transaction() as session:
            quest = self._quest_repo.add(
                session,
                Quest(
                    user_id=user_id,
                    title=title,
                    description=description,
                    kind=kind,
                    status=QuestStatus.ACTIVE.value,
                    xp_rewards=rewards,
                ),
            )
            await session.flush()

        self.log_operation("create_quest", user_id=user_id, quest_id=quest.id, kind=kind)
        return quest

    async def get_quest(self, user_id: str, quest_id: str) -> Quest:
        user_id = self.validate_user_id(user_id)
        quest_id = self.validate_entity_id(quest_id, "quest_id")

        async with DatabaseService.get_session() as session:
            return await self._load_quest(session, user_id, quest_id)

    async def list_quests(
        self,
        user_id: str,
        kind: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Quest]:
        user_id = self.validate_user_id(user_id)
        conditions = [Quest.user_id == user_id]
        if kind is not None:
            conditions.append(Quest.kind == InputValidator.validate_choice(kind, "kind", QUEST_KINDS))
        if status is not None:
            conditions.append(
                Quest.status
                == InputValidator.validate_choice(status, "status", [s.value for s in QuestStatus])
            )

        async with DatabaseService.get_session() as session:
            return await self._quest_repo.find_many_where(
                session, *conditions, order_by=[Quest.created_at, Quest.id]
            )

    async def complete_quest(self, user_id: str, quest_id: str) -> List[GrantResult]:
        """
        Grant the quest's rewards and mark it completed.

        This is a **write operation** using get_transaction() with pessimistic locking.

        Raises:
            AlreadyCompletedError: Quest is already completed
            InvalidOperationError: Quest was abandoned
        """
        user_id = self.validate_user_id(user_id)
        quest_id = self.validate_entity_id(quest_id, "quest_id")

        async with DatabaseService.get_transaction() as session:
            quest = await self._load_quest(session, user_id, quest_id, for_update=True)
            if quest.status == QuestStatus.COMPLETED.value:
                raise AlreadyCompletedError(quest.kind.capitalize(), quest_id)
            if quest.status == QuestStatus.ABANDONED.value:
                raise InvalidOperationError("complete_quest", f"{quest.kind} was abandoned")

            results = await self.grants.apply_grants(
                session,
                user_id,
                [
                    stat_award(stat_id, amount, f"Completed {quest.kind}: {quest.title}")
                    for stat_id, amount in (quest.xp_rewards or {}).items()
                ],
                quest.kind,
                quest_id,
            )
            quest.status = QuestStatus.COMPLETED.value
            quest.completed_at = utc_now()
            await session.flush()

        total_xp = sum(r.grant.xp_amount for r in results)
        self.log_operation(
            "complete_quest",
            user_id=user_id,
            quest_id=quest_id,
            kind=quest.kind,
            grant_count=len(results),
            total_xp=total_xp,
        )
        await self.grants.publish_granted(results)
        await self.emit_event(
            "quest.completed",
            {"user_id": user_id, "quest_id": quest_id, "kind": quest.kind, "total_xp": total_xp},
        )
        return results

    async def abandon_quest(self, user_id: str, quest_id: str) -> Quest:
        user_id = self.validate_user_id(user_id)
        quest_id = self.validate_entity_id(quest_id, "quest_id")

        async with DatabaseService.get_transaction() as session:
            quest = await self._load_quest(session, user_id, quest_id, for_update=True)
            if quest.status != QuestStatus.ACTIVE.value:
                raise InvalidOperationError(
                    "abandon_quest", f"Only active {quest.kind}s can be abandoned"
                )
            quest.status = QuestStatus.ABANDONED.value
            await session.flush()

        self.log_operation("abandon_quest", user_id=user_id, quest_id=quest_id)
        return quest

    async def delete_quest(self, user_id: str, quest_id: str) -> ReversalResult:
        user_id = self.validate_user_id(user_id)
        quest_id = self.validate_entity_id(quest_id, "quest_id")

        async with DatabaseService.get_transaction() as session:
            quest = await self._load_quest(session, user_id, quest_id, for_update=True)
            reversal = await self.recalculation.reverse_in_session(
                session, user_id, quest.kind, quest_id
            )
            await self._quest_repo.delete(session, quest)

        self.log_operation(
            "delete_quest",
            user_id=user_id,
            quest_id=quest_id,
            reversed_count=reversal.deleted_count,
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return reversal

    async def _load_quest(
        self, session: Any, user_id: str, quest_id: str, for_update: bool = False
    ) -> Quest:
        quest = await self._quest_repo.get_owned(session, user_id, quest_id, for_update=for_update)
        if quest is None:
            raise NotFoundError("Quest", quest_id)
        return quest
