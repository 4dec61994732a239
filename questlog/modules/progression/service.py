"""
Level-Up Service
================

Purpose
-------
The explicit level transition. Granting XP never changes a level; the user
claims each level one step at a time, and the claim is re-checked against
the entity's curve under a row lock.

Domain
------
- `level_up`: +1 level, XP unchanged, `progression.leveled_up` after commit
- `get_progress`: curve snapshot for one entity
- `level_up_opportunities`: every entity of a type that may level now
- `level_up_all`: claim one level for each of those, one transaction
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Dict, List

from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import LogContext
from questlog.modules.progression.curves import ProgressSnapshot
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import LevelUpNotEligibleError
from questlog.modules.xp.adapters import EntityAdapter, get_progressable_adapter

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus


@dataclass(frozen=True)
class LevelUpResult:
    entity_type: str
    entity_id: str
    old_level: int
    new_level: int
    total_xp: int
    progress: ProgressSnapshot

    def to_event_payload(self, user_id: str) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "total_xp": self.total_xp,
        }


@dataclass(frozen=True)
class LevelUpOpportunity:
    entity_type: str
    entity_id: str
    name: str
    current_level: int
    next_level: int
    total_xp: int
    xp_to_next_level: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LevelUpService(BaseService):
    """
    Explicit, single-step level-ups and progress reads.

    Public Methods
    --------------
    - level_up() -> Claim one level
    - get_progress() -> ProgressSnapshot
    - level_up_opportunities() -> Entities eligible right now
    - level_up_all() -> Claim one level for every eligible entity
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def level_up(self, user_id: str, entity_type: str, entity_id: str) -> LevelUpResult:
        """
        Advance one level if the entity's curve allows it.

        This is a **write operation** using get_transaction() with pessimistic locking.

        Raises:
            LevelUpNotEligibleError: XP does not yet support another level;
                `shortfall` carries the XP still needed
            NotFoundError: Entity absent or owned by another user
            ValidationError: Entity type does not level

        Example:
            >>> result = await level_up_service.level_up("u1", "character_stat", stat.id)
            >>> result.new_level
            2
        """
        user_id = self.validate_user_id(user_id)
        entity_id = self.validate_entity_id(entity_id)
        adapter = get_progressable_adapter(entity_type)

        async with LogContext(
            user_id=user_id,
            operation="progression.level_up",
            entity_type=adapter.entity_type.value,
            entity_id=entity_id,
        ), DatabaseService.get_transaction() as session:
            entity = await adapter.load(session, user_id, entity_id, for_update=True)
            result = self._level_up_entity(adapter, entity)
            await session.flush()

        self.log_operation(
            "level_up",
            user_id=user_id,
            entity_type=result.entity_type,
            entity_id=entity_id,
            old_level=result.old_level,
            new_level=result.new_level,
            total_xp=result.total_xp,
        )
        await self.emit_event("progression.leveled_up", result.to_event_payload(user_id))
        return result

    async def level_up_all(self, user_id: str, entity_type: str) -> List[LevelUpResult]:
        """
        One single-step level-up for every eligible entity of a type.

        Entities eligible for several levels still advance by exactly one.
        """
        user_id = self.validate_user_id(user_id)
        adapter = get_progressable_adapter(entity_type)
        curve = adapter.curve(self._config)

        results: List[LevelUpResult] = []
        async with DatabaseService.get_transaction() as session:
            for entity in await adapter.list_for_user(session, user_id, for_update=True):
                level = adapter.get_level(entity) or 1
                if curve.can_level_up(level, adapter.get_total_xp(entity)):
                    results.append(self._level_up_entity(adapter, entity))
            await session.flush()

        self.log_operation(
            "level_up_all",
            user_id=user_id,
            entity_type=adapter.entity_type.value,
            leveled_count=len(results),
        )
        for result in results:
            await self.emit_event("progression.leveled_up", result.to_event_payload(user_id))
        return results

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_progress(
        self, user_id: str, entity_type: str, entity_id: str
    ) -> ProgressSnapshot:
        user_id = self.validate_user_id(user_id)
        entity_id = self.validate_entity_id(entity_id)
        adapter = get_progressable_adapter(entity_type)

        async with DatabaseService.get_session() as session:
            entity = await adapter.load(session, user_id, entity_id)

        return adapter.curve(self._config).snapshot(
            adapter.get_level(entity) or 1, adapter.get_total_xp(entity)
        )

    async def level_up_opportunities(
        self, user_id: str, entity_type: str
    ) -> List[LevelUpOpportunity]:
        user_id = self.validate_user_id(user_id)
        adapter = get_progressable_adapter(entity_type)
        curve = adapter.curve(self._config)

        async with DatabaseService.get_session() as session:
            entities = await adapter.list_for_user(session, user_id)

        opportunities = []
        for entity in entities:
            level = adapter.get_level(entity) or 1
            total_xp = adapter.get_total_xp(entity)
            if not curve.can_level_up(level, total_xp):
                continue
            name, _ = adapter.describe(entity)
            opportunities.append(
                LevelUpOpportunity(
                    entity_type=adapter.entity_type.value,
                    entity_id=entity.id,
                    name=name,
                    current_level=level,
                    next_level=level + 1,
                    total_xp=total_xp,
                    xp_to_next_level=curve.xp_to_next_level(level, total_xp),
                )
            )
        return opportunities

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _level_up_entity(self, adapter: EntityAdapter, entity: Any) -> LevelUpResult:
        curve = adapter.curve(self._config)
        old_level = adapter.get_level(entity) or 1
        total_xp = adapter.get_total_xp(entity)

        if not curve.can_level_up(old_level, total_xp):
            raise LevelUpNotEligibleError(
                entity_type=adapter.entity_type.value,
                entity_id=entity.id,
                current_level=old_level,
                total_xp=total_xp,
                shortfall=curve.xp_to_eligibility(old_level, total_xp),
            )

        new_level = old_level + 1
        adapter.set_level(entity, new_level)

        return LevelUpResult(
            entity_type=adapter.entity_type.value,
            entity_id=entity.id,
            old_level=old_level,
            new_level=new_level,
            total_xp=total_xp,
            progress=curve.snapshot(new_level, total_xp),
        )
