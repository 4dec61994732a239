"""
XP Recalculation Service
========================

Purpose
-------
Undo everything a source record awarded. When a journal entry, task, quest
or family interaction is edited or deleted, its ledger rows are deleted and
every affected entity's cached total is recomputed as the SUM of its
remaining rows. Totals are never decremented by subtraction, so a cache that
had drifted is repaired as a side effect.

Rules
-----
- Levels are never decremented, even when XP drops below the level's
  threshold.
- Entities that no longer exist are skipped with a warning; their rows are
  still deleted.
- Reversal is idempotent: a second call matches no rows and changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import LogContext, get_logger
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import EntityType, XpGrant
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import ValidationError
from questlog.modules.xp.adapters import ADAPTERS, EntityAdapter, get_adapter
from questlog.modules.xp.grant_service import SOURCE_TYPES
from questlog.modules.xp.repository import XpGrantRepository

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus


@dataclass(frozen=True)
class RecalculationResult:
    entity_type: str
    entity_id: str
    old_total: int
    new_total: int

    @property
    def changed(self) -> bool:
        return self.old_total != self.new_total


@dataclass
class ReversalResult:
    """Outcome of reversing one source's grants."""

    source_type: str
    source_id: str
    deleted_count: int = 0
    recalculated: List[RecalculationResult] = field(default_factory=list)
    skipped_entity_ids: List[str] = field(default_factory=list)

    @property
    def affected_entity_ids(self) -> List[str]:
        return [r.entity_id for r in self.recalculated]

    def to_event_payload(self, user_id: str) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "deleted_count": self.deleted_count,
            "affected_entity_ids": self.affected_entity_ids,
        }


class XpRecalculationService(BaseService):
    """
    Reverses source grants and recomputes cached totals from the ledger.

    Public Methods
    --------------
    - reverse_grants_for_source() -> Own transaction, emits `xp.reversed`
    - reverse_in_session() -> Inside a caller's transaction
    - recalculate_entity() -> Repair one entity's cached total
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = XpGrantRepository(
            model_class=XpGrant,
            logger=get_logger(f"{__name__}.XpGrantRepository"),
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def reverse_grants_for_source(
        self,
        user_id: str,
        source_type: str,
        source_id: str,
    ) -> ReversalResult:
        """
        Delete every grant of `(user_id, source_type, source_id)` and
        recompute the affected totals.

        This is a **write operation** using get_transaction().
        """
        async with LogContext(
            user_id=user_id,
            operation="xp.reverse_grants_for_source",
            source_type=source_type,
            source_id=source_id,
        ):
            async with DatabaseService.get_transaction() as session:
                result = await self.reverse_in_session(session, user_id, source_type, source_id)

            await self.publish_reversed(user_id, result)
        return result

    async def reverse_in_session(
        self,
        session: AsyncSession,
        user_id: str,
        source_type: str,
        source_id: str,
    ) -> ReversalResult:
        user_id = self.validate_user_id(user_id)
        source_type = InputValidator.validate_choice(source_type, "source_type", SOURCE_TYPES)
        source_id = self.validate_entity_id(source_id, "source_id")

        result = ReversalResult(source_type=source_type, source_id=source_id)

        rows = await self._ledger.find_by_source(session, user_id, source_type, source_id)
        if not rows:
            self.log.debug(
                "No grants to reverse",
                extra={"user_id": user_id, "source_type": source_type, "source_id": source_id},
            )
            return result

        targets = sorted({(row.entity_type, row.entity_id) for row in rows})

        # lock survivors before touching the ledger
        locked: List[Tuple[EntityAdapter, Any]] = []
        for entity_type, entity_id in targets:
            adapter = ADAPTERS.get(EntityType(entity_type))
            if adapter is None:
                result.skipped_entity_ids.append(entity_id)
                continue
            entity = await adapter.find_for_update(session, user_id, entity_id)
            if entity is None:
                self.log.warning(
                    "Skipping recalculation for missing entity",
                    extra={
                        "user_id": user_id,
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "source_type": source_type,
                        "source_id": source_id,
                    },
                )
                result.skipped_entity_ids.append(entity_id)
                continue
            locked.append((adapter, entity))

        result.deleted_count = await self._ledger.delete_by_source(
            session, user_id, source_type, source_id
        )

        for adapter, entity in locked:
            if not adapter.tracks_xp:
                continue
            result.recalculated.append(await self._recompute(session, user_id, adapter, entity))

        self.log_operation(
            "reverse_grants_for_source",
            user_id=user_id,
            source_type=source_type,
            source_id=source_id,
            deleted_count=result.deleted_count,
            affected_count=len(result.recalculated),
            skipped_count=len(result.skipped_entity_ids),
        )
        return result

    async def recalculate_entity(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
    ) -> RecalculationResult:
        """
        Recompute one entity's cached total from the ledger.

        Raises:
            NotFoundError: Entity absent or owned by another user
            ValidationError: Entity type does not track XP
        """
        user_id = self.validate_user_id(user_id)
        entity_id = self.validate_entity_id(entity_id)
        adapter = get_adapter(entity_type)
        if not adapter.tracks_xp:
            raise ValidationError("entity_type", f"Entity type '{entity_type}' does not track XP")

        async with DatabaseService.get_transaction() as session:
            entity = await adapter.load(session, user_id, entity_id, for_update=True)
            result = await self._recompute(session, user_id, adapter, entity)

        if result.changed:
            self.log.warning(
                "Cached XP total drifted from ledger and was repaired",
                extra={
                    "user_id": user_id,
                    "entity_type": result.entity_type,
                    "entity_id": entity_id,
                    "old_total": result.old_total,
                    "new_total": result.new_total,
                },
            )
        return result

    async def publish_reversed(self, user_id: str, result: ReversalResult) -> None:
        if result.deleted_count:
            await self.emit_event("xp.reversed", result.to_event_payload(user_id))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _recompute(
        self,
        session: AsyncSession,
        user_id: str,
        adapter: EntityAdapter,
        entity: Any,
    ) -> RecalculationResult:
        old_total = adapter.get_total_xp(entity)
        new_total = await self._ledger.sum_for_entity(
            session, user_id, adapter.entity_type.value, entity.id
        )
        adapter.set_total_xp(entity, new_total)
        await self._ledger.flush(session)
        return RecalculationResult(
            entity_type=adapter.entity_type.value,
            entity_id=entity.id,
            old_total=old_total,
            new_total=new_total,
        )

