"""
XP History Service
==================

Read paths over the ledger: paginated per-entity history, a recent-activity
feed across entities, per-source lookups and grouped aggregates. Every row
returned is annotated with the target's current name and description, or
None when the entity has since been deleted.

All methods are read-only and use `DatabaseService.get_session()`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import get_logger
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import EntityType, XpGrant
from questlog.modules.shared.base_service import BaseService
from questlog.modules.xp.adapters import ADAPTERS, get_adapter
from questlog.modules.xp.grant_service import SOURCE_TYPES
from questlog.modules.xp.repository import XpGrantRepository

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus


@dataclass(frozen=True)
class HistoryEntry:
    id: int
    entity_type: str
    entity_id: str
    entity_name: Optional[str]
    entity_description: Optional[str]
    xp_amount: int
    source_type: str
    source_id: Optional[str]
    reason: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class XpTotals:
    total_xp: int
    grant_count: int


class XpHistoryService(BaseService):
    """
    Annotated ledger reads.

    Public Methods
    --------------
    - get_entity_history() -> One entity's grants, newest first
    - get_grants_for_source() -> Grants made by one source record
    - get_recent() -> Feed across all entities
    - get_summary_by_entity_type() -> {entity_type: XpTotals}
    - get_breakdown_by_source() -> {source_type: XpTotals}
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

    def _default_limit(self) -> int:
        return int(self.get_config("xp.history.default_limit", 50))

    def _validate_source_type(self, source_type: Optional[str]) -> Optional[str]:
        if source_type is None:
            return None
        return InputValidator.validate_choice(source_type, "source_type", SOURCE_TYPES)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def get_entity_history(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
        source_type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[HistoryEntry]:
        """
        Grants received by one entity, newest first.

        Raises:
            NotFoundError: Entity absent or owned by another user
            ValidationError: Bad entity type, source type or pagination
        """
        user_id = self.validate_user_id(user_id)
        entity_id = self.validate_entity_id(entity_id)
        adapter = get_adapter(entity_type)
        source_type = self._validate_source_type(source_type)
        limit, offset = self.validate_pagination(
            self._default_limit() if limit is None else limit, offset
        )

        async with DatabaseService.get_session() as session:
            entity = await adapter.load(session, user_id, entity_id)
            rows = await self._ledger.history(
                session,
                user_id,
                entity_type=adapter.entity_type.value,
                entity_id=entity_id,
                source_type=source_type,
                limit=limit,
                offset=offset,
            )

        name, description = adapter.describe(entity)
        return [self._entry(row, name, description) for row in rows]

    async def get_grants_for_source(
        self,
        user_id: str,
        source_type: str,
        source_id: str,
    ) -> List[HistoryEntry]:
        user_id = self.validate_user_id(user_id)
        source_type = InputValidator.validate_choice(source_type, "source_type", SOURCE_TYPES)
        source_id = self.validate_entity_id(source_id, "source_id")

        async with DatabaseService.get_session() as session:
            rows = await self._ledger.find_by_source(session, user_id, source_type, source_id)
            return await self._annotate(session, user_id, rows)

    async def get_recent(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        entity_type: Optional[str] = None,
        source_type: Optional[str] = None,
    ) -> List[HistoryEntry]:
        """Feed across all of a user's entities; deleted targets annotate as None."""
        user_id = self.validate_user_id(user_id)
        if entity_type is not None:
            entity_type = InputValidator.validate_choice(
                entity_type, "entity_type", [e.value for e in EntityType]
            )
        source_type = self._validate_source_type(source_type)
        limit, offset = self.validate_pagination(
            self._default_limit() if limit is None else limit, offset
        )

        async with DatabaseService.get_session() as session:
            rows = await self._ledger.history(
                session,
                user_id,
                entity_type=entity_type,
                source_type=source_type,
                limit=limit,
                offset=offset,
            )
            return await self._annotate(session, user_id, rows)

    async def get_summary_by_entity_type(self, user_id: str) -> Dict[str, XpTotals]:
        user_id = self.validate_user_id(user_id)
        async with DatabaseService.get_session() as session:
            grouped = await self._ledger.totals_grouped_by(
                session, user_id, XpGrant.entity_type
            )
        return {key: XpTotals(*values) for key, values in grouped.items()}

    async def get_breakdown_by_source(
        self,
        user_id: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Dict[str, XpTotals]:
        """
        XP per source type, optionally narrowed to one entity. Narrowing to
        an entity checks ownership first.
        """
        user_id = self.validate_user_id(user_id)
        conditions: List[Any] = []

        async with DatabaseService.get_session() as session:
            if entity_id is not None:
                adapter = get_adapter(entity_type or "")
                entity_id = self.validate_entity_id(entity_id)
                await adapter.load(session, user_id, entity_id)
                conditions += [
                    XpGrant.entity_type == adapter.entity_type.value,
                    XpGrant.entity_id == entity_id,
                ]
            elif entity_type is not None:
                conditions.append(
                    XpGrant.entity_type
                    == InputValidator.validate_choice(
                        entity_type, "entity_type", [e.value for e in EntityType]
                    )
                )

            grouped = await self._ledger.totals_grouped_by(
                session, user_id, XpGrant.source_type, *conditions
            )
        return {key: XpTotals(*values) for key, values in grouped.items()}

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _annotate(
        self,
        session: AsyncSession,
        user_id: str,
        rows: Sequence[XpGrant],
    ) -> List[HistoryEntry]:
        ids_by_type: Dict[str, set[str]] = {}
        for row in rows:
            ids_by_type.setdefault(row.entity_type, set()).add(row.entity_id)

        names: Dict[tuple[str, str], tuple[str, Optional[str]]] = {}
        for entity_type, ids in ids_by_type.items():
            adapter = ADAPTERS.get(EntityType(entity_type))
            if adapter is None:
                continue
            for entity_id, described in (
                await adapter.describe_many(session, user_id, ids)
            ).items():
                names[(entity_type, entity_id)] = described

        entries = []
        for row in rows:
            name, description = names.get((row.entity_type, row.entity_id), (None, None))
            entries.append(self._entry(row, name, description))
        return entries

    @staticmethod
    def _entry(row: XpGrant, name: Optional[str], description: Optional[str]) -> HistoryEntry:
        return HistoryEntry(
            id=row.id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            entity_name=name,
            entity_description=description,
            xp_amount=row.xp_amount,
            source_type=row.source_type,
            source_id=row.source_id,
            reason=row.reason,
            created_at=row.created_at,
        )
