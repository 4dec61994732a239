"""
XP ledger repository.

Data access for `xp_grants`: source lookups for reversal, per-entity sums for
recalculation, ordered history pages and grouped aggregates. No business
rules; the grant and recalculation services are the only writers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from questlog.database.models import XpGrant
from questlog.modules.shared.base_repository import BaseRepository

HISTORY_ORDER = (XpGrant.created_at.desc(), XpGrant.id.desc())


class XpGrantRepository(BaseRepository[XpGrant]):
    """Repository for the XP ledger."""

    # ------------------------------------------------------------------ #
    # Source lookups
    # ------------------------------------------------------------------ #

    async def find_by_source(
        self,
        session: AsyncSession,
        user_id: str,
        source_type: str,
        source_id: str,
    ) -> List[XpGrant]:
        return await self.find_many_where(
            session,
            XpGrant.user_id == user_id,
            XpGrant.source_type == source_type,
            XpGrant.source_id == source_id,
            order_by=[XpGrant.id],
        )

    async def delete_by_source(
        self,
        session: AsyncSession,
        user_id: str,
        source_type: str,
        source_id: str,
    ) -> int:
        result = await session.execute(
            delete(XpGrant)
            .where(
                XpGrant.user_id == user_id,
                XpGrant.source_type == source_type,
                XpGrant.source_id == source_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.log.debug(
            "Repository.delete_by_source: XpGrant",
            extra={
                "model": "XpGrant",
                "source_type": source_type,
                "source_id": source_id,
                "deleted": result.rowcount,
            },
        )
        return result.rowcount

    # ------------------------------------------------------------------ #
    # Entity lookups
    # ------------------------------------------------------------------ #

    async def sum_for_entity(
        self,
        session: AsyncSession,
        user_id: str,
        entity_type: str,
        entity_id: str,
    ) -> int:
        result = await session.execute(
            select(func.coalesce(func.sum(XpGrant.xp_amount), 0)).where(
                XpGrant.user_id == user_id,
                XpGrant.entity_type == entity_type,
                XpGrant.entity_id == entity_id,
            )
        )
        return int(result.scalar_one())

    async def delete_for_entity(
        self,
        session: AsyncSession,
        user_id: str,
        entity_type: str,
        entity_id: str,
    ) -> int:
        result = await session.execute(
            delete(XpGrant)
            .where(
                XpGrant.user_id == user_id,
                XpGrant.entity_type == entity_type,
                XpGrant.entity_id == entity_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.log.debug(
            "Repository.delete_for_entity: XpGrant",
            extra={
                "model": "XpGrant",
                "entity_type": entity_type,
                "entity_id": entity_id,
                "deleted": result.rowcount,
            },
        )
        return result.rowcount

    # ------------------------------------------------------------------ #
    # History & aggregates
    # ------------------------------------------------------------------ #

    async def history(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        source_type: Optional[str] = None,
        limit: int,
        offset: int = 0,
    ) -> List[XpGrant]:
        """Newest first; `id` breaks ties between equal timestamps."""
        conditions: List[Any] = [XpGrant.user_id == user_id]
        if entity_type is not None:
            conditions.append(XpGrant.entity_type == entity_type)
        if entity_id is not None:
            conditions.append(XpGrant.entity_id == entity_id)
        if source_type is not None:
            conditions.append(XpGrant.source_type == source_type)

        return await self.find_many_where(
            session,
            *conditions,
            order_by=HISTORY_ORDER,
            limit=limit,
            offset=offset,
        )

    async def totals_grouped_by(
        self,
        session: AsyncSession,
        user_id: str,
        group_column: Any,
        *conditions: Any,
    ) -> Dict[str, Tuple[int, int]]:
        """Map group value -> (total_xp, grant_count)."""
        stmt = (
            select(
                group_column,
                func.coalesce(func.sum(XpGrant.xp_amount), 0),
                func.count(XpGrant.id),
            )
            .where(XpGrant.user_id == user_id, *conditions)
            .group_by(group_column)
            .order_by(group_column)
        )
        result = await session.execute(stmt)
        return {row[0]: (int(row[1]), int(row[2])) for row in result.all()}
