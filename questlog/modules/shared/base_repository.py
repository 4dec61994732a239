"""
Generic async repository shared by the questlog services.

Every questlog row belongs to one user, so lookups go through `get_owned`,
which treats a foreign row exactly like a missing one. Pass `for_update=True`
to take a row lock inside `DatabaseService.get_transaction()`. The
repository never commits; the caller's transaction does.

    tasks = BaseRepository(Task, logger)
    task = await tasks.get_owned(session, user_id, task_id, for_update=True)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Data access for one model class; logs every call at DEBUG with the model name."""

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get_owned(
        self,
        session: AsyncSession,
        user_id: str,
        id_value: Any,
        for_update: bool = False,
    ) -> Optional[T]:
        """
        Get a record by id only if it belongs to `user_id`.

        Returns None both for missing and for foreign-owned records.
        """
        return await self.find_one_where(
            session,
            self.model_class.id == id_value,  # type: ignore[attr-defined]
            self.model_class.user_id == user_id,  # type: ignore[attr-defined]
            for_update=for_update,
        )

    def _debug(self, action: str, **fields: Any) -> None:
        name = self.model_class.__name__
        self.log.debug(f"{name}.{action}", extra={"model": name, **fields})

    def _select(self, conditions: Sequence[Any], for_update: bool) -> Any:
        stmt = select(self.model_class).where(*conditions)
        return stmt.with_for_update() if for_update else stmt

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        instance = (await session.execute(self._select(conditions, for_update))).scalar_one_or_none()
        self._debug("find_one", found=instance is not None, locked=for_update)
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[T]:
        """`order_by`, `limit` and `offset` are applied only when given."""
        stmt = self._select(conditions, for_update)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        instances = list((await session.execute(stmt)).scalars().all())
        self._debug("find_many", found_count=len(instances), locked=for_update, limit=limit)
        return instances

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self._debug("add")
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        self._debug("delete")

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
        self._debug("flush")
