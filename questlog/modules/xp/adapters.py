"""
Entity Adapters

Purpose
-------
One read/update contract over every kind of ledger target, so the grant,
reversal, level-up and history services never branch on entity-type strings.

Each adapter knows:
- which model backs the entity type and how to load it for a user
- which columns hold cached XP and level (`total_xp`/`current_level` on
  stats, `connection_xp`/`connection_level` on family members)
- whether the type accumulates XP at all (`tracks_xp`)
- which configuration key selects its progression curve (`curve_key`)

Ownership
---------
`load` raises the same `NotFoundError` for a missing record and for a record
owned by another user.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, Union

from sqlalchemy.ext.asyncio import AsyncSession

from questlog.core.logging.logger import get_logger
from questlog.database.models import CharacterStat, ContentTag, EntityType, FamilyMember
from questlog.modules.progression.curves import DEFAULT_STEP, ProgressionCurve, get_curve
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

logger = get_logger(__name__)


class EntityAdapter(ABC):
    """Base adapter; subclasses set the class attributes below."""

    entity_type: EntityType
    model: Type[Any]
    resource_name: str = "Entity"

    xp_attr: Optional[str] = None
    level_attr: Optional[str] = None
    description_attr: Optional[str] = None

    curve_key: Optional[str] = None
    default_curve: Optional[str] = None

    def __init__(self) -> None:
        self.repo: BaseRepository[Any] = BaseRepository(
            model_class=self.model,
            logger=get_logger(f"{__name__}.{self.__class__.__name__}"),
        )

    @property
    def tracks_xp(self) -> bool:
        return self.xp_attr is not None

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    async def load(
        self,
        session: AsyncSession,
        user_id: str,
        entity_id: str,
        for_update: bool = False,
    ) -> Any:
        """
        Load an entity owned by `user_id`.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        entity = await self.repo.get_owned(session, user_id, entity_id, for_update=for_update)
        if entity is None:
            raise NotFoundError(self.resource_name, entity_id)
        return entity

    async def find_for_update(
        self, session: AsyncSession, user_id: str, entity_id: str
    ) -> Optional[Any]:
        return await self.repo.get_owned(session, user_id, entity_id, for_update=True)

    async def list_for_user(
        self, session: AsyncSession, user_id: str, for_update: bool = False
    ) -> List[Any]:
        return await self.repo.find_many_where(
            session,
            self.model.user_id == user_id,
            for_update=for_update,
            order_by=[self.model.created_at, self.model.id],
        )

    async def describe_many(
        self, session: AsyncSession, user_id: str, entity_ids: Iterable[str]
    ) -> Dict[str, Tuple[str, Optional[str]]]:
        """Map id -> (name, description) for the ids that still exist."""
        ids = list(set(entity_ids))
        if not ids:
            return {}
        entities = await self.repo.find_many_where(
            session,
            self.model.id.in_(ids),
            self.model.user_id == user_id,
        )
        return {entity.id: self.describe(entity) for entity in entities}

    # ------------------------------------------------------------------ #
    # Cached XP / level
    # ------------------------------------------------------------------ #

    def get_total_xp(self, entity: Any) -> int:
        if self.xp_attr is None:
            return 0
        return int(getattr(entity, self.xp_attr))

    def set_total_xp(self, entity: Any, value: int) -> None:
        if self.xp_attr is None:
            if value:
                raise InvalidOperationError(
                    "set_total_xp", f"{self.resource_name} does not accumulate XP"
                )
            return
        setattr(entity, self.xp_attr, value)

    def get_level(self, entity: Any) -> Optional[int]:
        if self.level_attr is None:
            return None
        return int(getattr(entity, self.level_attr))

    def set_level(self, entity: Any, level: int) -> None:
        if self.level_attr is None:
            raise InvalidOperationError("set_level", f"{self.resource_name} does not level")
        setattr(entity, self.level_attr, level)

    def describe(self, entity: Any) -> Tuple[str, Optional[str]]:
        description = getattr(entity, self.description_attr) if self.description_attr else None
        return entity.name, description

    # ------------------------------------------------------------------ #
    # Curve
    # ------------------------------------------------------------------ #

    def curve(self, config_manager: Any) -> ProgressionCurve:
        """
        Resolve this entity type's curve from configuration.

        Raises:
            InvalidOperationError: If the entity type does not level
        """
        if self.curve_key is None or self.default_curve is None:
            raise InvalidOperationError("progression", f"{self.resource_name} does not level")
        name = config_manager.get(self.curve_key, self.default_curve)
        step = int(config_manager.get("progression.step", DEFAULT_STEP))
        return get_curve(name, step)


class CharacterStatAdapter(EntityAdapter):
    entity_type = EntityType.CHARACTER_STAT
    model = CharacterStat
    resource_name = "CharacterStat"

    xp_attr = "total_xp"
    level_attr = "current_level"
    description_attr = "description"

    curve_key = "progression.curves.character_stat"
    default_curve = "cumulative_threshold"


class FamilyMemberAdapter(EntityAdapter):
    entity_type = EntityType.FAMILY_MEMBER
    model = FamilyMember
    resource_name = "FamilyMember"

    xp_attr = "connection_xp"
    level_attr = "connection_level"
    description_attr = "relationship_label"

    curve_key = "progression.curves.family_member"
    default_curve = "linear_divide"


class ContentTagAdapter(EntityAdapter):
    """Zero-XP ledger target; never levels."""

    entity_type = EntityType.CONTENT_TAG
    model = ContentTag
    resource_name = "ContentTag"


ADAPTERS: Dict[EntityType, EntityAdapter] = {
    adapter.entity_type: adapter
    for adapter in (CharacterStatAdapter(), FamilyMemberAdapter(), ContentTagAdapter())
}


def get_adapter(entity_type: Union[str, EntityType]) -> EntityAdapter:
    """
    Look up the adapter for an entity type.

    Raises:
        ValidationError: If the type is unknown or has no adapter
            (reserved types such as "goal")
    """
    try:
        key = EntityType(entity_type)
    except ValueError:
        raise ValidationError(
            "entity_type",
            f"Unknown entity type '{entity_type}'. "
            f"Must be one of: {', '.join(sorted(e.value for e in EntityType))}",
        ) from None

    adapter = ADAPTERS.get(key)
    if adapter is None:
        raise ValidationError(
            "entity_type", f"Entity type '{key.value}' cannot receive XP"
        )
    return adapter


def get_progressable_adapter(entity_type: Union[str, EntityType]) -> EntityAdapter:
    """Like `get_adapter`, but only for types that track XP and level."""
    adapter = get_adapter(entity_type)
    if not adapter.tracks_xp or adapter.level_attr is None:
        raise ValidationError(
            "entity_type", f"Entity type '{adapter.entity_type.value}' does not level"
        )
    return adapter
