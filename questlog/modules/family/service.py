"""
FamilyService - relationships and interactions
==============================================

Handles:
- Family member CRUD
- Recording an interaction: base XP plus an enjoyment bonus, granted to the
  member under `source_type="interaction"` in the same transaction that
  stores the interaction and stamps `last_interaction_date`
- Deleting an interaction: its grants are reversed first, then the row goes

Connection levels are claimed through `LevelUpService` like stat levels;
recording interactions never changes `connection_level`.

Config keys:
- xp.interaction.base (default 10)
- xp.interaction.enjoyed_bonus (default 5)
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, List, Optional

from questlog.core.database.base import utc_now
from questlog.core.database.service import DatabaseService
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import (
    EntityType,
    FamilyInteraction,
    FamilyMember,
    SourceType,
    XpGrant,
)
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import NotFoundError
from questlog.modules.xp.grant_service import GrantRequest, GrantResult
from questlog.modules.xp.recalculation_service import ReversalResult
from questlog.modules.xp.repository import XpGrantRepository

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus
    from questlog.modules.xp.grant_service import XpGrantService
    from questlog.modules.xp.recalculation_service import XpRecalculationService


_UNSET: Any = object()


class FamilyService(BaseService):
    """
    FamilyService handles family members and their interactions.

    Public Methods
    --------------
    - create_member(), get_member(), list_members(), update_member(), delete_member()
    - record_interaction() -> (FamilyInteraction, GrantResult)
    - list_interactions()
    - delete_interaction() -> ReversalResult
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
        self._member_repo = BaseRepository[FamilyMember](FamilyMember, self.log)
        self._interaction_repo = BaseRepository[FamilyInteraction](FamilyInteraction, self.log)
        self._ledger = XpGrantRepository(XpGrant, self.log)

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def create_member(
        self,
        user_id: str,
        name: str,
        relationship: Optional[str] = None,
    ) -> FamilyMember:
        user_id = self.validate_user_id(user_id)
        name = self.validate_name(name)
        if relationship is not None:
            relationship = InputValidator.validate_string(
                relationship, "relationship", max_length=100
            ) or None

        async with DatabaseService.get_transaction() as session:
            member = self._member_repo.add(
                session,
                FamilyMember(
                    user_id=user_id,
                    name=name,
                    relationship_label=relationship,
                    connection_xp=0,
                    connection_level=1,
                ),
            )
            await session.flush()

        self.log_operation("create_member", user_id=user_id, member_id=member.id)
        return member

    async def get_member(self, user_id: str, member_id: str) -> FamilyMember:
        user_id = self.validate_user_id(user_id)
        member_id = self.validate_entity_id(member_id, "member_id")

        async with DatabaseService.get_session() as session:
            member = await self._member_repo.get_owned(session, user_id, member_id)

        if member is None:
            raise NotFoundError("FamilyMember", member_id)
        return member

    async def list_members(self, user_id: str) -> List[FamilyMember]:
        user_id = self.validate_user_id(user_id)

        async with DatabaseService.get_session() as session:
            return await self._member_repo.find_many_where(
                session,
                FamilyMember.user_id == user_id,
                order_by=[FamilyMember.created_at, FamilyMember.id],
            )

    async def update_member(
        self,
        user_id: str,
        member_id: str,
        name: Optional[str] = None,
        relationship: Optional[str] = _UNSET,
    ) -> FamilyMember:
        user_id = self.validate_user_id(user_id)
        member_id = self.validate_entity_id(member_id, "member_id")
        if name is not None:
            name = self.validate_name(name)
        if relationship is not _UNSET and relationship is not None:
            relationship = InputValidator.validate_string(
                relationship, "relationship", max_length=100
            ) or None

        async with DatabaseService.get_transaction() as session:
            member = await self._load_member(session, user_id, member_id, for_update=True)
            if name is not None:
                member.name = name
            if relationship is not _UNSET:
                member.relationship_label = relationship
            await session.flush()

        self.log_operation("update_member", user_id=user_id, member_id=member_id)
        return member

    async def delete_member(self, user_id: str, member_id: str) -> int:
        """
        Delete a member, its interactions and every ledger row targeting it.

        This is a **write operation** using get_transaction().

        Returns:
            Number of ledger rows removed
        """
        user_id = self.validate_user_id(user_id)
        member_id = self.validate_entity_id(member_id, "member_id")

        async with DatabaseService.get_transaction() as session:
            member = await self._load_member(session, user_id, member_id, for_update=True)

            removed = await self._ledger.delete_for_entity(
                session, user_id, EntityType.FAMILY_MEMBER.value, member_id
            )
            for interaction in await self._interaction_repo.find_many_where(
                session, FamilyInteraction.family_member_id == member_id
            ):
                await self._interaction_repo.delete(session, interaction)
            await self._member_repo.delete(session, member)

        self.log_operation(
            "delete_member", user_id=user_id, member_id=member_id, ledger_rows_removed=removed
        )
        return removed

    # -------------------------------------------------------------------------
    # Interactions
    # -------------------------------------------------------------------------

    def interaction_xp(self, enjoyed: bool) -> int:
        base = int(self.get_config("xp.interaction.base", 10))
        bonus = int(self.get_config("xp.interaction.enjoyed_bonus", 5))
        return base + (bonus if enjoyed else 0)

    async def record_interaction(
        self,
        user_id: str,
        member_id: str,
        note: Optional[str] = None,
        enjoyed: bool = False,
    ) -> tuple[FamilyInteraction, GrantResult]:
        """
        Log an interaction and award connection XP.

        This is a **write operation** using get_transaction() with pessimistic locking.
        The interaction row, its grant and `last_interaction_date` commit together.

        Example:
            >>> interaction, grant = await family_service.record_interaction(
            ...     "u1", mom.id, note="Phone call", enjoyed=True
            ... )
            >>> interaction.xp_awarded
            15
        """
        user_id = self.validate_user_id(user_id)
        member_id = self.validate_entity_id(member_id, "member_id")
        xp_amount = self.interaction_xp(bool(enjoyed))

        async with DatabaseService.get_transaction() as session:
            member = await self._load_member(session, user_id, member_id, for_update=True)

            interaction = self._interaction_repo.add(
                session,
                FamilyInteraction(
                    user_id=user_id,
                    family_member_id=member_id,
                    note=note,
                    enjoyed=bool(enjoyed),
                    xp_awarded=xp_amount,
                ),
            )
            await session.flush()

            results = await self.grants.apply_grants(
                session,
                user_id,
                [
                    GrantRequest(
                        EntityType.FAMILY_MEMBER.value,
                        member_id,
                        xp_amount,
                        reason=note or "Family interaction",
                    )
                ],
                SourceType.INTERACTION.value,
                interaction.id,
            )
            member.last_interaction_date = self._today()
            await session.flush()

        self.log_operation(
            "record_interaction",
            user_id=user_id,
            member_id=member_id,
            interaction_id=interaction.id,
            xp_amount=xp_amount,
            enjoyed=bool(enjoyed),
        )
        await self.grants.publish_granted(results)
        await self.emit_event(
            "family.interaction_recorded",
            {
                "user_id": user_id,
                "member_id": member_id,
                "interaction_id": interaction.id,
                "xp_awarded": xp_amount,
                "enjoyed": bool(enjoyed),
                "can_level_up": results[0].can_level_up,
            },
        )
        return interaction, results[0]

    async def list_interactions(
        self,
        user_id: str,
        member_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[FamilyInteraction]:
        user_id = self.validate_user_id(user_id)
        member_id = self.validate_entity_id(member_id, "member_id")
        limit, offset = self.validate_pagination(
            self.get_config("xp.history.default_limit", 50) if limit is None else limit,
            offset,
        )

        async with DatabaseService.get_session() as session:
            await self._load_member(session, user_id, member_id)
            return await self._interaction_repo.find_many_where(
                session,
                FamilyInteraction.user_id == user_id,
                FamilyInteraction.family_member_id == member_id,
                order_by=[FamilyInteraction.created_at.desc(), FamilyInteraction.id.desc()],
                limit=limit,
                offset=offset,
            )

    async def delete_interaction(self, user_id: str, interaction_id: str) -> ReversalResult:
        """
        Reverse an interaction's XP, then delete it.

        This is a **write operation** using get_transaction().
        `last_interaction_date` is left as is.
        """
        user_id = self.validate_user_id(user_id)
        interaction_id = self.validate_entity_id(interaction_id, "interaction_id")

        async with DatabaseService.get_transaction() as session:
            interaction = await self._interaction_repo.get_owned(
                session, user_id, interaction_id, for_update=True
            )
            if interaction is None:
                raise NotFoundError("FamilyInteraction", interaction_id)

            reversal = await self.recalculation.reverse_in_session(
                session, user_id, SourceType.INTERACTION.value, interaction_id
            )
            await self._interaction_repo.delete(session, interaction)

        self.log_operation(
            "delete_interaction",
            user_id=user_id,
            interaction_id=interaction_id,
            deleted_count=reversal.deleted_count,
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return reversal

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load_member(
        self, session: Any, user_id: str, member_id: str, for_update: bool = False
    ) -> FamilyMember:
        member = await self._member_repo.get_owned(
            session, user_id, member_id, for_update=for_update
        )
        if member is None:
            raise NotFoundError("FamilyMember", member_id)
        return member

    @staticmethod
    def _today() -> date:
        return utc_now().date()
