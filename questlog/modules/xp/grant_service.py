"""
XP Grant Service
================

Purpose
-------
The only writer of ledger rows. Each grant appends one `XpGrant` and bumps
the target entity's cached total in the same transaction, so the cached
total always equals the ledger sum.

Domain
------
- Single grants (`grant_xp`) and same-source batches (`grant_batch`)
- Session-level `apply_grants` for source handlers that change their own
  records in the same unit of work (journal finalize, task completion)
- Level is never changed here; the response only reports eligibility

Guarantees
----------
- Negative amounts are always rejected; zero only with `allow_zero=True`
  (content-tag markers)
- The target row is locked (`SELECT ... FOR UPDATE`; `BEGIN IMMEDIATE` on
  SQLite) before the read-modify-write, so concurrent grants never lose
  an update
- A batch is all-or-nothing
- `xp.granted` is published per row after commit
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from questlog.core.database.retry_policy import DatabaseRetryPolicy
from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import LogContext, get_logger
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import SourceType, XpGrant
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import InvalidAmountError
from questlog.modules.xp.adapters import EntityAdapter, get_adapter
from questlog.modules.xp.repository import XpGrantRepository

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus


SOURCE_TYPES = tuple(s.value for s in SourceType)


# ============================================================================
# Request / Result types
# ============================================================================


@dataclass(frozen=True)
class GrantRequest:
    """One award inside a batch."""

    entity_type: str
    entity_id: str
    amount: int
    reason: Optional[str] = None
    allow_zero: bool = False


@dataclass
class GrantResult:
    """
    Outcome of one grant.

    `can_level_up` / `xp_to_next_level` are computed from the new total.
    For entities that do not track XP, `new_total` and `xp_to_next_level`
    are None and `can_level_up` is False.
    """

    grant: XpGrant
    entity: Any
    entity_type: str
    new_total: Optional[int]
    can_level_up: bool
    xp_to_next_level: Optional[int]

    def to_event_payload(self) -> Dict[str, Any]:
        return {
            "grant_id": self.grant.id,
            "user_id": self.grant.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.grant.entity_id,
            "xp_amount": self.grant.xp_amount,
            "source_type": self.grant.source_type,
            "source_id": self.grant.source_id,
            "new_total": self.new_total,
            "can_level_up": self.can_level_up,
        }


# ============================================================================
# XpGrantService
# ============================================================================


class XpGrantService(BaseService):
    """
    Writes XP ledger rows and maintains cached totals.

    Public Methods
    --------------
    - grant_xp() -> One award in its own transaction
    - grant_batch() -> Several awards from one source, one transaction
    - apply_grants() -> Same as grant_batch inside a caller's session
    - publish_granted() -> Emit `xp.granted` for committed results
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
        self._retry = DatabaseRetryPolicy.from_config()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def grant_xp(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
        amount: int,
        source_type: str,
        source_id: Optional[str] = None,
        reason: Optional[str] = None,
        allow_zero: bool = False,
    ) -> GrantResult:
        """
        Grant XP to one entity.

        This is a **write operation** using get_transaction() with pessimistic locking.

        Raises:
            InvalidAmountError: Negative amount, or zero without allow_zero
            ValidationError: Unknown entity/source type, malformed ids
            NotFoundError: Entity absent or owned by another user

        Example:
            >>> result = await grant_service.grant_xp(
            ...     user_id="u1",
            ...     entity_type="character_stat",
            ...     entity_id=stat.id,
            ...     amount=25,
            ...     source_type="journal",
            ...     source_id=entry.id,
            ... )
            >>> result.new_total
            25
        """
        request = GrantRequest(entity_type, entity_id, amount, reason, allow_zero)
        results = await self.grant_batch(user_id, [request], source_type, source_id)
        return results[0]

    async def grant_batch(
        self,
        user_id: str,
        awards: Sequence[GrantRequest],
        source_type: str,
        source_id: Optional[str] = None,
    ) -> List[GrantResult]:
        """
        Grant several awards sharing one source in ONE transaction.

        Any failure rolls back every row of the batch. A transaction aborted
        by a transient storage error is re-run as a whole by the retry policy.
        """

        async def _unit_of_work() -> List[GrantResult]:
            async with DatabaseService.get_transaction() as session:
                return await self.apply_grants(session, user_id, awards, source_type, source_id)

        async with LogContext(
            user_id=user_id,
            operation="xp.grant_batch",
            source_type=source_type,
            source_id=source_id,
        ):
            results = await self._retry.execute(
                _unit_of_work,
                operation_name="xp.grant_batch",
                context={"source_type": source_type, "grant_count": len(awards)},
            )
            await self.publish_granted(results)
        return results

    async def apply_grants(
        self,
        session: AsyncSession,
        user_id: str,
        awards: Sequence[GrantRequest],
        source_type: str,
        source_id: Optional[str] = None,
    ) -> List[GrantResult]:
        """
        Apply awards inside the caller's transaction. Publishes nothing;
        the caller calls `publish_granted` after its commit.

        Every award is validated before the first row is written.
        """
        user_id = self.validate_user_id(user_id)
        source_type = InputValidator.validate_choice(source_type, "source_type", SOURCE_TYPES)
        if source_id is not None:
            source_id = self.validate_entity_id(source_id, "source_id")

        prepared = [(self._prepare(award), award) for award in awards]

        self.log_operation(
            "apply_grants",
            user_id=user_id,
            source_type=source_type,
            source_id=source_id,
            grant_count=len(prepared),
        )

        # lock in a stable order so two batches never wait on each other
        targets = sorted({(a.entity_type.value, eid): a for (a, eid, _), _ in prepared}.items())
        for (_, entity_id), adapter in targets:
            await adapter.load(session, user_id, entity_id, for_update=True)

        results: List[GrantResult] = []
        for (adapter, entity_id, amount), award in prepared:
            results.append(
                await self._apply_one(
                    session,
                    user_id=user_id,
                    adapter=adapter,
                    entity_id=entity_id,
                    amount=amount,
                    source_type=source_type,
                    source_id=source_id,
                    reason=award.reason,
                )
            )

        await self._ledger.flush(session)
        return results

    async def publish_granted(self, results: Sequence[GrantResult]) -> None:
        for result in results:
            await self.emit_event("xp.granted", result.to_event_payload())

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def validate_amount(self, amount: Any, allow_zero: bool = False) -> int:
        """
        Raises:
            InvalidAmountError: Non-integer, negative, zero (unless allowed),
                or above `xp.grant.max_amount`
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmountError(amount, "must be an integer")
        if amount < 0:
            raise InvalidAmountError(amount, "cannot be negative")
        if amount == 0 and not allow_zero:
            raise InvalidAmountError(amount, "must be positive")

        max_amount = self.get_config("xp.grant.max_amount")
        if max_amount is not None and amount > int(max_amount):
            raise InvalidAmountError(amount, f"cannot exceed {int(max_amount):,}")
        return amount

    def _prepare(self, award: GrantRequest) -> tuple[EntityAdapter, str, int]:
        adapter = get_adapter(award.entity_type)
        entity_id = self.validate_entity_id(award.entity_id)
        amount = self.validate_amount(award.amount, allow_zero=award.allow_zero)
        if not adapter.tracks_xp and amount != 0:
            raise InvalidAmountError(
                amount, f"{adapter.resource_name} only accepts zero-XP markers"
            )
        return adapter, entity_id, amount

    async def _apply_one(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        adapter: EntityAdapter,
        entity_id: str,
        amount: int,
        source_type: str,
        source_id: Optional[str],
        reason: Optional[str],
    ) -> GrantResult:
        entity = await adapter.load(session, user_id, entity_id, for_update=True)

        grant = self._ledger.add(
            session,
            XpGrant(
                user_id=user_id,
                entity_type=adapter.entity_type.value,
                entity_id=entity_id,
                xp_amount=amount,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            ),
        )

        if not adapter.tracks_xp:
            await self._ledger.flush(session)
            return GrantResult(
                grant=grant,
                entity=entity,
                entity_type=adapter.entity_type.value,
                new_total=None,
                can_level_up=False,
                xp_to_next_level=None,
            )

        old_total = adapter.get_total_xp(entity)
        new_total = old_total + amount
        adapter.set_total_xp(entity, new_total)
        await self._ledger.flush(session)

        level = adapter.get_level(entity) or 1
        curve = adapter.curve(self._config)

        self.log.debug(
            "XP granted",
            extra={
                "user_id": user_id,
                "entity_type": adapter.entity_type.value,
                "entity_id": entity_id,
                "xp_amount": amount,
                "old_total": old_total,
                "new_total": new_total,
                "source_type": source_type,
                "source_id": source_id,
            },
        )

        return GrantResult(
            grant=grant,
            entity=entity,
            entity_type=adapter.entity_type.value,
            new_total=new_total,
            can_level_up=curve.can_level_up(level, new_total),
            xp_to_next_level=curve.xp_to_next_level(level, new_total),
        )
