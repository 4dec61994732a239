"""
JournalService - journal entries as an XP source
================================================

Lifecycle
---------
    draft --submit_for_review--> in_review --finalize_entry--> complete
      |                                                          ^
      +------------------- finalize_entry -----------------------+

    complete --edit_entry--> draft

- `submit_for_review` attaches the reviewed award list (stat awards, family
  awards, content tag ids) to the entry.
- `finalize_entry` grants every award once, in one transaction with the
  status change. Tags get zero-XP ledger markers. Only `complete` is
  refused, so a `draft` entry (for example one returned by `edit_entry`)
  is finalized directly with the awards it kept.
- `edit_entry` and `delete_entry` reverse whatever the entry granted before
  touching it, so a re-finalized entry never double-counts.

Content tags are owned here too; they exist only to label entries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm.attributes import flag_modified

from questlog.core.database.base import utc_now
from questlog.core.database.service import DatabaseService
from questlog.core.logging.logger import LogContext
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import (
    ContentTag,
    EntityType,
    JournalEntry,
    JournalStatus,
    SourceType,
)
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import (
    AlreadyProcessedError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from questlog.modules.xp.grant_service import GrantRequest, GrantResult
from questlog.modules.xp.recalculation_service import ReversalResult

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus
    from questlog.modules.xp.grant_service import XpGrantService
    from questlog.modules.xp.recalculation_service import XpRecalculationService


_UNSET: Any = object()


class JournalService(BaseService):
    """
    JournalService handles journal entries and content tags.

    Public Methods
    --------------
    - create_entry(), get_entry(), list_entries()
    - submit_for_review() -> Attach suggested awards, draft -> in_review
    - finalize_entry() -> Grant awards, mark complete
    - edit_entry() -> Reverse grants, update text, back to draft
    - delete_entry() -> Reverse grants, delete
    - create_tag(), list_tags()
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
        self._entry_repo = BaseRepository[JournalEntry](JournalEntry, self.log)
        self._tag_repo = BaseRepository[ContentTag](ContentTag, self.log)

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def create_entry(
        self,
        user_id: str,
        content: str,
        title: Optional[str] = None,
    ) -> JournalEntry:
        user_id = self.validate_user_id(user_id)
        content = InputValidator.validate_string(content, "content")
        if title is not None:
            title = InputValidator.validate_string(title, "title", max_length=200) or None

        async with DatabaseService.get_transaction() as session:
            entry = self._entry_repo.add(
                session,
                JournalEntry(
                    user_id=user_id,
                    title=title,
                    content=content,
                    status=JournalStatus.DRAFT.value,
                ),
            )
            await session.flush()

        self.log_operation("create_entry", user_id=user_id, entry_id=entry.id)
        return entry

    async def get_entry(self, user_id: str, entry_id: str) -> JournalEntry:
        user_id = self.validate_user_id(user_id)
        entry_id = self.validate_entity_id(entry_id, "entry_id")

        async with DatabaseService.get_session() as session:
            return await self._load_entry(session, user_id, entry_id)

    async def list_entries(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[JournalEntry]:
        user_id = self.validate_user_id(user_id)
        limit, offset = self.validate_pagination(
            self.get_config("xp.history.default_limit", 50) if limit is None else limit,
            offset,
        )
        conditions = [JournalEntry.user_id == user_id]
        if status is not None:
            conditions.append(
                JournalEntry.status
                == InputValidator.validate_choice(
                    status, "status", [s.value for s in JournalStatus]
                )
            )

        async with DatabaseService.get_session() as session:
            return await self._entry_repo.find_many_where(
                session,
                *conditions,
                order_by=[JournalEntry.created_at.desc(), JournalEntry.id.desc()],
                limit=limit,
                offset=offset,
            )

    async def submit_for_review(
        self,
        user_id: str,
        entry_id: str,
        stat_awards: Optional[Sequence[Mapping[str, Any]]] = None,
        family_awards: Optional[Sequence[Mapping[str, Any]]] = None,
        tag_ids: Optional[Sequence[str]] = None,
    ) -> JournalEntry:
        """
        Attach the suggested awards and move the entry to review.

        Each award is `{"entity_id": ..., "xp": ..., "reason": ...}`; amounts
        must be positive. Resubmitting an entry already in review replaces
        its awards.

        Raises:
            InvalidOperationError: Entry is already complete
            InvalidAmountError: Non-positive award amount
        """
        user_id = self.validate_user_id(user_id)
        entry_id = self.validate_entity_id(entry_id, "entry_id")
        awards = {
            "stats": self._normalize_awards(stat_awards, "stat_awards"),
            "family": self._normalize_awards(family_awards, "family_awards"),
            "tags": sorted(
                {self.validate_entity_id(tag_id, "tag_id") for tag_id in (tag_ids or [])}
            ),
        }

        async with DatabaseService.get_transaction() as session:
            entry = await self._load_entry(session, user_id, entry_id, for_update=True)
            if entry.status == JournalStatus.COMPLETE.value:
                raise InvalidOperationError(
                    "submit_for_review", "Journal entry is already complete"
                )

            entry.suggested_awards = awards
            flag_modified(entry, "suggested_awards")
            entry.status = JournalStatus.IN_REVIEW.value
            await session.flush()

        self.log_operation(
            "submit_for_review",
            user_id=user_id,
            entry_id=entry_id,
            stat_award_count=len(awards["stats"]),
            family_award_count=len(awards["family"]),
            tag_count=len(awards["tags"]),
        )
        return entry

    async def finalize_entry(self, user_id: str, entry_id: str) -> List[GrantResult]:
        """
        Grant the entry's suggested awards and mark it complete.

        This is a **write operation** using get_transaction() with pessimistic locking.
        All grants and the status change commit together or not at all.

        Raises:
            AlreadyProcessedError: Entry is already complete
            NotFoundError: Entry, or an award target, is missing
        """
        user_id = self.validate_user_id(user_id)
        entry_id = self.validate_entity_id(entry_id, "entry_id")

        async with LogContext(
            user_id=user_id,
            operation="journal.finalize_entry",
            source_type=SourceType.JOURNAL.value,
            source_id=entry_id,
        ), DatabaseService.get_transaction() as session:
            entry = await self._load_entry(session, user_id, entry_id, for_update=True)
            if entry.status == JournalStatus.COMPLETE.value:
                raise AlreadyProcessedError("JournalEntry", entry_id)

            requests = self._grant_requests(entry.suggested_awards or {})
            results = await self.grants.apply_grants(
                session, user_id, requests, SourceType.JOURNAL.value, entry_id
            )

            entry.status = JournalStatus.COMPLETE.value
            entry.completed_at = utc_now()
            await session.flush()

        total_xp = sum(r.grant.xp_amount for r in results)
        self.log_operation(
            "finalize_entry",
            user_id=user_id,
            entry_id=entry_id,
            grant_count=len(results),
            total_xp=total_xp,
        )
        await self.grants.publish_granted(results)
        await self.emit_event(
            "journal.finalized",
            {
                "user_id": user_id,
                "entry_id": entry_id,
                "grant_count": len(results),
                "total_xp": total_xp,
            },
        )
        return results

    async def edit_entry(
        self,
        user_id: str,
        entry_id: str,
        content: Optional[str] = None,
        title: Optional[str] = _UNSET,
    ) -> JournalEntry:
        """
        Reverse the entry's grants, apply the edit and return it to draft.

        Suggested awards are kept so the entry can be resubmitted as is.
        """
        user_id = self.validate_user_id(user_id)
        entry_id = self.validate_entity_id(entry_id, "entry_id")
        if content is not None:
            content = InputValidator.validate_string(content, "content")
        if title is not _UNSET and title is not None:
            title = InputValidator.validate_string(title, "title", max_length=200) or None

        async with DatabaseService.get_transaction() as session:
            entry = await self._load_entry(session, user_id, entry_id, for_update=True)
            reversal = await self.recalculation.reverse_in_session(
                session, user_id, SourceType.JOURNAL.value, entry_id
            )

            if content is not None:
                entry.content = content
            if title is not _UNSET:
                entry.title = title
            entry.status = JournalStatus.DRAFT.value
            entry.completed_at = None
            await session.flush()

        self.log_operation(
            "edit_entry",
            user_id=user_id,
            entry_id=entry_id,
            reversed_count=reversal.deleted_count,
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return entry

    async def delete_entry(self, user_id: str, entry_id: str) -> ReversalResult:
        user_id = self.validate_user_id(user_id)
        entry_id = self.validate_entity_id(entry_id, "entry_id")

        async with DatabaseService.get_transaction() as session:
            entry = await self._load_entry(session, user_id, entry_id, for_update=True)
            reversal = await self.recalculation.reverse_in_session(
                session, user_id, SourceType.JOURNAL.value, entry_id
            )
            await self._entry_repo.delete(session, entry)

        self.log_operation(
            "delete_entry",
            user_id=user_id,
            entry_id=entry_id,
            reversed_count=reversal.deleted_count,
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return reversal

    # -------------------------------------------------------------------------
    # Content tags
    # -------------------------------------------------------------------------

    async def create_tag(self, user_id: str, name: str) -> ContentTag:
        """Get or create a tag by name (names are unique per user)."""
        user_id = self.validate_user_id(user_id)
        name = self.validate_name(name, max_length=100)

        async with DatabaseService.get_transaction() as session:
            tag = await self._tag_repo.find_one_where(
                session, ContentTag.user_id == user_id, ContentTag.name == name
            )
            if tag is None:
                tag = self._tag_repo.add(session, ContentTag(user_id=user_id, name=name))
                await session.flush()
        return tag

    async def list_tags(self, user_id: str) -> List[ContentTag]:
        user_id = self.validate_user_id(user_id)

        async with DatabaseService.get_session() as session:
            return await self._tag_repo.find_many_where(
                session, ContentTag.user_id == user_id, order_by=[ContentTag.name]
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load_entry(
        self, session: Any, user_id: str, entry_id: str, for_update: bool = False
    ) -> JournalEntry:
        entry = await self._entry_repo.get_owned(
            session, user_id, entry_id, for_update=for_update
        )
        if entry is None:
            raise NotFoundError("JournalEntry", entry_id)
        return entry

    def _normalize_awards(
        self, awards: Optional[Sequence[Mapping[str, Any]]], field_name: str
    ) -> List[Dict[str, Any]]:
        normalized = []
        for award in awards or []:
            if not isinstance(award, Mapping) or "entity_id" not in award or "xp" not in award:
                raise ValidationError(field_name, "Each award needs 'entity_id' and 'xp'")
            reason = award.get("reason")
            normalized.append(
                {
                    "entity_id": self.validate_entity_id(award["entity_id"]),
                    "xp": self.grants.validate_amount(award["xp"]),
                    "reason": str(reason) if reason is not None else None,
                }
            )
        return normalized

    @staticmethod
    def _grant_requests(awards: Mapping[str, Any]) -> List[GrantRequest]:
        requests = [
            GrantRequest(
                EntityType.CHARACTER_STAT.value, a["entity_id"], a["xp"], a.get("reason")
            )
            for a in awards.get("stats", [])
        ]
        requests += [
            GrantRequest(
                EntityType.FAMILY_MEMBER.value, a["entity_id"], a["xp"], a.get("reason")
            )
            for a in awards.get("family", [])
        ]
        requests += [
            GrantRequest(EntityType.CONTENT_TAG.value, tag_id, 0, "Tagged", allow_zero=True)
            for tag_id in awards.get("tags", [])
        ]
        return requests
