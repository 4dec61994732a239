"""
XpGrant Model
=============

Append-only XP ledger. Every award ever made is one row here, and the
cached `total_xp` / `connection_xp` columns on progressable entities are
derived from these rows.

Rows are never updated. They are deleted only by source reversal or by
deletion of the entity they target. `entity_id` is deliberately not a
foreign key: the ledger spans several entity tables.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questlog.core.database.base import Base, SequenceIdMixin, utc_now


class XpGrant(Base, SequenceIdMixin):
    """
    One XP award.

    Schema-only:
    - user_id: owning user
    - entity_type / entity_id: ledger target
    - xp_amount: non-negative
    - source_type / source_id: originating record (source_id null for ad-hoc)
    - reason: optional free text
    - created_at: insertion time; history orders by (created_at, id) desc
    """

    __tablename__ = "xp_grants"
    __table_args__ = (
        CheckConstraint("xp_amount >= 0", name="xp_amount_non_negative"),
        Index("ix_xp_grants_user_source", "user_id", "source_type", "source_id"),
        Index(
            "ix_xp_grants_user_entity_created",
            "user_id",
            "entity_type",
            "entity_id",
            "created_at",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)

    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    def __repr__(self) -> str:
        return (
            f"<XpGrant id={self.id} {self.entity_type}:{self.entity_id} "
            f"+{self.xp_amount} from {self.source_type}:{self.source_id}>"
        )
