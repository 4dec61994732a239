"""
FamilyInteraction Model
=======================

One logged interaction with a family member. The XP it awarded lives in the
ledger under `source_type="interaction"`, `source_id=<this id>`;
`xp_awarded` is kept for display only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from questlog.core.database.base import Base, IdMixin, utc_now

if TYPE_CHECKING:
    from .family_member import FamilyMember


class FamilyInteraction(Base, IdMixin):
    __tablename__ = "family_interactions"
    __table_args__ = (
        Index("ix_family_interactions_user_member", "user_id", "family_member_id"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    family_member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("family_members.id", ondelete="CASCADE"),
        nullable=False,
    )

    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enjoyed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    family_member: Mapped["FamilyMember"] = relationship(
        "FamilyMember", back_populates="interactions"
    )
