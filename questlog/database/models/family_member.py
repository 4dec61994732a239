"""
FamilyMember Model
==================

A relationship the user invests in. Interactions award connection XP;
`connection_level` is claimed explicitly like a character stat's level.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Date, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from questlog.core.database.base import Base, IdMixin, TimestampMixin

if TYPE_CHECKING:
    from .family_interaction import FamilyInteraction


class FamilyMember(Base, IdMixin, TimestampMixin):
    __tablename__ = "family_members"
    __table_args__ = (Index("ix_family_members_user_id", "user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    relationship_label: Mapped[Optional[str]] = mapped_column(
        "relationship", String(100), nullable=True
    )

    connection_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    connection_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    last_interaction_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    interactions: Mapped[List["FamilyInteraction"]] = relationship(
        "FamilyInteraction",
        back_populates="family_member",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<FamilyMember id={self.id} name={self.name!r} "
            f"level={self.connection_level} xp={self.connection_xp}>"
        )
