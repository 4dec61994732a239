"""
CharacterStat Model
===================

A user-defined life stat ("Strength", "Creativity") that accumulates XP.

`total_xp` is a cache of the ledger sum. `current_level` is claimed
explicitly and never derived automatically from `total_xp`.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questlog.core.database.base import Base, IdMixin, TimestampMixin


class CharacterStat(Base, IdMixin, TimestampMixin):
    __tablename__ = "character_stats"
    __table_args__ = (Index("ix_character_stats_user_id", "user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    example_activities: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )

    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<CharacterStat id={self.id} name={self.name!r} "
            f"level={self.current_level} xp={self.total_xp}>"
        )
