"""
Quest Model
===========

Quests and experiments share one table, distinguished by `kind`. Grants made
on completion use `source_type == kind`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questlog.core.database.base import Base, IdMixin, TimestampMixin
from questlog.database.models.enums import QuestKind, QuestStatus


class Quest(Base, IdMixin, TimestampMixin):
    __tablename__ = "quests"
    __table_args__ = (Index("ix_quests_user_kind_status", "user_id", "kind", "status"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuestKind.QUEST.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuestStatus.ACTIVE.value
    )
    xp_rewards: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
