"""
JournalEntry Model
==================

Journal entries move draft -> in_review -> complete. `suggested_awards`
holds the reviewed award list attached at submission time:

    {
        "stats":  [{"entity_id": "...", "xp": 25, "reason": "..."}],
        "family": [{"entity_id": "...", "xp": 10, "reason": "..."}],
        "tags":   ["<content_tag id>", ...]
    }

Finalizing grants those awards once; editing or deleting reverses them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questlog.core.database.base import Base, IdMixin, TimestampMixin
from questlog.database.models.enums import JournalStatus


class JournalEntry(Base, IdMixin, TimestampMixin):
    __tablename__ = "journal_entries"
    __table_args__ = (Index("ix_journal_entries_user_status", "user_id", "status"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JournalStatus.DRAFT.value
    )
    suggested_awards: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
