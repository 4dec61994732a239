"""
ContentTag Model
================

A label attached to journal entries. Tags do not level; finalizing an entry
writes a zero-XP ledger row per tag so tag usage shows up in history.
"""

from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from questlog.core.database.base import Base, IdMixin, TimestampMixin


class ContentTag(Base, IdMixin, TimestampMixin):
    __tablename__ = "content_tags"
    __table_args__ = (
        Index("ix_content_tags_user_name", "user_id", "name", unique=True),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
