"""
Database Model Enums
====================

Type-safe constants for categorical columns. Values are stored as plain
strings; services validate against these enums before writing.
"""

from __future__ import annotations

import enum


class EntityType(str, enum.Enum):
    """
    Kinds of ledger targets.

    Only CHARACTER_STAT and FAMILY_MEMBER accumulate XP. CONTENT_TAG rows are
    zero-XP markers. GOAL, PROJECT and ADVENTURE are reserved: accepted by
    the schema, rejected at grant time because nothing can load them.
    """

    CHARACTER_STAT = "character_stat"
    FAMILY_MEMBER = "family_member"
    GOAL = "goal"
    PROJECT = "project"
    ADVENTURE = "adventure"
    CONTENT_TAG = "content_tag"


class SourceType(str, enum.Enum):
    """Originating record kinds for a grant."""

    TASK = "task"
    JOURNAL = "journal"
    ADHOC = "adhoc"
    QUEST = "quest"
    EXPERIMENT = "experiment"
    INTERACTION = "interaction"


class JournalStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    COMPLETE = "complete"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class QuestKind(str, enum.Enum):
    QUEST = "quest"
    EXPERIMENT = "experiment"


class QuestStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
