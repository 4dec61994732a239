"""
Database Models Package
=======================

All SQLAlchemy ORM models for questlog. Importing this package registers
every table on `Base.metadata`.

- Ledger: XpGrant
- Progressable entities: CharacterStat, FamilyMember
- XP sources: JournalEntry, Task, Quest, FamilyInteraction
- Zero-XP targets: ContentTag
"""

from questlog.core.database.base import Base

from .character_stat import CharacterStat
from .content_tag import ContentTag
from .enums import (
    EntityType,
    JournalStatus,
    QuestKind,
    QuestStatus,
    SourceType,
    TaskStatus,
)
from .family_interaction import FamilyInteraction
from .family_member import FamilyMember
from .journal_entry import JournalEntry
from .quest import Quest
from .task import Task
from .xp_grant import XpGrant

__all__ = [
    "Base",
    # Ledger
    "XpGrant",
    # Entities
    "CharacterStat",
    "FamilyMember",
    "ContentTag",
    # Sources
    "JournalEntry",
    "Task",
    "Quest",
    "FamilyInteraction",
    # Enums
    "EntityType",
    "SourceType",
    "JournalStatus",
    "TaskStatus",
    "QuestKind",
    "QuestStatus",
]
