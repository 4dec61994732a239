"""
Quests Module
=============

Services:
- QuestService: Quest and experiment completion rewards
"""

from .service import QUEST_KINDS, QuestService

__all__ = ["QUEST_KINDS", "QuestService"]
