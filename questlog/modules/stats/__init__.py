"""
Stats Module
============

Domain: user-defined character stats

Services:
- CharacterStatService: Stat CRUD and manual XP grants
"""

from .service import CharacterStatService, stat_award

__all__ = ["CharacterStatService", "stat_award"]
