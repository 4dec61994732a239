"""
Family Module
=============

Domain: family members and interactions (connection XP)

Services:
- FamilyService: Member CRUD, interaction logging and reversal
"""

from .service import FamilyService

__all__ = ["FamilyService"]
