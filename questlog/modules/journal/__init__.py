"""
Journal Module
==============

Domain: journal entries reviewed into stat, family and tag awards

Services:
- JournalService: Entry lifecycle and content tags
"""

from .service import JournalService

__all__ = ["JournalService"]
