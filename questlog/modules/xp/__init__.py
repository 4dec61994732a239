"""
XP Module
=========

Domain: the XP ledger

Services:
- XpGrantService: Appends ledger rows and bumps cached totals
- XpRecalculationService: Reverses a source's grants and recomputes totals
- XpHistoryService: Annotated history and aggregates
"""

from .adapters import ADAPTERS, EntityAdapter, get_adapter, get_progressable_adapter
from .grant_service import SOURCE_TYPES, GrantRequest, GrantResult, XpGrantService
from .history_service import HistoryEntry, XpHistoryService, XpTotals
from .recalculation_service import (
    RecalculationResult,
    ReversalResult,
    XpRecalculationService,
)
from .repository import XpGrantRepository

__all__ = [
    "ADAPTERS",
    "EntityAdapter",
    "get_adapter",
    "get_progressable_adapter",
    "SOURCE_TYPES",
    "GrantRequest",
    "GrantResult",
    "XpGrantService",
    "HistoryEntry",
    "XpTotals",
    "XpHistoryService",
    "RecalculationResult",
    "ReversalResult",
    "XpRecalculationService",
    "XpGrantRepository",
]
