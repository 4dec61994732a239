"""
Progression Module
==================

Domain: leveling curves and the explicit level-up transition

- curves: named leveling strategies (`linear_divide`, `cumulative_threshold`)
- service.LevelUpService: single-step level-ups and progress snapshots

Only the curves are re-exported here; the ledger adapters depend on them,
and the service depends on the adapters.
"""

from .curves import (
    CURVES,
    DEFAULT_STEP,
    CumulativeThresholdCurve,
    LinearDivideCurve,
    ProgressionCurve,
    ProgressSnapshot,
    get_curve,
)

__all__ = [
    "CURVES",
    "DEFAULT_STEP",
    "CumulativeThresholdCurve",
    "LinearDivideCurve",
    "ProgressionCurve",
    "ProgressSnapshot",
    "get_curve",
]
