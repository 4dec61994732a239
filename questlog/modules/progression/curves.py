"""
Progression Curves

Purpose
-------
Pure calculation functions for leveling. A curve answers five questions for
an entity with `current_level` and `total_xp`:

- which level the XP alone would support (`level_for_total_xp`)
- whether one explicit level-up may be claimed now (`can_level_up`)
- how much XP is missing before that claim is allowed (`xp_to_eligibility`)
- how much XP remains to the next boundary (`xp_to_next_level`)
- how far through the current band the entity is (`progress_percent`)

Two strategies exist, selected by name from configuration:

- ``linear_divide``: level = floor(xp / step) + 1. Eligible when that level
  is above the current one.
- ``cumulative_threshold``: reaching level L+1 requires strictly more than
  ``step * (L - 1)`` XP. At exactly the threshold the entity is not eligible.

Design Notes
------------
- No side effects, no database access, no config access. Callers pass
  `step`; services read it from ConfigManager.
- Nothing is clamped. Negative XP or a level below 1 raises
  `ValidationError`.
- `xp_to_next_level` is never zero or negative: if XP is already past the
  next boundary the distance to the boundary after it is reported.

Usage
-----
    >>> curve = get_curve("cumulative_threshold", step=100)
    >>> curve.can_level_up(current_level=1, total_xp=110)
    True
    >>> curve.xp_to_next_level(current_level=2, total_xp=110)
    90
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Type

from questlog.modules.shared.exceptions import ValidationError

DEFAULT_STEP = 100


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of an entity's progression under one curve."""

    curve: str
    current_level: int
    total_xp: int
    level_for_xp: int
    can_level_up: bool
    xp_to_next_level: int
    next_level_threshold: int
    progress_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressionCurve(ABC):
    """Base class for named leveling strategies."""

    name: str = ""

    def __init__(self, step: int = DEFAULT_STEP) -> None:
        if isinstance(step, bool) or not isinstance(step, int) or step <= 0:
            raise ValidationError("step", f"Curve step must be a positive integer, got {step!r}")
        self.step = step

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(step={self.step})"

    # ------------------------------------------------------------------ #
    # Input checks
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_xp(total_xp: int) -> None:
        if isinstance(total_xp, bool) or not isinstance(total_xp, int):
            raise ValidationError("total_xp", f"Must be an integer, got {total_xp!r}")
        if total_xp < 0:
            raise ValidationError("total_xp", f"Cannot be negative, got {total_xp}")

    @staticmethod
    def _check_level(level: int) -> None:
        if isinstance(level, bool) or not isinstance(level, int):
            raise ValidationError("level", f"Must be an integer, got {level!r}")
        if level < 1:
            raise ValidationError("level", f"Must be at least 1, got {level}")

    # ------------------------------------------------------------------ #
    # Strategy-specific
    # ------------------------------------------------------------------ #

    @abstractmethod
    def level_for_total_xp(self, total_xp: int) -> int:
        """Level the XP alone supports."""

    @abstractmethod
    def can_level_up(self, current_level: int, total_xp: int) -> bool:
        """Whether one explicit level-up may be claimed."""

    @abstractmethod
    def xp_to_eligibility(self, current_level: int, total_xp: int) -> int:
        """XP still missing before `can_level_up` turns true; 0 once eligible."""

    # ------------------------------------------------------------------ #
    # Shared
    # ------------------------------------------------------------------ #

    def threshold_for_level(self, level: int) -> int:
        """Total XP at which `level` begins: ``step * (level - 1)``."""
        self._check_level(level)
        return self.step * (level - 1)

    def next_boundary(self, current_level: int, total_xp: int) -> int:
        """
        Smallest multiple of `step`, at or above ``step * current_level``,
        that is strictly greater than `total_xp`.
        """
        self._check_level(current_level)
        self._check_xp(total_xp)
        k = max(current_level, total_xp // self.step + 1)
        return self.step * k

    def xp_to_next_level(self, current_level: int, total_xp: int) -> int:
        """
        XP still needed to reach the next boundary. Always >= 1.

        Examples:
            >>> LinearDivideCurve(100).xp_to_next_level(1, 0)
            100
            >>> LinearDivideCurve(100).xp_to_next_level(1, 110)
            90
        """
        return self.next_boundary(current_level, total_xp) - total_xp

    def progress_percent(self, current_level: int, total_xp: int) -> float:
        """
        Percentage (0..100) of the way from the current level's threshold to
        the next boundary. XP below the threshold (after a reversal) reads 0.
        """
        lower = self.threshold_for_level(current_level)
        upper = self.next_boundary(current_level, total_xp)
        if total_xp <= lower:
            return 0.0
        pct = (total_xp - lower) / (upper - lower) * 100.0
        return round(min(pct, 100.0), 2)

    def snapshot(self, current_level: int, total_xp: int) -> ProgressSnapshot:
        return ProgressSnapshot(
            curve=self.name,
            current_level=current_level,
            total_xp=total_xp,
            level_for_xp=self.level_for_total_xp(total_xp),
            can_level_up=self.can_level_up(current_level, total_xp),
            xp_to_next_level=self.xp_to_next_level(current_level, total_xp),
            next_level_threshold=self.next_boundary(current_level, total_xp),
            progress_percent=self.progress_percent(current_level, total_xp),
        )


class LinearDivideCurve(ProgressionCurve):
    """
    level = floor(total_xp / step) + 1

    Examples:
        >>> LinearDivideCurve(100).level_for_total_xp(250)
        3
        >>> LinearDivideCurve(100).can_level_up(2, 199)
        False
    """

    name = "linear_divide"

    def level_for_total_xp(self, total_xp: int) -> int:
        self._check_xp(total_xp)
        return total_xp // self.step + 1

    def can_level_up(self, current_level: int, total_xp: int) -> bool:
        self._check_level(current_level)
        return self.level_for_total_xp(total_xp) > current_level

    def xp_to_eligibility(self, current_level: int, total_xp: int) -> int:
        self._check_level(current_level)
        self._check_xp(total_xp)
        return max(self.step * current_level - total_xp, 0)


class CumulativeThresholdCurve(ProgressionCurve):
    """
    Level L -> L+1 is allowed once total XP is strictly above
    ``step * (L - 1)``.

    Examples:
        >>> CumulativeThresholdCurve(100).can_level_up(2, 100)
        False
        >>> CumulativeThresholdCurve(100).can_level_up(2, 101)
        True
        >>> CumulativeThresholdCurve(100).level_for_total_xp(150)
        3
    """

    name = "cumulative_threshold"

    def level_for_total_xp(self, total_xp: int) -> int:
        # highest level reachable by repeated single-step claims
        self._check_xp(total_xp)
        return -(-total_xp // self.step) + 1

    def can_level_up(self, current_level: int, total_xp: int) -> bool:
        self._check_xp(total_xp)
        return total_xp > self.threshold_for_level(current_level)

    def xp_to_eligibility(self, current_level: int, total_xp: int) -> int:
        self._check_xp(total_xp)
        return max(self.threshold_for_level(current_level) + 1 - total_xp, 0)


CURVES: Dict[str, Type[ProgressionCurve]] = {
    LinearDivideCurve.name: LinearDivideCurve,
    CumulativeThresholdCurve.name: CumulativeThresholdCurve,
}


def get_curve(name: str, step: int = DEFAULT_STEP) -> ProgressionCurve:
    """
    Instantiate a curve by name.

    Raises:
        ValidationError: If `name` is not a known curve
    """
    try:
        curve_cls = CURVES[name]
    except KeyError:
        raise ValidationError(
            "curve",
            f"Unknown progression curve '{name}'. Must be one of: {', '.join(sorted(CURVES))}",
        ) from None
    return curve_cls(step)
