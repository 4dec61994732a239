"""
Unit Tests for Progression Curves
=================================

Test Coverage
-------------
- Linear-divide level formula and eligibility
- Cumulative-threshold strictness at the threshold boundary
- xp_to_next_level is always positive, including after reversals
- progress_percent clamping
- xp_to_eligibility agrees with can_level_up
- Curve lookup by name

Testing Strategy
----------------
- Pure functions, no database
- AAA pattern (Arrange, Act, Assert)
"""

import pytest

from questlog.modules.progression.curves import (
    CURVES,
    CumulativeThresholdCurve,
    LinearDivideCurve,
    get_curve,
)
from questlog.modules.shared.exceptions import ValidationError


# ============================================================================
# LINEAR DIVIDE
# ============================================================================


@pytest.mark.unit
class TestLinearDivideCurve:
    """level = total_xp // step + 1"""

    @pytest.mark.parametrize(
        "total_xp,expected_level",
        [(0, 1), (99, 1), (100, 2), (199, 2), (250, 3), (1000, 11)],
    )
    def test_level_for_total_xp(self, total_xp, expected_level):
        # Arrange
        curve = LinearDivideCurve(100)

        # Act & Assert
        assert curve.level_for_total_xp(total_xp) == expected_level

    def test_can_level_up_only_when_xp_supports_higher_level(self):
        curve = LinearDivideCurve(100)

        assert curve.can_level_up(1, 99) is False
        assert curve.can_level_up(1, 100) is True
        assert curve.can_level_up(2, 199) is False
        assert curve.can_level_up(2, 200) is True

    def test_custom_step(self):
        curve = LinearDivideCurve(50)

        assert curve.level_for_total_xp(120) == 3
        assert curve.xp_to_next_level(3, 120) == 30


# ============================================================================
# CUMULATIVE THRESHOLD
# ============================================================================


@pytest.mark.unit
class TestCumulativeThresholdCurve:
    """Level L may advance once total XP is strictly above step * (L - 1)."""

    def test_threshold_is_exclusive(self):
        # Arrange
        curve = CumulativeThresholdCurve(100)

        # Act & Assert
        assert curve.can_level_up(2, 100) is False
        assert curve.can_level_up(2, 101) is True
        assert curve.can_level_up(3, 200) is False
        assert curve.can_level_up(3, 201) is True

    def test_level_one_needs_any_xp(self):
        curve = CumulativeThresholdCurve(100)

        assert curve.can_level_up(1, 0) is False
        assert curve.can_level_up(1, 1) is True

    def test_one_hundred_ten_xp_at_level_one(self):
        # Arrange
        curve = CumulativeThresholdCurve(100)

        # Act
        before = curve.snapshot(1, 110)
        after = curve.snapshot(2, 110)

        # Assert
        assert before.can_level_up is True
        assert after.current_level == 2
        assert after.total_xp == 110
        assert after.xp_to_next_level == 90

    @pytest.mark.parametrize(
        "total_xp,expected_level",
        [(0, 1), (1, 2), (100, 2), (101, 3), (150, 3), (200, 3), (201, 4)],
    )
    def test_level_for_total_xp_is_highest_claimable(self, total_xp, expected_level):
        curve = CumulativeThresholdCurve(100)

        level = 1
        while curve.can_level_up(level, total_xp):
            level += 1

        assert curve.level_for_total_xp(total_xp) == expected_level
        assert level == expected_level


# ============================================================================
# SHARED BEHAVIOUR
# ============================================================================


@pytest.mark.unit
@pytest.mark.parametrize("curve_cls", [LinearDivideCurve, CumulativeThresholdCurve])
class TestSharedCurveBehaviour:
    def test_xp_to_next_level_from_zero(self, curve_cls):
        assert curve_cls(100).xp_to_next_level(1, 0) == 100

    @pytest.mark.parametrize("level", [1, 2, 3, 7])
    @pytest.mark.parametrize("total_xp", [0, 1, 99, 100, 101, 250, 999, 1000])
    def test_xp_to_next_level_is_never_zero_or_negative(self, curve_cls, level, total_xp):
        assert curve_cls(100).xp_to_next_level(level, total_xp) >= 1

    def test_level_kept_above_xp_after_reversal(self, curve_cls):
        # Arrange: level 5 claimed, XP later reversed down to 40
        curve = curve_cls(100)

        # Act
        snapshot = curve.snapshot(5, 40)

        # Assert
        assert snapshot.can_level_up is False
        assert snapshot.next_level_threshold == 500
        assert snapshot.xp_to_next_level == 460
        assert snapshot.progress_percent == 0.0

    def test_progress_percent_is_clamped(self, curve_cls):
        curve = curve_cls(100)

        assert curve.progress_percent(1, 0) == 0.0
        assert curve.progress_percent(1, 50) == 50.0
        assert 0.0 <= curve.progress_percent(1, 5000) <= 100.0

    def test_rejects_negative_xp(self, curve_cls):
        with pytest.raises(ValidationError):
            curve_cls(100).xp_to_next_level(1, -1)

    def test_rejects_level_below_one(self, curve_cls):
        with pytest.raises(ValidationError):
            curve_cls(100).threshold_for_level(0)

    def test_rejects_non_positive_step(self, curve_cls):
        with pytest.raises(ValidationError):
            curve_cls(0)

    def test_snapshot_to_dict(self, curve_cls):
        data = curve_cls(100).snapshot(1, 30).to_dict()

        assert data["curve"] == curve_cls.name
        assert data["xp_to_next_level"] == 70


@pytest.mark.unit
class TestGetCurve:
    def test_known_names(self):
        for name, curve_cls in CURVES.items():
            curve = get_curve(name, 25)
            assert isinstance(curve, curve_cls)
            assert curve.step == 25

    def test_unknown_name_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            get_curve("triangular")

        assert exc_info.value.details["field"] == "curve"


@pytest.mark.unit
class TestXpToEligibility:
    @pytest.mark.parametrize(
        "level,total_xp,expected",
        [(1, 0, 1), (2, 100, 1), (2, 101, 0), (3, 150, 51), (5, 40, 361)],
    )
    def test_cumulative_threshold(self, level, total_xp, expected):
        assert CumulativeThresholdCurve(100).xp_to_eligibility(level, total_xp) == expected

    @pytest.mark.parametrize(
        "level,total_xp,expected",
        [(1, 0, 100), (1, 99, 1), (1, 100, 0), (2, 150, 50), (5, 40, 460)],
    )
    def test_linear_divide(self, level, total_xp, expected):
        assert LinearDivideCurve(100).xp_to_eligibility(level, total_xp) == expected

    @pytest.mark.parametrize("curve_cls", [LinearDivideCurve, CumulativeThresholdCurve])
    def test_zero_exactly_when_eligible(self, curve_cls):
        curve = curve_cls(100)
        for level in (1, 2, 4):
            for total_xp in (0, 1, 99, 100, 101, 300, 301):
                eligible = curve.can_level_up(level, total_xp)
                assert (curve.xp_to_eligibility(level, total_xp) == 0) is eligible
