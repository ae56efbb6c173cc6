"""Tests for OLS trend detection and the moving-average heuristic."""

from __future__ import annotations

import pytest

from caretrack.analysis.trends import (
    analyze_trend,
    describe_trend,
    moving_average_direction,
    ols_slope,
    percentage_change,
    to_scalars,
)
from caretrack.models import BloodPressure, Confidence, DataType, TrendDirection

pytestmark = pytest.mark.unit


class TestAnalyzeTrend:
    @pytest.mark.parametrize("series", [[], [120], [120, 200]])
    def test_fewer_than_three_points_is_insufficient(self, series):
        result = analyze_trend(series)
        assert result.direction is TrendDirection.INSUFFICIENT_DATA
        assert result.confidence is Confidence.LOW
        assert result.data_points == len(series)
        assert result.insights == ["Need more data points for trend analysis"]

    def test_increasing_with_significant_change(self):
        result = analyze_trend([100, 110, 120])
        assert result.direction is TrendDirection.INCREASING
        assert result.confidence is Confidence.MEDIUM
        assert result.slope == 10.0
        assert result.percentage_change == 20.0
        assert result.insights == ["Significant increase detected (20.0%)"]

    def test_seven_point_ascending_blood_sugar(self):
        result = analyze_trend([130, 132, 135, 138, 142, 145, 150], DataType.BLOOD_SUGAR)
        assert result.direction is TrendDirection.INCREASING
        assert result.confidence is Confidence.HIGH
        assert result.data_points == 7
        assert result.percentage_change == pytest.approx(15.4, abs=0.05)

    def test_decreasing_with_significant_change(self):
        result = analyze_trend([200, 180, 160])
        assert result.direction is TrendDirection.DECREASING
        assert result.percentage_change == -20.0
        assert result.insights == ["Significant decrease detected (20.0%)"]

    def test_small_slope_is_stable(self):
        result = analyze_trend([100, 100.05, 100.1])
        assert result.direction is TrendDirection.STABLE
        assert result.insights == []

    def test_increase_under_ten_percent_has_no_insight(self):
        result = analyze_trend([100, 102, 104, 106])
        assert result.direction is TrendDirection.INCREASING
        assert result.insights == []

    def test_seven_points_give_high_confidence(self):
        assert analyze_trend([1, 2, 3, 4, 5, 6, 7]).confidence is Confidence.HIGH
        assert analyze_trend([1, 2, 3, 4, 5, 6]).confidence is Confidence.MEDIUM

    def test_zero_first_value_has_no_percentage(self):
        result = analyze_trend([0, 5, 10])
        assert result.direction is TrendDirection.INCREASING
        assert result.percentage_change is None
        assert result.insights == []

    def test_blood_pressure_uses_mean_arterial_midpoint(self):
        series = [BloodPressure(120, 80), BloodPressure(130, 90), BloodPressure(140, 100)]
        result = analyze_trend(series)
        assert result.direction is TrendDirection.INCREASING
        assert result.slope == 10.0

    def test_raw_values_coerced_when_type_given(self):
        result = analyze_trend(["120/80", "130/90", "140/100"], DataType.BLOOD_PRESSURE)
        assert result.direction is TrendDirection.INCREASING


class TestHelpers:
    def test_ols_slope(self):
        assert ols_slope([]) == 0.0
        assert ols_slope([5]) == 0.0
        assert ols_slope([1, 3, 5, 7]) == pytest.approx(2.0)

    def test_percentage_change(self):
        assert percentage_change([50, 75]) == pytest.approx(50.0)
        assert percentage_change([0, 10]) is None
        assert percentage_change([]) is None

    def test_to_scalars(self):
        assert to_scalars([BloodPressure(120, 80), 7.0]) == [100.0, 7.0]


class TestMovingAverageDirection:
    def test_rising(self):
        assert moving_average_direction([100, 100, 100, 110, 110, 110]) is TrendDirection.INCREASING

    def test_falling(self):
        assert moving_average_direction([110, 110, 110, 100, 100, 100]) is TrendDirection.DECREASING

    def test_within_five_percent_band_is_stable(self):
        assert moving_average_direction([100, 100, 100, 104, 104, 104]) is TrendDirection.STABLE

    def test_short_series(self):
        assert moving_average_direction([1, 2]) is TrendDirection.INSUFFICIENT_DATA


class TestDescribeTrend:
    def test_increasing(self):
        line, follow_up = describe_trend(DataType.BLOOD_SUGAR, analyze_trend([100, 120, 140]))
        assert line == "Increasing trend in blood sugar"
        assert "increasing trend" in follow_up

    def test_stable(self):
        line, follow_up = describe_trend(DataType.HEART_RATE, analyze_trend([70, 70, 70]))
        assert line == "Stable trend in heart rate"
        assert follow_up == "Maintain current healthy habits for heart rate management"

    def test_insufficient(self):
        line, follow_up = describe_trend(DataType.WEIGHT, analyze_trend([80]))
        assert line == "Insufficient data for trend analysis"
        assert follow_up == "Continue tracking more data points"
