"""Tests for short-horizon forecasting."""

from __future__ import annotations

import pytest

from caretrack.analysis.forecast import forecast, forecast_sentences, recent_baseline
from caretrack.errors import InsufficientDataError
from caretrack.models import Confidence, DataType, Forecast, TrendDirection

pytestmark = pytest.mark.unit


def test_fewer_than_five_points_raises():
    with pytest.raises(InsufficientDataError) as exc_info:
        forecast([100, 101, 102, 103])
    assert exc_info.value.required == 5
    assert exc_info.value.actual == 4


def test_flat_series_predicts_baseline():
    result = forecast([100, 100, 100, 100, 100])
    assert result.predicted_value == 100.0
    assert result.trend_direction is TrendDirection.STABLE
    assert result.confidence is Confidence.MEDIUM


def test_rising_series_nudges_baseline_up():
    # baseline = 730 / 7, nudged up 5%
    result = forecast([100, 100, 100, 100, 110, 110, 110])
    assert result.trend_direction is TrendDirection.INCREASING
    assert result.predicted_value == pytest.approx(109.5)
    assert result.confidence is Confidence.HIGH


def test_falling_series_nudges_baseline_down():
    result = forecast([120, 120, 120, 100, 100])
    assert result.trend_direction is TrendDirection.DECREASING
    assert result.predicted_value == pytest.approx(106.4)


def test_baseline_uses_latest_seven_only():
    series = [500, 500, 100, 100, 100, 100, 100, 100, 100]
    assert recent_baseline(series) == 100.0


def test_blood_pressure_strings_forecast_on_midpoint():
    result = forecast(["120/80"] * 5, DataType.BLOOD_PRESSURE)
    assert result.predicted_value == 100.0


def test_recent_baseline_empty_raises():
    with pytest.raises(InsufficientDataError):
        recent_baseline([])


def test_forecast_sentences():
    result = Forecast(109.5, Confidence.HIGH, TrendDirection.INCREASING)
    lines = forecast_sentences(DataType.BLOOD_SUGAR, result, 104.29)
    assert lines == [
        "Based on recent trends, your blood sugar is expected to remain around 104.3",
        "Expected to increase in the coming days",
    ]


def test_forecast_sentences_stable():
    result = Forecast(100.0, Confidence.MEDIUM, TrendDirection.STABLE)
    assert forecast_sentences(DataType.HEART_RATE, result, 100.0)[1] == (
        "Expected to stabilize in the coming days"
    )
