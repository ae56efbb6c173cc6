"""Short-horizon forecasting from recent readings."""

from __future__ import annotations

from collections.abc import Sequence

from caretrack.analysis.trends import (
    HIGH_CONFIDENCE_POINTS,
    moving_average_direction,
    to_scalars,
)
from caretrack.errors import InsufficientDataError
from caretrack.models import Confidence, DataType, Forecast, ReadingValue, TrendDirection

MIN_FORECAST_POINTS = 5
BASELINE_WINDOW = 7
TREND_ADJUSTMENT = 0.05


def forecast(
    series: Sequence[ReadingValue],
    data_type: DataType | str | None = None,
) -> Forecast:
    """Predict the next value of *series* (oldest first).

    The baseline is the mean of the latest seven values (or all of them when
    fewer). When the moving-average heuristic sees the series rising or
    falling the baseline is nudged up or down by 5%.

    Raises:
        InsufficientDataError: With fewer than five points.
    """
    values = to_scalars(series, data_type)
    if len(values) < MIN_FORECAST_POINTS:
        raise InsufficientDataError(MIN_FORECAST_POINTS, len(values))

    recent = values[-BASELINE_WINDOW:]
    baseline = sum(recent) / len(recent)

    direction = moving_average_direction(values)
    if direction is TrendDirection.INCREASING:
        predicted = baseline * (1 + TREND_ADJUSTMENT)
    elif direction is TrendDirection.DECREASING:
        predicted = baseline * (1 - TREND_ADJUSTMENT)
    else:
        predicted = baseline

    confidence = Confidence.HIGH if len(values) >= HIGH_CONFIDENCE_POINTS else Confidence.MEDIUM
    return Forecast(
        predicted_value=round(predicted, 2),
        confidence=confidence,
        trend_direction=direction,
    )


def forecast_sentences(data_type: DataType, result: Forecast, baseline: float) -> list[str]:
    """Patient-facing prediction lines for an analysis result."""
    verb = {
        TrendDirection.INCREASING: "increase",
        TrendDirection.DECREASING: "decrease",
    }.get(result.trend_direction, "stabilize")
    return [
        f"Based on recent trends, your {data_type.label} is expected to remain "
        f"around {baseline:.1f}",
        f"Expected to {verb} in the coming days",
    ]


def recent_baseline(
    series: Sequence[ReadingValue], data_type: DataType | str | None = None
) -> float:
    """Mean of the latest seven values."""
    values = to_scalars(series, data_type)[-BASELINE_WINDOW:]
    if not values:
        raise InsufficientDataError(1, 0)
    return sum(values) / len(values)
