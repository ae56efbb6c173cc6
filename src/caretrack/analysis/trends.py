"""Trend detection over time-ordered readings.

Two independent methods live here:

- ``analyze_trend`` fits an ordinary least-squares line against sample index
  and reports direction, confidence and percentage change. This is what
  reports and the per-reading analysis show.
- ``moving_average_direction`` compares the mean of the earliest three values
  with the mean of the latest three using a 5% band. Only the forecaster uses
  it.

Both expect series in ascending time order (oldest first).
"""

from __future__ import annotations

from collections.abc import Sequence

from caretrack.models import (
    Confidence,
    DataType,
    ReadingValue,
    TrendDirection,
    TrendResult,
    coerce_value,
    scalar_value,
)

MIN_TREND_POINTS = 3
HIGH_CONFIDENCE_POINTS = 7
SLOPE_THRESHOLD = 0.1
SIGNIFICANT_CHANGE_PERCENT = 10.0

MOVING_AVERAGE_WINDOW = 3
MOVING_AVERAGE_BAND = 0.05


def to_scalars(
    series: Sequence[ReadingValue], data_type: DataType | str | None = None
) -> list[float]:
    """Reduce each sample to one number; blood pressure becomes (sys + dia) / 2.

    With *data_type* given, raw samples (``"120/80"``, ``"98.6"``) are coerced first.
    """
    if data_type is not None:
        series = [coerce_value(data_type, v) for v in series]
    return [scalar_value(v) for v in series]


def ols_slope(values: Sequence[float]) -> float:
    """Least-squares slope of *values* against x = 0..n-1."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_x2 = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    denominator = n * sum_x2 - sum_x * sum_x
    return (n * sum_xy - sum_x * sum_y) / denominator


def percentage_change(values: Sequence[float]) -> float | None:
    """(last - first) / first * 100, or ``None`` when the first value is zero."""
    if not values or values[0] == 0:
        return None
    return (values[-1] - values[0]) / values[0] * 100


def analyze_trend(
    series: Sequence[ReadingValue],
    data_type: DataType | str | None = None,
) -> TrendResult:
    """Direction, confidence and percentage change of *series*.

    Fewer than three points short-circuits to ``insufficient_data`` with low
    confidence regardless of the values.
    """
    values = to_scalars(series, data_type)
    n = len(values)
    if n < MIN_TREND_POINTS:
        return TrendResult(
            direction=TrendDirection.INSUFFICIENT_DATA,
            confidence=Confidence.LOW,
            data_points=n,
            insights=["Need more data points for trend analysis"],
        )

    slope = ols_slope(values)
    if slope > SLOPE_THRESHOLD:
        direction = TrendDirection.INCREASING
    elif slope < -SLOPE_THRESHOLD:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE

    confidence = Confidence.HIGH if n >= HIGH_CONFIDENCE_POINTS else Confidence.MEDIUM

    change = percentage_change(values)
    rounded_change = round(change, 1) if change is not None else None

    insights: list[str] = []
    if change is not None:
        if direction is TrendDirection.INCREASING and change > SIGNIFICANT_CHANGE_PERCENT:
            insights.append(f"Significant increase detected ({change:.1f}%)")
        elif direction is TrendDirection.DECREASING and change < -SIGNIFICANT_CHANGE_PERCENT:
            insights.append(f"Significant decrease detected ({abs(change):.1f}%)")

    return TrendResult(
        direction=direction,
        confidence=confidence,
        percentage_change=rounded_change,
        slope=round(slope, 3),
        data_points=n,
        insights=insights,
    )


def moving_average_direction(values: Sequence[float]) -> TrendDirection:
    """Compare the first-three and last-three means with a 5% band."""
    if len(values) < MOVING_AVERAGE_WINDOW:
        return TrendDirection.INSUFFICIENT_DATA
    earliest = sum(values[:MOVING_AVERAGE_WINDOW]) / MOVING_AVERAGE_WINDOW
    latest = sum(values[-MOVING_AVERAGE_WINDOW:]) / MOVING_AVERAGE_WINDOW
    if latest > earliest * (1 + MOVING_AVERAGE_BAND):
        return TrendDirection.INCREASING
    if latest < earliest * (1 - MOVING_AVERAGE_BAND):
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def describe_trend(data_type: DataType, trend: TrendResult) -> tuple[str, str]:
    """Return a (trend sentence, follow-up sentence) pair for *trend*."""
    label = data_type.label
    if trend.direction is TrendDirection.INCREASING:
        return (
            f"Increasing trend in {label}",
            f"Monitor {label} closely as it shows an increasing trend",
        )
    if trend.direction is TrendDirection.DECREASING:
        return (
            f"Decreasing trend in {label}",
            f"Continue current management as {label} shows improvement",
        )
    if trend.direction is TrendDirection.STABLE:
        return (
            f"Stable trend in {label}",
            f"Maintain current healthy habits for {label} management",
        )
    return ("Insufficient data for trend analysis", "Continue tracking more data points")
