"""Rule-based health analysis: risk, trends, forecasts, adherence, advice."""

from caretrack.analysis.adherence import (
    MotivationAssessment,
    assess_motivation,
    calculate_adherence,
)
from caretrack.analysis.coordinator import AnalysisCoordinator, DriftReport, Submission
from caretrack.analysis.forecast import forecast
from caretrack.analysis.recommendations import recommend, sort_by_priority
from caretrack.analysis.risk import classify, heart_rate_bucket
from caretrack.analysis.trends import analyze_trend, moving_average_direction

__all__ = [
    "AnalysisCoordinator",
    "DriftReport",
    "MotivationAssessment",
    "Submission",
    "analyze_trend",
    "assess_motivation",
    "calculate_adherence",
    "classify",
    "forecast",
    "heart_rate_bucket",
    "moving_average_direction",
    "recommend",
    "sort_by_priority",
]
