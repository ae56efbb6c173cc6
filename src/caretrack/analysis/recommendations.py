"""Condition- and risk-aware recommendations.

Rules are gated on the patient's chronic conditions and on what the
classifier/trend stages found. The output is sorted highest priority
first; rules of equal priority keep the order they were added in. A
generic wellness recommendation is always appended, so the list is never
empty.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from caretrack.analysis.adherence import LOW_ADHERENCE_THRESHOLD
from caretrack.models import (
    AnalysisResult,
    BloodPressure,
    DataType,
    Goal,
    Patient,
    Priority,
    Reading,
    Recommendation,
    RiskLevel,
    TrendDirection,
)

DIABETES = "diabetes"
HYPERTENSION = "hypertension"

BLOOD_SUGAR_ELEVATED = 140
BLOOD_SUGAR_HIGH = 180
SYSTOLIC_ELEVATED = 140
DIASTOLIC_ELEVATED = 90
MIN_WEEKLY_ACTIVITY_ENTRIES = 3
STALLED_GOAL_PROGRESS = 50

WELLNESS = Recommendation(
    category="wellness",
    priority=Priority.LOW,
    message="Maintain a balanced diet and regular physical activity",
    action="Aim for 7-8 hours of sleep per night and stay hydrated",
)


def sort_by_priority(recommendations: Iterable[Recommendation]) -> list[Recommendation]:
    """Stable sort, highest priority first."""
    return sorted(recommendations, key=lambda r: r.priority.weight, reverse=True)


def _bp_elevated(bp: BloodPressure) -> bool:
    return bp.systolic > SYSTOLIC_ELEVATED or bp.diastolic > DIASTOLIC_ELEVATED


def recommend(
    patient: Patient,
    readings: Reading | Sequence[Reading],
    analysis: AnalysisResult | None = None,
    *,
    adherence: int | None = None,
    has_active_medications: bool = True,
    goals: Iterable[Goal] = (),
) -> list[Recommendation]:
    """Build the ordered recommendation list for *patient*.

    *readings* is either the single reading under analysis or the set of
    recent readings a report covers. With a set, blood sugar is judged on its
    average and blood pressure on whether any reading was elevated; activity
    logging is also checked.
    """
    single = isinstance(readings, Reading)
    batch: list[Reading] = [readings] if single else list(readings)
    recs: list[Recommendation] = []

    if patient.has_condition(DIABETES):
        recs.extend(_diabetes_rules(batch, analysis))
    if patient.has_condition(HYPERTENSION):
        recs.extend(_hypertension_rules(batch))

    if analysis is not None:
        recs.extend(_risk_rules(analysis.risk_level))

    if has_active_medications and adherence is not None and adherence < LOW_ADHERENCE_THRESHOLD:
        recs.append(
            Recommendation(
                category="medication",
                priority=Priority.HIGH,
                message=(
                    f"Your medication adherence is {adherence}%. "
                    "Improve medication adherence for better outcomes"
                ),
                action="Set up medication reminders and use a pill organizer",
            )
        )

    if not single:
        activity = sum(1 for r in batch if r.data_type is DataType.ACTIVITY_LEVEL)
        if activity < MIN_WEEKLY_ACTIVITY_ENTRIES:
            recs.append(
                Recommendation(
                    category="activity",
                    priority=Priority.MEDIUM,
                    message="Increase physical activity levels",
                    action="Aim for 150 minutes of moderate exercise per week",
                )
            )

    stalled = [g for g in goals if not g.is_achieved and g.progress < STALLED_GOAL_PROGRESS]
    if stalled:
        recs.append(
            Recommendation(
                category="goals",
                priority=Priority.MEDIUM,
                message=f"You have {len(stalled)} goals that need more attention.",
                action="Break down larger goals into smaller, achievable steps",
            )
        )

    recs.append(WELLNESS)
    return sort_by_priority(recs)


def _diabetes_rules(
    readings: list[Reading], analysis: AnalysisResult | None
) -> list[Recommendation]:
    sugar = [r.scalar for r in readings if r.data_type is DataType.BLOOD_SUGAR]
    recs: list[Recommendation] = []
    if sugar:
        level = sum(sugar) / len(sugar)
        if level > BLOOD_SUGAR_HIGH:
            recs.append(
                Recommendation(
                    category="monitoring",
                    priority=Priority.HIGH,
                    message=(
                        "High blood sugar detected. Monitor for symptoms of hyperglycemia "
                        "and check for ketones if you have type 1 diabetes"
                    ),
                    action="Stay hydrated and avoid sugary foods",
                )
            )
        if level > BLOOD_SUGAR_ELEVATED:
            recs.append(
                Recommendation(
                    category="diet",
                    priority=Priority.MEDIUM,
                    message="Consider reducing carbohydrate intake and increasing fiber",
                    action="Review recent meals and consult with a dietitian for meal planning",
                )
            )

    trend = analysis.trends.get(DataType.BLOOD_SUGAR.value) if analysis is not None else None
    if trend is not None and trend.direction is TrendDirection.INCREASING:
        recs.append(
            Recommendation(
                category="monitoring",
                priority=Priority.MEDIUM,
                message="Your blood sugar shows an increasing trend",
                action="Check your blood sugar more often and share the log with your care team",
            )
        )
    return recs


def _hypertension_rules(readings: list[Reading]) -> list[Recommendation]:
    elevated = [
        r
        for r in readings
        if r.data_type is DataType.BLOOD_PRESSURE
        and isinstance(r.value, BloodPressure)
        and _bp_elevated(r.value)
    ]
    if not elevated:
        return []
    return [
        Recommendation(
            category="lifestyle",
            priority=Priority.MEDIUM,
            message="Reduce sodium intake and practice stress management",
            action="Aim for 30 minutes of moderate exercise daily and limit caffeine and alcohol",
        )
    ]


def _risk_rules(risk_level: RiskLevel) -> list[Recommendation]:
    if risk_level is RiskLevel.CRITICAL:
        return [
            Recommendation(
                category="medical",
                priority=Priority.HIGH,
                message="This reading is in the critical range",
                action="Contact your healthcare provider now or seek emergency care",
            )
        ]
    if risk_level is RiskLevel.HIGH:
        return [
            Recommendation(
                category="medical",
                priority=Priority.HIGH,
                message="Consider contacting your healthcare provider for advice",
                action="Monitor your symptoms closely and seek emergency care if needed",
            )
        ]
    if risk_level is RiskLevel.MODERATE:
        return [
            Recommendation(
                category="monitoring",
                priority=Priority.MEDIUM,
                message="Continue monitoring this parameter closely",
                action="Maintain your current treatment plan and lifestyle modifications",
            )
        ]
    return []


_PREDICTION_ADVICE = {
    DataType.BLOOD_PRESSURE: {
        TrendDirection.INCREASING: "Consider lifestyle modifications to manage blood pressure",
        TrendDirection.DECREASING: "Continue current management strategy",
        TrendDirection.STABLE: "Maintain current healthy habits",
    },
    DataType.BLOOD_SUGAR: {
        TrendDirection.INCREASING: "Monitor carbohydrate intake and consider dietary adjustments",
        TrendDirection.DECREASING: "Good control, maintain current management",
        TrendDirection.STABLE: "Excellent blood sugar control",
    },
    DataType.HEART_RATE: {
        TrendDirection.INCREASING: (
            "Practice stress-reduction techniques and ensure adequate hydration"
        ),
        TrendDirection.DECREASING: "Good heart rate control",
        TrendDirection.STABLE: "Healthy heart rate pattern",
    },
}


def prediction_advice(data_type: DataType, direction: TrendDirection) -> str:
    """One-line advice to accompany a forecast."""
    return _PREDICTION_ADVICE.get(data_type, {}).get(
        direction, "Continue monitoring and follow healthcare provider advice"
    )
