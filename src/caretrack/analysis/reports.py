"""Multi-reading report helpers: metric stats, risk summary, alerts, insights.

Everything here is pure and works on readings that have already been
fetched. Risk is always recomputed with ``classify`` rather than trusted from
a reading's cached ``risk_level``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from caretrack.analysis.adherence import MotivationAssessment
from caretrack.analysis.risk import classify, heart_rate_bucket
from caretrack.models import (
    BloodPressure,
    DataType,
    Goal,
    MedicationSchedule,
    MotivationLevel,
    Patient,
    Reading,
    RiskLevel,
    value_to_json,
)

REPORT_PERIODS = {"week": 7, "month": 30, "quarter": 90}
METRIC_STATS_WINDOW = 7


def overall_risk(readings: Iterable[Reading]) -> tuple[RiskLevel, Reading | None]:
    """Highest-severity risk across *readings* and the reading that set it.

    On equal severity the more recent reading wins.
    """
    best_level = RiskLevel.LOW
    best_reading: Reading | None = None
    for reading in readings:
        level = classify(reading.data_type, reading.value).risk_level
        if best_reading is None or level.severity > best_level.severity:
            best_level, best_reading = level, reading
        elif (
            level.severity == best_level.severity
            and reading.recorded_at > best_reading.recorded_at
        ):
            best_reading = reading
    return best_level, best_reading


def metric_stats(readings: Sequence[Reading], data_type: DataType) -> dict[str, Any]:
    """Summary statistics over the latest seven readings of *data_type*."""
    latest = sorted(
        (r for r in readings if r.data_type is data_type),
        key=lambda r: r.recorded_at,
        reverse=True,
    )[:METRIC_STATS_WINDOW]
    if not latest:
        return {}
    values = [r.scalar for r in latest]
    stats: dict[str, Any] = {
        "recent_count": len(latest),
        "average": round(sum(values) / len(values), 2),
        "min": min(values),
        "max": max(values),
        "last_value": value_to_json(latest[0].value),
        "risk_level": classify(data_type, latest[0].value).risk_level.value,
    }
    if data_type is DataType.BLOOD_PRESSURE:
        pairs = [r.value for r in latest if isinstance(r.value, BloodPressure)]
        stats["systolic_avg"] = round(sum(p.systolic for p in pairs) / len(pairs), 2)
        stats["diastolic_avg"] = round(sum(p.diastolic for p in pairs) / len(pairs), 2)
    elif data_type is DataType.HEART_RATE:
        stats["heart_rate_bucket"] = heart_rate_bucket(values[0]).value
    return stats


def risk_assessment(patient: Patient, readings: Sequence[Reading]) -> dict[str, Any]:
    """Overall risk plus the groups of readings and conditions that drive it."""
    levels = [(r, classify(r.data_type, r.value).risk_level) for r in readings]
    risks: list[dict[str, Any]] = []

    alerting = [r for r, level in levels if level.is_alerting]
    moderate = [r for r, level in levels if level is RiskLevel.MODERATE]

    level, _ = overall_risk(readings)
    if alerting:
        risks.append(
            {
                "level": level.value,
                "count": len(alerting),
                "types": _distinct_types(alerting),
                "message": f"{len(alerting)} high-risk readings detected",
            }
        )
    if len(moderate) > 2:
        risks.append(
            {
                "level": RiskLevel.MODERATE.value,
                "count": len(moderate),
                "types": _distinct_types(moderate),
                "message": "Multiple moderate-risk readings observed",
            }
        )

    if patient.has_condition("diabetes"):
        high_sugar = [
            r for r in readings if r.data_type is DataType.BLOOD_SUGAR and r.scalar > 180
        ]
        if len(high_sugar) > 2:
            risks.append(
                {
                    "level": RiskLevel.MODERATE.value,
                    "type": "diabetes_related",
                    "message": "Frequent high blood sugar readings detected",
                }
            )
    if patient.has_condition("hypertension"):
        high_bp = [
            r
            for r in readings
            if isinstance(r.value, BloodPressure)
            and (r.value.systolic > 140 or r.value.diastolic > 90)
        ]
        if len(high_bp) > 2:
            risks.append(
                {
                    "level": RiskLevel.MODERATE.value,
                    "type": "hypertension_related",
                    "message": "Frequent elevated blood pressure readings",
                }
            )

    if level.is_alerting:
        summary = "Requires immediate attention"
    elif level is RiskLevel.MODERATE:
        summary = "Monitor closely"
    else:
        summary = "Stable condition"
    return {"overall_risk": level.value, "risks": risks, "summary": summary}


def check_alerts(readings: Sequence[Reading]) -> list[dict[str, Any]]:
    """Critical readings always alert; high readings alert when more than two."""
    levels = [(r, classify(r.data_type, r.value).risk_level) for r in readings]
    critical = [r for r, level in levels if level is RiskLevel.CRITICAL]
    high = [r for r, level in levels if level is RiskLevel.HIGH]
    alerts: list[dict[str, Any]] = []
    if critical:
        alerts.append(
            {
                "level": RiskLevel.CRITICAL.value,
                "count": len(critical),
                "types": _distinct_types(critical),
                "message": "Critical health readings detected - seek medical attention",
            }
        )
    if len(high) > 2:
        alerts.append(
            {
                "level": RiskLevel.HIGH.value,
                "count": len(high),
                "types": _distinct_types(high),
                "message": "Multiple high-risk readings - monitor closely",
            }
        )
    return alerts


def medication_insights(
    adherence: int, medications: Sequence[MedicationSchedule]
) -> dict[str, Any]:
    if adherence >= 80:
        status = "excellent"
        guidance = [
            "Excellent medication adherence! Keep up the great work",
            "Continue maintaining this consistent routine",
        ]
    elif adherence >= 60:
        status = "good"
        guidance = [
            "Good progress, aim for more consistent timing",
            "Consider using a pill organizer for better organization",
        ]
    else:
        status = "needs_improvement"
        guidance = [
            "Consider setting medication reminders",
            "Discuss adherence challenges with your healthcare provider",
            "Try linking medication times with daily routines",
        ]
    return {
        "overall_adherence": adherence,
        "status": status,
        "medications": [
            {
                "medication_id": m.medication_id,
                "name": m.name,
                "dosage": m.dosage,
                "dose_times": list(m.dose_times),
            }
            for m in medications
        ],
        "recommendations": guidance,
    }


_MOTIVATION_MESSAGES = {
    MotivationLevel.HIGH: (
        [
            "You are doing an excellent job managing your health!",
            "Your consistency is inspiring and will lead to great outcomes.",
            "Keep up the fantastic work!",
        ],
        [],
    ),
    MotivationLevel.MEDIUM: (
        [
            "You are making good progress in your health journey.",
            "Every small step counts toward better health outcomes.",
            "Consider setting smaller, achievable goals to build momentum.",
        ],
        [
            "Try tracking one additional health metric this week",
            "Set a reminder to log your health data daily",
            "Share your progress with a supportive friend or family member",
        ],
    ),
    MotivationLevel.LOW: (
        [
            "Managing chronic conditions can be challenging, but you are not alone.",
            "Even small steps forward are valuable progress.",
            "Remember why you started this journey towards better health.",
        ],
        [
            "Start with one simple health goal this week",
            "Reach out to your healthcare provider for support",
            "Celebrate small victories along the way",
        ],
    ),
}


def motivational_insights(
    motivation: MotivationAssessment, recent_reading_count: int
) -> dict[str, Any]:
    messages, suggestions = _MOTIVATION_MESSAGES[motivation.level]
    suggestions = list(suggestions)
    if recent_reading_count < 3:
        suggestions.extend(
            [
                "Try to log your health data more frequently for better insights",
                "Set a daily reminder to track your key health metrics",
            ]
        )
    return {
        **motivation.to_dict(),
        "messages": list(messages),
        "suggestions": suggestions,
    }


def goal_progress_context(goals: Sequence[Goal], limit: int = 3) -> dict[str, Any]:
    """Average progress and near-complete goals for the daily update email."""
    open_goals = [g for g in goals if not g.is_achieved][:limit]
    context: dict[str, Any] = {
        "goal_progress": 0,
        "recent_achievements": "Making great progress!",
    }
    if open_goals:
        context["goal_progress"] = round(sum(g.progress for g in open_goals) / len(open_goals))
        near_done = [g.title for g in open_goals if g.progress >= 80]
        if near_done:
            context["recent_achievements"] = ", ".join(near_done)
    return context


def progress_report(
    period: str,
    readings: Sequence[Reading],
    medications: Sequence[MedicationSchedule],
    goals: Sequence[Goal],
    adherence: int,
    motivation: MotivationAssessment,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Achievements, weak spots and next steps over a week/month/quarter.

    Unknown periods fall back to a week.
    """
    days = REPORT_PERIODS.get(period, REPORT_PERIODS["week"])
    end = now or datetime.now(UTC)
    start = end - timedelta(days=days)
    in_window = [r for r in readings if r.recorded_at >= start]

    achievements: list[str] = []
    if adherence >= 80:
        achievements.append("Excellent medication adherence")
    if len(in_window) >= days * 0.7:
        achievements.append("Consistent health data tracking")
    if any(g.is_achieved for g in goals):
        achievements.append("Successfully achieved health goals")

    improvements: list[str] = []
    if adherence < 60:
        improvements.append("Medication adherence needs improvement")
    if len(in_window) < days * 0.3:
        improvements.append("Inconsistent health data tracking")
    if motivation.level is MotivationLevel.LOW:
        improvements.append("Low motivation level detected")

    return {
        "period": period if period in REPORT_PERIODS else "week",
        "date_range": {"start": start.isoformat(), "end": end.isoformat()},
        "summary": {
            "data_entries": len(in_window),
            "active_medications": sum(1 for m in medications if m.is_active),
            "active_goals": sum(1 for g in goals if not g.is_achieved),
            "achieved_goals": sum(1 for g in goals if g.is_achieved),
            "medication_adherence": adherence,
            "motivation_level": motivation.level.value,
        },
        "achievements": achievements,
        "areas_for_improvement": improvements,
        "next_steps": [
            "Continue tracking health data regularly",
            "Follow medication schedule consistently",
            "Work on achieving set health goals",
        ],
    }


def _distinct_types(readings: Iterable[Reading]) -> list[str]:
    seen: dict[str, None] = {}
    for r in readings:
        seen.setdefault(r.data_type.value, None)
    return list(seen)
