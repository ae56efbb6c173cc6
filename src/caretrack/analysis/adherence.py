"""Medication adherence scoring and motivation assessment.

Adherence expects exactly one dose per day per active medication, whatever
the medication's dose-time count. Multi-dose medications are therefore
under-counted on the expected side and their adherence reads high.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from caretrack.models import MedicationSchedule, MotivationLevel, ReminderEvent, ReminderType

DEFAULT_WINDOW_DAYS = 7
LOW_ADHERENCE_THRESHOLD = 80


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_adherence(
    patient_id: str,
    medications: Iterable[MedicationSchedule],
    completed_reminders: Iterable[ReminderEvent],
    window_days: int = DEFAULT_WINDOW_DAYS,
    *,
    now: datetime | None = None,
) -> int:
    """Return a 0..100 adherence score for *patient_id* over the trailing window.

    With no active medications the patient is vacuously compliant (100).
    Otherwise ``expected = active medications * window_days`` and ``actual``
    counts completed medication reminders scheduled inside the window.
    """
    active = [m for m in medications if m.is_active and m.patient_id == patient_id]
    if not active:
        return 100

    expected = len(active) * window_days
    if expected <= 0:
        return 0

    since = (now or datetime.now(UTC)) - timedelta(days=window_days)
    actual = sum(
        1
        for r in completed_reminders
        if r.patient_id == patient_id
        and r.type is ReminderType.MEDICATION
        and r.is_completed
        and r.scheduled_for >= since
    )

    ratio = actual / expected * 100
    if math.isnan(ratio):
        return 0
    return min(100, _round_half_up(ratio))


@dataclass(frozen=True)
class MotivationAssessment:
    level: MotivationLevel
    activity_score: int
    adherence_score: int

    def to_dict(self) -> dict[str, object]:
        return {
            "motivation_level": self.level.value,
            "activity_score": self.activity_score,
            "adherence_score": self.adherence_score,
        }


def assess_motivation(recent_reading_count: int, adherence: int) -> MotivationAssessment:
    """Derive a motivation level from a week of logging activity and adherence."""
    if recent_reading_count >= 5 and adherence >= 80:
        level = MotivationLevel.HIGH
    elif recent_reading_count <= 2 or adherence <= 50:
        level = MotivationLevel.LOW
    else:
        level = MotivationLevel.MEDIUM
    return MotivationAssessment(
        level=level,
        activity_score=recent_reading_count,
        adherence_score=adherence,
    )
