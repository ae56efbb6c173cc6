"""Domain types for caretrack: readings, schedules, reminders, patients, results.

Readings carry a tagged value: a plain ``float`` for every numeric data type
and a ``BloodPressure`` pair for ``blood_pressure``. Time-of-day values
(dose times, preferred email time) are always normalised to zero-padded
``HH:MM`` strings.
"""

from __future__ import annotations

import enum
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from caretrack.errors import ValidationError


class DataType(enum.StrEnum):
    """Kinds of health measurement a patient can log."""

    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_SUGAR = "blood_sugar"
    HEART_RATE = "heart_rate"
    WEIGHT = "weight"
    CHOLESTEROL = "cholesterol"
    OXYGEN_SATURATION = "oxygen_saturation"
    ACTIVITY_LEVEL = "activity_level"
    SLEEP_QUALITY = "sleep_quality"

    @property
    def label(self) -> str:
        """Human-readable name, e.g. ``blood sugar``."""
        return self.value.replace("_", " ")


class RiskLevel(enum.StrEnum):
    """Ordinal risk classification for a reading."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]

    @property
    def is_alerting(self) -> bool:
        """True for the tiers that trigger a health alert."""
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)


_RISK_SEVERITY = {
    RiskLevel.LOW: 0,
    RiskLevel.MODERATE: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class Priority(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class TrendDirection(enum.StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


class Confidence(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MotivationLevel(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReminderType(enum.StrEnum):
    MEDICATION = "medication"
    APPOINTMENT = "appointment"
    MEASUREMENT = "measurement"
    EXERCISE = "exercise"
    DIET = "diet"
    MOTIVATIONAL = "motivational"


# ---------------------------------------------------------------------------
# Time-of-day helpers
# ---------------------------------------------------------------------------

_TIME_OF_DAY_PATTERN = re.compile(r"^\s*(\d{1,2})(?::(\d{1,2}))?(?::(\d{1,2}))?\s*$")


def normalize_time_of_day(value: str) -> str:
    """Normalise ``"8:0"``, ``"08:00"`` or ``"08:00:00"`` to zero-padded ``HH:MM``.

    Raises:
        ValidationError: If *value* is not a valid time of day.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Time of day must be a string, got {type(value).__name__}")
    match = _TIME_OF_DAY_PATTERN.match(value)
    if match is None:
        raise ValidationError(f"Invalid time of day: {value!r}. Expected HH:MM")
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValidationError(f"Invalid time of day: {value!r}. Out of range")
    return f"{hours:02d}:{minutes:02d}"


def minute_key(moment: datetime) -> str:
    """Truncate *moment* to minute resolution as ``HH:MM``."""
    return f"{moment.hour:02d}:{moment.minute:02d}"


# ---------------------------------------------------------------------------
# Reading values
# ---------------------------------------------------------------------------

_BP_TEXT_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)\s*$")


@dataclass(frozen=True)
class BloodPressure:
    """A systolic/diastolic pair in mmHg."""

    systolic: float
    diastolic: float

    @property
    def mean(self) -> float:
        """Mean of systolic and diastolic, used when reducing to one number."""
        return (self.systolic + self.diastolic) / 2

    def to_dict(self) -> dict[str, float]:
        return {"systolic": self.systolic, "diastolic": self.diastolic}

    def __str__(self) -> str:
        return f"{self.systolic:g}/{self.diastolic:g}"


ReadingValue = float | BloodPressure


def parse_blood_pressure(raw: Any) -> BloodPressure:
    """Parse a blood-pressure value from text, JSON, a mapping, or a ``BloodPressure``.

    Accepted forms: ``"120/80"``, ``'{"systolic": 120, "diastolic": 80}'``,
    ``{"systolic": 120, "diastolic": 80}``.

    Raises:
        ValidationError: If the value cannot be read as a positive pair.
    """
    if isinstance(raw, BloodPressure):
        return raw
    if isinstance(raw, str):
        match = _BP_TEXT_PATTERN.match(raw)
        if match is not None:
            return _checked_pair(float(match.group(1)), float(match.group(2)), raw)
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            raise ValidationError(
                f"Invalid blood pressure value: {raw!r}. Expected 'systolic/diastolic'"
            ) from None
    if isinstance(raw, dict):
        try:
            return _checked_pair(float(raw["systolic"]), float(raw["diastolic"]), raw)
        except (KeyError, TypeError, ValueError):
            raise ValidationError(
                f"Invalid blood pressure value: {raw!r}. Expected systolic and diastolic"
            ) from None
    raise ValidationError(f"Invalid blood pressure value: {raw!r}")


def _checked_pair(systolic: float, diastolic: float, raw: Any) -> BloodPressure:
    if systolic <= 0 or diastolic <= 0:
        raise ValidationError(f"Blood pressure values must be positive: {raw!r}")
    return BloodPressure(systolic=systolic, diastolic=diastolic)


def coerce_value(data_type: DataType | str, raw: Any) -> ReadingValue:
    """Convert a raw submitted value into the typed value for *data_type*.

    Raises:
        ValidationError: On an unknown data type or an unparseable value.
    """
    data_type = parse_data_type(data_type)
    if data_type is DataType.BLOOD_PRESSURE:
        return parse_blood_pressure(raw)
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid {data_type.label} value: {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {data_type.label} value: {raw!r}") from None
    if value != value:  # NaN
        raise ValidationError(f"Invalid {data_type.label} value: {raw!r}")
    return value


def parse_data_type(raw: DataType | str) -> DataType:
    if isinstance(raw, DataType):
        return raw
    try:
        return DataType(str(raw).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unrecognized data type: {raw!r}. "
            f"Must be one of: {', '.join(sorted(t.value for t in DataType))}"
        ) from None


def value_to_json(value: ReadingValue) -> Any:
    """JSON-compatible form of a reading value."""
    if isinstance(value, BloodPressure):
        return value.to_dict()
    return value


def scalar_value(value: ReadingValue) -> float:
    """Reduce a reading value to one number (blood pressure becomes its mean)."""
    if isinstance(value, BloodPressure):
        return value.mean
    return float(value)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Reading:
    """A single health measurement.

    ``risk_level`` and ``analysis`` are caches of the analysis output for
    ``(data_type, value)``; they are rewritten whenever the reading is
    re-analysed.
    """

    patient_id: str
    data_type: DataType
    value: ReadingValue
    unit: str
    recorded_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    notes: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    analysis: dict[str, Any] | None = None
    alert_sent: bool = False

    @property
    def scalar(self) -> float:
        return scalar_value(self.value)


@dataclass(frozen=True)
class MedicationSchedule:
    """An active (or soft-deactivated) medication and its daily dose times."""

    medication_id: str
    patient_id: str
    name: str
    dosage: str
    dose_times: tuple[str, ...] = ()
    is_active: bool = True
    frequency: str | None = None
    purpose: str | None = None

    def __post_init__(self) -> None:
        normalized = tuple(sorted({normalize_time_of_day(t) for t in self.dose_times}))
        object.__setattr__(self, "dose_times", normalized)
        if self.is_active and not normalized:
            raise ValidationError(f"Active medication {self.name!r} needs at least one dose time")

    def is_due_at(self, hhmm: str) -> bool:
        return self.is_active and hhmm in self.dose_times


@dataclass
class ReminderEvent:
    """A reminder obligation and, once completed, the record of it."""

    patient_id: str
    scheduled_for: datetime
    type: ReminderType = ReminderType.MEDICATION
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    medication_id: str | None = None
    title: str | None = None
    is_completed: bool = False
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.completed_at is not None and self.completed_at.date() < self.scheduled_for.date():
            raise ValidationError("A reminder cannot be completed before the day it was due")


NOTIFICATION_CATEGORIES = ("medication", "motivational", "alerts", "reports")


@dataclass
class Patient:
    """The subset of the patient profile the analysis and scheduler need."""

    id: str
    email: str | None
    first_name: str = ""
    last_name: str = ""
    chronic_conditions: frozenset[str] = frozenset()
    preferred_email_time: str | None = "09:00"
    email_notifications: bool = True
    email_preferences: dict[str, bool] = field(
        default_factory=lambda: {c: True for c in NOTIFICATION_CATEGORIES}
    )
    motivation_level: MotivationLevel = MotivationLevel.MEDIUM

    def __post_init__(self) -> None:
        self.chronic_conditions = frozenset(c.strip().lower() for c in self.chronic_conditions)
        if self.preferred_email_time:
            self.preferred_email_time = normalize_time_of_day(self.preferred_email_time)
        else:
            self.preferred_email_time = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def has_condition(self, condition: str) -> bool:
        return condition.lower() in self.chronic_conditions

    def wants(self, category: str) -> bool:
        """True when this patient accepts email of *category*."""
        if not self.email or not self.email_notifications:
            return False
        return self.email_preferences.get(category, True)


@dataclass
class Goal:
    patient_id: str
    title: str
    progress: float = 0.0
    is_achieved: bool = False
    category: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Classification:
    risk_level: RiskLevel
    insight: str


@dataclass
class TrendResult:
    direction: TrendDirection
    confidence: Confidence
    percentage_change: float | None = None
    slope: float | None = None
    data_points: int = 0
    insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction.value,
            "confidence": self.confidence.value,
            "percentage_change": self.percentage_change,
            "slope": self.slope,
            "data_points": self.data_points,
            "insights": list(self.insights),
        }


@dataclass(frozen=True)
class Forecast:
    predicted_value: float
    confidence: Confidence
    trend_direction: TrendDirection

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_value": self.predicted_value,
            "confidence": self.confidence.value,
            "trend_direction": self.trend_direction.value,
        }


@dataclass(frozen=True)
class Recommendation:
    category: str
    priority: Priority
    message: str
    action: str

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category,
            "priority": self.priority.value,
            "message": self.message,
            "action": self.action,
        }


@dataclass
class AnalysisResult:
    """Risk, insights, trends, predictions and recommendations for one request."""

    risk_level: RiskLevel = RiskLevel.LOW
    insights: list[str] = field(default_factory=list)
    trends: dict[str, TrendResult] = field(default_factory=dict)
    predictions: list[str] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible snapshot, as cached on the reading."""
        return {
            "risk_level": self.risk_level.value,
            "insights": list(self.insights),
            "trends": {k: t.to_dict() for k, t in self.trends.items()},
            "predictions": list(self.predictions),
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


@dataclass
class ComprehensiveAnalysis(AnalysisResult):
    """Whole-patient report: every metric type, a risk summary, and alerts."""

    patient_overview: dict[str, Any] = field(default_factory=dict)
    health_metrics: dict[str, dict[str, Any]] = field(default_factory=dict)
    risk_assessment: dict[str, Any] = field(default_factory=dict)
    alerts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "patient_overview": self.patient_overview,
                "health_metrics": self.health_metrics,
                "risk_assessment": self.risk_assessment,
                "alerts": self.alerts,
            }
        )
        return data


# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------


class ReadingSubmission(BaseModel):
    """A reading as submitted by a client, before it is typed and stored."""

    model_config = ConfigDict(extra="ignore")

    patient_id: str
    data_type: DataType
    value: Any
    unit: str = Field(min_length=1)
    notes: str | None = None
    recorded_at: datetime | None = None

    @field_validator("data_type", mode="before")
    @classmethod
    def _normalize_data_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("recorded_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Stored readings are always timezone-aware; naive input is read as UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @classmethod
    def parse(cls, payload: dict[str, Any]) -> ReadingSubmission:
        """Validate *payload*, raising caretrack's ``ValidationError`` on bad input."""
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise ValidationError(f"Invalid reading: {problems}") from exc

    def typed_value(self) -> ReadingValue:
        return coerce_value(self.data_type, self.value)

    def to_reading(self) -> Reading:
        return Reading(
            patient_id=self.patient_id,
            data_type=self.data_type,
            value=self.typed_value(),
            unit=self.unit,
            notes=self.notes,
            recorded_at=self.recorded_at or _utcnow(),
        )
