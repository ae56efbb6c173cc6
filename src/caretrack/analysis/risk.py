"""Single-reading risk classification.

``classify`` is pure: the same ``(data_type, value)`` always yields the same
``Classification``. All comparisons are strict, so a reading sitting exactly on
a threshold stays in the lower tier.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from caretrack.models import (
    BloodPressure,
    Classification,
    DataType,
    RiskLevel,
    coerce_value,
    parse_data_type,
)

# (critical, high, moderate) upper bounds, exclusive
BLOOD_PRESSURE_SYSTOLIC = (180, 140, 130)
BLOOD_PRESSURE_DIASTOLIC = (120, 90, 85)
BLOOD_SUGAR_MG_DL = (240, 180, 140)
CHOLESTEROL_MG_DL = (None, 240, 200)

HEART_RATE_NORMAL = (60, 100)
# Coarser bucket only used by the per-metric report view.
HEART_RATE_HIGH_RISK = (50, 120)


def classify(data_type: DataType | str, value: Any) -> Classification:
    """Classify one reading into a risk tier with a short insight sentence.

    *value* may already be typed (``float`` / ``BloodPressure``) or raw
    (``"120/80"``, ``"135"``); raw values are coerced first.

    Raises:
        ValidationError: If the data type is unknown or the value is malformed.
    """
    data_type = parse_data_type(data_type)
    typed = coerce_value(data_type, value)

    if data_type is DataType.BLOOD_PRESSURE:
        return _classify_blood_pressure(typed)
    if data_type is DataType.BLOOD_SUGAR:
        return _classify_blood_sugar(typed)
    if data_type is DataType.HEART_RATE:
        return _classify_heart_rate(typed)
    if data_type is DataType.CHOLESTEROL:
        return _classify_cholesterol(typed)
    if data_type is DataType.WEIGHT:
        return Classification(
            RiskLevel.LOW, f"Current weight: {typed:g} kg. Monitor for healthy BMI."
        )
    return Classification(RiskLevel.LOW, "Data recorded successfully.")


def _classify_blood_pressure(bp: BloodPressure) -> Classification:
    sys_critical, sys_high, sys_moderate = BLOOD_PRESSURE_SYSTOLIC
    dia_critical, dia_high, dia_moderate = BLOOD_PRESSURE_DIASTOLIC
    if bp.systolic > sys_critical or bp.diastolic > dia_critical:
        return Classification(
            RiskLevel.CRITICAL,
            "Critically high blood pressure detected. Seek immediate medical attention.",
        )
    if bp.systolic > sys_high or bp.diastolic > dia_high:
        return Classification(
            RiskLevel.HIGH,
            "Elevated blood pressure detected. Consider consulting your healthcare provider.",
        )
    if bp.systolic > sys_moderate or bp.diastolic > dia_moderate:
        return Classification(
            RiskLevel.MODERATE, "Borderline high blood pressure. Monitor closely."
        )
    return Classification(RiskLevel.LOW, "Blood pressure within normal range.")


def _classify_blood_sugar(value: float) -> Classification:
    critical, high, moderate = BLOOD_SUGAR_MG_DL
    if value > critical:
        return Classification(
            RiskLevel.CRITICAL,
            "Critically high blood sugar level detected. Seek medical attention promptly.",
        )
    if value > high:
        return Classification(
            RiskLevel.HIGH,
            "High blood sugar level detected. Monitor symptoms and consider medical advice.",
        )
    if value > moderate:
        return Classification(
            RiskLevel.MODERATE, "Elevated blood sugar level. Watch your carbohydrate intake."
        )
    return Classification(RiskLevel.LOW, "Blood sugar within target range.")


def _classify_heart_rate(value: float) -> Classification:
    low, high = HEART_RATE_NORMAL
    if value > high:
        return Classification(
            RiskLevel.MODERATE, "Elevated heart rate. Consider rest and hydration."
        )
    if value < low:
        return Classification(
            RiskLevel.MODERATE, "Low heart rate. Monitor for symptoms like dizziness."
        )
    return Classification(RiskLevel.LOW, "Heart rate within normal range.")


def _classify_cholesterol(value: float) -> Classification:
    _, high, moderate = CHOLESTEROL_MG_DL
    if value > high:
        return Classification(
            RiskLevel.HIGH,
            "High cholesterol level. Important to discuss with healthcare provider.",
        )
    if value > moderate:
        return Classification(
            RiskLevel.MODERATE, "Borderline high cholesterol. Consider dietary changes."
        )
    return Classification(RiskLevel.LOW, "Cholesterol level within desirable range.")


def heart_rate_bucket(value: float) -> RiskLevel:
    """Three-way heart-rate bucket (low / moderate / high) for report views.

    Uses the same normal range as ``classify`` and adds the >120 / <50 band as
    ``high``. Never used for the per-reading cached risk level.
    """
    floor, ceiling = HEART_RATE_HIGH_RISK
    if value > ceiling or value < floor:
        return RiskLevel.HIGH
    return _classify_heart_rate(value).risk_level


def max_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Highest severity among *levels*; ``LOW`` when empty."""
    result = RiskLevel.LOW
    for level in levels:
        if level.severity > result.severity:
            result = level
    return result
