"""Tests for caretrack domain types and value parsing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import FIXED_NOW, make_medication, make_patient

from caretrack.errors import (
    GENERIC_FAILURE_MESSAGE,
    NotFoundError,
    PersistenceError,
    ValidationError,
    public_error_message,
)
from caretrack.models import (
    BloodPressure,
    DataType,
    ReadingSubmission,
    ReminderEvent,
    RiskLevel,
    coerce_value,
    normalize_time_of_day,
    parse_blood_pressure,
    parse_data_type,
    scalar_value,
    value_to_json,
)

pytestmark = pytest.mark.unit


class TestBloodPressure:
    @pytest.mark.parametrize(
        "raw",
        [
            "120/80",
            " 120 / 80 ",
            '{"systolic": 120, "diastolic": 80}',
            {"systolic": "120", "diastolic": 80},
            BloodPressure(120, 80),
        ],
    )
    def test_accepted_forms(self, raw):
        assert parse_blood_pressure(raw) == BloodPressure(120.0, 80.0)

    @pytest.mark.parametrize(
        "raw", ["high", "120", "120/", '{"systolic": 120}', "0/80", 120, None, "[1, 2]"]
    )
    def test_rejected_forms(self, raw):
        with pytest.raises(ValidationError):
            parse_blood_pressure(raw)

    def test_mean_and_text(self):
        bp = BloodPressure(130, 85)
        assert bp.mean == 107.5
        assert str(bp) == "130/85"
        assert scalar_value(bp) == 107.5
        assert value_to_json(bp) == {"systolic": 130, "diastolic": 85}


class TestCoerceValue:
    def test_numeric_strings(self):
        assert coerce_value("weight", "72.5") == 72.5

    @pytest.mark.parametrize("raw", ["abc", True, None, "nan"])
    def test_invalid_numbers(self, raw):
        with pytest.raises(ValidationError, match="heart rate"):
            coerce_value(DataType.HEART_RATE, raw)

    def test_data_type_is_case_insensitive(self):
        assert parse_data_type(" Blood_Sugar ") is DataType.BLOOD_SUGAR

    def test_unknown_data_type_lists_valid_ones(self):
        with pytest.raises(ValidationError, match="blood_pressure"):
            parse_data_type("mood")


class TestTimeOfDay:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("8:0", "08:00"), ("08:00", "08:00"), ("20:30:00", "20:30"), ("7", "07:00")],
    )
    def test_normalised(self, raw, expected):
        assert normalize_time_of_day(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "noon", "", 800])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            normalize_time_of_day(raw)


class TestMedicationSchedule:
    def test_dose_times_sorted_and_deduplicated(self):
        medication = make_medication(times=("20:00", "8:00", "08:00"))
        assert medication.dose_times == ("08:00", "20:00")
        assert medication.is_due_at("08:00")
        assert not medication.is_due_at("08:01")

    def test_active_without_times_rejected(self):
        with pytest.raises(ValidationError, match="at least one dose time"):
            make_medication(times=())

    def test_inactive_is_never_due(self):
        medication = make_medication(is_active=False)
        assert not medication.is_due_at("08:00")


class TestPatient:
    def test_email_time_normalised(self):
        assert make_patient(email_time="7:5").preferred_email_time == "07:05"
        assert make_patient(email_time="").preferred_email_time is None

    def test_wants(self):
        assert make_patient().wants("alerts")
        assert not make_patient(email=None).wants("alerts")
        assert not make_patient(email_notifications=False).wants("medication")
        patient = make_patient(email_preferences={"motivational": False})
        assert not patient.wants("motivational")
        assert patient.wants("medication")


def test_reminder_cannot_complete_before_due_day():
    with pytest.raises(ValidationError):
        ReminderEvent(
            patient_id="p1",
            scheduled_for=FIXED_NOW,
            completed_at=FIXED_NOW - timedelta(days=1),
        )


def test_risk_levels_are_ordered():
    levels = sorted(RiskLevel, key=lambda r: r.severity)
    assert levels == [RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.CRITICAL]
    assert [r.is_alerting for r in levels] == [False, False, True, True]


class TestReadingSubmission:
    def test_to_reading(self):
        submission = ReadingSubmission.parse(
            {"patient_id": "p1", "data_type": "BLOOD_PRESSURE", "value": "140/90", "unit": "mmHg"}
        )
        reading = submission.to_reading()
        assert reading.data_type is DataType.BLOOD_PRESSURE
        assert reading.value == BloodPressure(140, 90)
        assert reading.risk_level is RiskLevel.LOW

    def test_missing_fields_reported(self):
        with pytest.raises(ValidationError, match="patient_id"):
            ReadingSubmission.parse({"data_type": "weight", "value": 70, "unit": "kg"})

    def test_empty_unit_rejected(self):
        with pytest.raises(ValidationError, match="unit"):
            ReadingSubmission.parse(
                {"patient_id": "p1", "data_type": "weight", "value": 70, "unit": ""}
            )

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2024-01-15T09:00:00", datetime(2024, 1, 15, 9, 0, tzinfo=UTC)),
            ("2024-01-15T10:00:00+01:00", datetime(2024, 1, 15, 9, 0, tzinfo=UTC)),
        ],
    )
    def test_recorded_at_is_timezone_aware(self, raw, expected):
        payload = {"patient_id": "p1", "data_type": "weight", "value": 70, "unit": "kg"}
        submission = ReadingSubmission.parse({**payload, "recorded_at": raw})
        assert submission.recorded_at.tzinfo is not None
        assert submission.recorded_at == expected


class TestPublicErrorMessage:
    def test_actionable_errors_pass_through(self):
        assert public_error_message(ValidationError("bad value")) == "bad value"
        assert public_error_message(NotFoundError("no patient")) == "no patient"

    def test_other_errors_hidden_outside_development(self):
        exc = PersistenceError("connection refused")
        assert public_error_message(exc) == GENERIC_FAILURE_MESSAGE
        assert public_error_message(exc, development=True) == (
            "PersistenceError: connection refused"
        )
