"""Tests for the in-memory ReadingStore."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FIXED_NOW, make_medication, make_patient, make_reading

from caretrack.errors import NotFoundError
from caretrack.models import DataType, Goal, ReminderEvent, ReminderType, RiskLevel
from caretrack.store import ReadingStore

pytestmark = pytest.mark.unit


def test_satisfies_protocol(store):
    assert isinstance(store, ReadingStore)


async def test_find_readings_filters_and_orders(store):
    for days in (3, 1, 2):
        at = FIXED_NOW - timedelta(days=days)
        store.add_reading(make_reading("blood_sugar", 100 + days, at=at))
    store.add_reading(make_reading("weight", 70, unit="kg"))
    store.add_reading(make_reading("blood_sugar", 90, patient_id="p2"))

    newest = await store.find_readings("p1", data_type=DataType.BLOOD_SUGAR)
    assert [r.value for r in newest] == [101, 102, 103]

    oldest = await store.find_readings(
        "p1", data_type=DataType.BLOOD_SUGAR, newest_first=False, limit=2
    )
    assert [r.value for r in oldest] == [102, 101]

    recent = await store.find_readings("p1", since=FIXED_NOW - timedelta(days=1, hours=1))
    assert {r.data_type for r in recent} == {DataType.BLOOD_SUGAR, DataType.WEIGHT}


async def test_unsent_alerts_window_and_limit(store):
    since = FIXED_NOW - timedelta(hours=24)
    store.add_reading(make_reading("blood_sugar", 300, risk_level=RiskLevel.CRITICAL))
    store.add_reading(make_reading("blood_sugar", 200, risk_level=RiskLevel.HIGH))
    store.add_reading(make_reading("blood_sugar", 150, risk_level=RiskLevel.MODERATE))
    store.add_reading(
        make_reading("blood_sugar", 300, risk_level=RiskLevel.HIGH, at=since - timedelta(hours=1))
    )
    sent = store.add_reading(
        make_reading("blood_sugar", 300, risk_level=RiskLevel.HIGH, alert_sent=True)
    )

    alerts = await store.find_unsent_alerts("p1", since, 10)
    assert len(alerts) == 2
    assert sent not in alerts
    assert len(await store.find_unsent_alerts("p1", since, 1)) == 1


async def test_mark_sent_and_update_analysis(store):
    reading = store.add_reading(make_reading("blood_sugar", 300))

    await store.mark_reminder_sent(reading.id)
    await store.update_reading_analysis(reading.id, RiskLevel.CRITICAL, {"risk_level": "critical"})

    assert reading.alert_sent is True
    assert reading.risk_level is RiskLevel.CRITICAL
    with pytest.raises(NotFoundError):
        await store.mark_reminder_sent("missing")
    with pytest.raises(NotFoundError):
        await store.update_reading_analysis("missing", RiskLevel.LOW, {})


async def test_active_medications(store):
    store.add_medication(make_medication("m2", name="Lisinopril"))
    store.add_medication(make_medication("m1", name="Aspirin"))
    store.add_medication(make_medication("m3", "p2"))
    store.deactivate_medication("m2")

    assert [m.medication_id for m in await store.find_active_medications()] == ["m1", "m3"]
    assert [m.medication_id for m in await store.find_active_medications("p2")] == ["m3"]
    assert (await store.get_medication("m2")).is_active is False


async def test_patients_with_email_time(store):
    store.add_patient(make_patient("p1", email_time="8:30"))
    store.add_patient(make_patient("p2", email_time="09:00"))
    store.add_patient(make_patient("p3", email_time=None))

    assert {p.id for p in await store.find_patients_with_email_time()} == {"p1", "p2"}
    assert [p.id for p in await store.find_patients_with_email_time("08:30")] == ["p1"]


async def test_completed_reminders_and_goals(store):
    store.add_reminder(
        ReminderEvent(patient_id="p1", scheduled_for=FIXED_NOW, is_completed=True)
    )
    store.add_reminder(ReminderEvent(patient_id="p1", scheduled_for=FIXED_NOW))
    store.add_reminder(
        ReminderEvent(
            patient_id="p1",
            type=ReminderType.APPOINTMENT,
            scheduled_for=FIXED_NOW,
            is_completed=True,
        )
    )
    store.add_goal(Goal(patient_id="p1", title="Walk", is_achieved=True))
    store.add_goal(Goal(patient_id="p1", title="Sleep"))

    done = await store.find_completed_reminders(
        "p1", ReminderType.MEDICATION, FIXED_NOW - timedelta(days=1)
    )
    assert len(done) == 1
    assert [g.title for g in await store.find_goals("p1", achieved=False)] == ["Sleep"]
    assert len(await store.find_goals("p1")) == 2
