"""In-process ReadingStore backed by plain dicts.

Used by the test suite. Every method is a coroutine
so it is interchangeable with the PostgreSQL store.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any

from caretrack.errors import NotFoundError
from caretrack.models import (
    DataType,
    Goal,
    MedicationSchedule,
    Patient,
    Reading,
    ReminderEvent,
    ReminderType,
    RiskLevel,
)


class InMemoryReadingStore:
    def __init__(self) -> None:
        self.patients: dict[str, Patient] = {}
        self.readings: dict[str, Reading] = {}
        self.medications: dict[str, MedicationSchedule] = {}
        self.reminders: dict[str, ReminderEvent] = {}
        self.goals: dict[str, Goal] = {}

    # -- seeding ---------------------------------------------------------------

    def add_patient(self, patient: Patient) -> Patient:
        self.patients[patient.id] = patient
        return patient

    def add_medication(self, medication: MedicationSchedule) -> MedicationSchedule:
        self.medications[medication.medication_id] = medication
        return medication

    def add_reminder(self, reminder: ReminderEvent) -> ReminderEvent:
        self.reminders[reminder.id] = reminder
        return reminder

    def add_goal(self, goal: Goal) -> Goal:
        self.goals[goal.id] = goal
        return goal

    def add_reading(self, reading: Reading) -> Reading:
        self.readings[reading.id] = reading
        return reading

    # -- ReadingStore ----------------------------------------------------------

    async def find_readings(
        self,
        patient_id: str,
        *,
        data_type: DataType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Reading]:
        rows = [
            r
            for r in self.readings.values()
            if r.patient_id == patient_id
            and (data_type is None or r.data_type is data_type)
            and (since is None or r.recorded_at >= since)
        ]
        rows.sort(key=lambda r: r.recorded_at, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        if not newest_first:
            rows.reverse()
        return rows

    async def create_reading(self, reading: Reading) -> Reading:
        self.readings[reading.id] = reading
        return reading

    async def update_reading_analysis(
        self, reading_id: str, risk_level: RiskLevel, analysis: dict[str, Any]
    ) -> None:
        reading = self.readings.get(reading_id)
        if reading is None:
            raise NotFoundError(f"Reading {reading_id} not found")
        reading.risk_level = risk_level
        reading.analysis = analysis

    async def find_unsent_alerts(
        self, patient_id: str, since: datetime, limit: int
    ) -> list[Reading]:
        rows = await self.find_readings(patient_id, since=since)
        return [r for r in rows if r.risk_level.is_alerting and not r.alert_sent][:limit]

    async def mark_reminder_sent(self, reading_id: str) -> None:
        reading = self.readings.get(reading_id)
        if reading is None:
            raise NotFoundError(f"Reading {reading_id} not found")
        reading.alert_sent = True

    async def find_active_medications(
        self, patient_id: str | None = None
    ) -> list[MedicationSchedule]:
        return sorted(
            (
                m
                for m in self.medications.values()
                if m.is_active and (patient_id is None or m.patient_id == patient_id)
            ),
            key=lambda m: (m.patient_id, m.name),
        )

    async def get_medication(self, medication_id: str) -> MedicationSchedule | None:
        return self.medications.get(medication_id)

    async def find_completed_reminders(
        self, patient_id: str, type: ReminderType, since: datetime
    ) -> list[ReminderEvent]:
        return [
            r
            for r in self.reminders.values()
            if r.patient_id == patient_id
            and r.type is type
            and r.is_completed
            and r.scheduled_for >= since
        ]

    async def get_patient(self, patient_id: str) -> Patient | None:
        return self.patients.get(patient_id)

    async def find_patients_with_email_time(self, time: str | None = None) -> list[Patient]:
        return [
            p
            for p in self.patients.values()
            if p.preferred_email_time and (time is None or p.preferred_email_time == time)
        ]

    async def find_goals(self, patient_id: str, *, achieved: bool | None = None) -> list[Goal]:
        return [
            g
            for g in self.goals.values()
            if g.patient_id == patient_id and (achieved is None or g.is_achieved == achieved)
        ]

    # -- helpers ---------------------------------------------------------------

    def deactivate_medication(self, medication_id: str) -> None:
        self.medications[medication_id] = dataclasses.replace(
            self.medications[medication_id], is_active=False
        )
