"""ReadingStore: the persistence interface the analysis and scheduler depend on."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

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


@runtime_checkable
class ReadingStore(Protocol):
    """Query/command interface over patients, readings, medications, reminders and goals.

    Implementations raise ``PersistenceError`` when the backing store is
    unavailable. Reading queries return newest first unless
    ``newest_first=False``.
    """

    async def find_readings(
        self,
        patient_id: str,
        *,
        data_type: DataType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Reading]: ...

    async def create_reading(self, reading: Reading) -> Reading: ...

    async def update_reading_analysis(
        self, reading_id: str, risk_level: RiskLevel, analysis: dict[str, Any]
    ) -> None: ...

    async def find_unsent_alerts(
        self, patient_id: str, since: datetime, limit: int
    ) -> list[Reading]:
        """High/critical readings since *since* that have not had an alert sent."""
        ...

    async def mark_reminder_sent(self, reading_id: str) -> None:
        """Flag a reading's health alert as delivered so it is never sent twice."""
        ...

    async def find_active_medications(
        self, patient_id: str | None = None
    ) -> list[MedicationSchedule]: ...

    async def get_medication(self, medication_id: str) -> MedicationSchedule | None: ...

    async def find_completed_reminders(
        self, patient_id: str, type: ReminderType, since: datetime
    ) -> list[ReminderEvent]: ...

    async def get_patient(self, patient_id: str) -> Patient | None: ...

    async def find_patients_with_email_time(self, time: str | None = None) -> list[Patient]:
        """Patients with a preferred email time, optionally only those at *time* (HH:MM)."""
        ...

    async def find_goals(self, patient_id: str, *, achieved: bool | None = None) -> list[Goal]: ...
