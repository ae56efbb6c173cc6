"""PostgreSQL ReadingStore on an asyncpg pool.

Every query failure (server error, dropped connection, refused connect)
surfaces as ``PersistenceError`` so scheduler ticks can abandon their work
cleanly and retry on the next tick.
"""

from __future__ import annotations

import functools
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, ParamSpec, TypeVar

import asyncpg

from caretrack.errors import NotFoundError, PersistenceError, ValidationError
from caretrack.models import (
    DataType,
    Goal,
    MedicationSchedule,
    MotivationLevel,
    Patient,
    Reading,
    ReminderEvent,
    ReminderType,
    RiskLevel,
    coerce_value,
    value_to_json,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _persistence_errors(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Re-raise driver and connection failures as ``PersistenceError``."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await fn(*args, **kwargs)
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"{fn.__name__} failed: {exc}") from exc

    return wrapper


def _uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid id: {value!r}") from None


def _json(value: Any) -> Any:
    """JSONB comes back as text unless a codec is registered on the pool."""
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_reading(row: asyncpg.Record) -> Reading:
    data_type = DataType(row["data_type"])
    return Reading(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        data_type=data_type,
        value=coerce_value(data_type, _json(row["value"])),
        unit=row["unit"],
        notes=row["notes"],
        recorded_at=row["recorded_at"],
        risk_level=RiskLevel(row["risk_level"]),
        analysis=_json(row["analysis"]),
        alert_sent=row["alert_sent"],
    )


def _row_to_medication(row: asyncpg.Record) -> MedicationSchedule:
    schedule = _json(row["schedule"]) or {}
    return MedicationSchedule(
        medication_id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        name=row["name"],
        dosage=row["dosage"],
        dose_times=tuple(schedule.get("times", [])),
        is_active=row["is_active"],
        frequency=row["frequency"],
        purpose=row["purpose"],
    )


def _row_to_patient(row: asyncpg.Record) -> Patient:
    email_time = row["preferred_email_time"]
    return Patient(
        id=str(row["id"]),
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        chronic_conditions=frozenset(_json(row["chronic_conditions"]) or []),
        preferred_email_time=email_time.strftime("%H:%M") if email_time else None,
        email_notifications=row["email_notifications"],
        email_preferences=dict(_json(row["email_preferences"]) or {}),
        motivation_level=MotivationLevel(row["motivation_level"]),
    )


def _row_to_reminder(row: asyncpg.Record) -> ReminderEvent:
    return ReminderEvent(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        medication_id=str(row["medication_id"]) if row["medication_id"] else None,
        type=ReminderType(row["type"]),
        title=row["title"],
        scheduled_for=row["scheduled_for"],
        is_completed=row["is_completed"],
        completed_at=row["completed_at"],
    )


def _row_to_goal(row: asyncpg.Record) -> Goal:
    return Goal(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        title=row["title"],
        category=row["category"],
        progress=float(row["progress"]),
        is_achieved=row["is_achieved"],
    )


class PostgresReadingStore:
    """ReadingStore backed by the tables in ``caretrack.store.schema``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @_persistence_errors
    async def find_readings(
        self,
        patient_id: str,
        *,
        data_type: DataType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Reading]:
        conditions = ["patient_id = $1"]
        params: list[Any] = [_uuid(patient_id)]
        idx = 2

        if data_type is not None:
            conditions.append(f"data_type = ${idx}")
            params.append(data_type.value)
            idx += 1

        if since is not None:
            conditions.append(f"recorded_at >= ${idx}")
            params.append(since)
            idx += 1

        query = (
            f"SELECT * FROM health_readings WHERE {' AND '.join(conditions)} "
            "ORDER BY recorded_at DESC"
        )
        if limit is not None:
            query += f" LIMIT ${idx}"
            params.append(limit)

        rows = await self._pool.fetch(query, *params)
        readings = [_row_to_reading(r) for r in rows]
        if not newest_first:
            readings.reverse()
        return readings

    @_persistence_errors
    async def create_reading(self, reading: Reading) -> Reading:
        row = await self._pool.fetchrow(
            """
            INSERT INTO health_readings
                (id, patient_id, data_type, value, unit, notes, recorded_at, risk_level,
                 analysis, alert_sent)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9::jsonb, $10)
            RETURNING *
            """,
            _uuid(reading.id),
            _uuid(reading.patient_id),
            reading.data_type.value,
            json.dumps(value_to_json(reading.value)),
            reading.unit,
            reading.notes,
            reading.recorded_at,
            reading.risk_level.value,
            json.dumps(reading.analysis) if reading.analysis is not None else None,
            reading.alert_sent,
        )
        return _row_to_reading(row)

    @_persistence_errors
    async def update_reading_analysis(
        self, reading_id: str, risk_level: RiskLevel, analysis: dict[str, Any]
    ) -> None:
        result = await self._pool.execute(
            "UPDATE health_readings SET risk_level = $2, analysis = $3::jsonb WHERE id = $1",
            _uuid(reading_id),
            risk_level.value,
            json.dumps(analysis),
        )
        if result == "UPDATE 0":
            raise NotFoundError(f"Reading {reading_id} not found")

    @_persistence_errors
    async def find_unsent_alerts(
        self, patient_id: str, since: datetime, limit: int
    ) -> list[Reading]:
        rows = await self._pool.fetch(
            """
            SELECT * FROM health_readings
            WHERE patient_id = $1
              AND risk_level IN ('high', 'critical')
              AND recorded_at >= $2
              AND alert_sent IS NOT TRUE
            ORDER BY recorded_at DESC
            LIMIT $3
            """,
            _uuid(patient_id),
            since,
            limit,
        )
        return [_row_to_reading(r) for r in rows]

    @_persistence_errors
    async def mark_reminder_sent(self, reading_id: str) -> None:
        result = await self._pool.execute(
            "UPDATE health_readings SET alert_sent = true WHERE id = $1",
            _uuid(reading_id),
        )
        if result == "UPDATE 0":
            raise NotFoundError(f"Reading {reading_id} not found")

    @_persistence_errors
    async def find_active_medications(
        self, patient_id: str | None = None
    ) -> list[MedicationSchedule]:
        if patient_id is None:
            rows = await self._pool.fetch(
                "SELECT * FROM medications WHERE is_active = true ORDER BY patient_id, name"
            )
        else:
            rows = await self._pool.fetch(
                "SELECT * FROM medications WHERE is_active = true AND patient_id = $1 "
                "ORDER BY name",
                _uuid(patient_id),
            )
        medications: list[MedicationSchedule] = []
        for row in rows:
            try:
                medications.append(_row_to_medication(row))
            except ValidationError as exc:
                logger.warning("Skipping medication %s with invalid schedule: %s", row["id"], exc)
        return medications

    @_persistence_errors
    async def get_medication(self, medication_id: str) -> MedicationSchedule | None:
        row = await self._pool.fetchrow(
            "SELECT * FROM medications WHERE id = $1", _uuid(medication_id)
        )
        return _row_to_medication(row) if row is not None else None

    @_persistence_errors
    async def find_completed_reminders(
        self, patient_id: str, type: ReminderType, since: datetime
    ) -> list[ReminderEvent]:
        rows = await self._pool.fetch(
            """
            SELECT * FROM reminders
            WHERE patient_id = $1 AND type = $2 AND is_completed = true AND scheduled_for >= $3
            ORDER BY scheduled_for DESC
            """,
            _uuid(patient_id),
            type.value,
            since,
        )
        return [_row_to_reminder(r) for r in rows]

    @_persistence_errors
    async def get_patient(self, patient_id: str) -> Patient | None:
        row = await self._pool.fetchrow("SELECT * FROM patients WHERE id = $1", _uuid(patient_id))
        return _row_to_patient(row) if row is not None else None

    @_persistence_errors
    async def find_patients_with_email_time(self, time: str | None = None) -> list[Patient]:
        if time is None:
            rows = await self._pool.fetch(
                "SELECT * FROM patients WHERE preferred_email_time IS NOT NULL "
                "ORDER BY preferred_email_time"
            )
        else:
            rows = await self._pool.fetch(
                "SELECT * FROM patients WHERE to_char(preferred_email_time, 'HH24:MI') = $1",
                time,
            )
        return [_row_to_patient(r) for r in rows]

    @_persistence_errors
    async def find_goals(self, patient_id: str, *, achieved: bool | None = None) -> list[Goal]:
        if achieved is None:
            rows = await self._pool.fetch(
                "SELECT * FROM goals WHERE patient_id = $1 ORDER BY title", _uuid(patient_id)
            )
        else:
            rows = await self._pool.fetch(
                "SELECT * FROM goals WHERE patient_id = $1 AND is_achieved = $2 ORDER BY title",
                _uuid(patient_id),
                achieved,
            )
        return [_row_to_goal(r) for r in rows]
