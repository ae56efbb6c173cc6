"""Shared test fixtures for the caretrack test suite."""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from caretrack.models import (
    AnalysisResult,
    DataType,
    MedicationSchedule,
    Patient,
    Reading,
    RiskLevel,
    coerce_value,
)
from caretrack.notify.base import DeliveryResult
from caretrack.store.memory import InMemoryReadingStore

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None

# A Monday; 08:00 UTC
FIXED_NOW = datetime(2024, 1, 15, 8, 0, tzinfo=UTC)


class FakeClock:
    """A settable clock; call it to read the current time."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, *, days: int = 0) -> datetime:
        self.now = FIXED_NOW.replace(hour=hour, minute=minute) + timedelta(days=days)
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    """A NotificationSink that records every call.

    Returns ``default`` unless results were queued with ``enqueue``. A queued
    exception is raised instead of returned.
    """

    def __init__(self, default: DeliveryResult | None = None) -> None:
        self.default = default or DeliveryResult.sent("msg-1")
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._queued: list[DeliveryResult | Exception] = []

    def enqueue(self, *results: DeliveryResult | Exception) -> None:
        self._queued.extend(results)

    def _next(self) -> DeliveryResult:
        outcome = self._queued.pop(0) if self._queued else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [call for k, call in self.calls if k == kind]

    async def send_medication_reminder(
        self, patient: Patient, medication: MedicationSchedule
    ) -> DeliveryResult:
        self.calls.append(("medication", {"patient": patient, "medication": medication}))
        return self._next()

    async def send_motivational_email(
        self, patient: Patient, context: dict[str, Any]
    ) -> DeliveryResult:
        self.calls.append(("motivational", {"patient": patient, "context": context}))
        return self._next()

    async def send_health_alert(
        self, patient: Patient, reading: Reading, analysis: AnalysisResult
    ) -> DeliveryResult:
        self.calls.append(("alert", {"patient": patient, "reading": reading, "analysis": analysis}))
        return self._next()

    async def send_test_email(self, patient: Patient) -> DeliveryResult:
        self.calls.append(("test", {"patient": patient}))
        return self._next()


def make_patient(
    patient_id: str = "p1",
    *,
    email: str | None = "ann@example.com",
    email_time: str | None = "09:00",
    conditions: tuple[str, ...] = (),
    **kwargs: Any,
) -> Patient:
    return Patient(
        id=patient_id,
        email=email,
        first_name=kwargs.pop("first_name", "Ann"),
        last_name=kwargs.pop("last_name", "Lee"),
        chronic_conditions=frozenset(conditions),
        preferred_email_time=email_time,
        **kwargs,
    )


def make_medication(
    medication_id: str = "m1",
    patient_id: str = "p1",
    *,
    times: tuple[str, ...] = ("08:00",),
    name: str = "Metformin",
    **kwargs: Any,
) -> MedicationSchedule:
    return MedicationSchedule(
        medication_id=medication_id,
        patient_id=patient_id,
        name=name,
        dosage=kwargs.pop("dosage", "500mg"),
        dose_times=times,
        **kwargs,
    )


def make_reading(
    data_type: DataType | str,
    value: Any,
    *,
    patient_id: str = "p1",
    at: datetime | None = None,
    risk_level: RiskLevel = RiskLevel.LOW,
    unit: str = "mg/dL",
    **kwargs: Any,
) -> Reading:
    return Reading(
        patient_id=patient_id,
        data_type=DataType(data_type),
        value=coerce_value(data_type, value),
        unit=unit,
        recorded_at=at or FIXED_NOW,
        risk_level=risk_level,
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryReadingStore:
    return InMemoryReadingStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ---------------------------------------------------------------------------
# PostgreSQL (Docker only)
# ---------------------------------------------------------------------------


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Shared Postgres testcontainer; each test provisions its own database."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
def provisioned_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Create a fresh database with the caretrack schema and return its pool.

    Tests should use this as:
        async with provisioned_postgres_pool() as pool:
            ...
    """
    from caretrack.db import Database

    @asynccontextmanager
    async def _provision() -> AsyncIterator[Pool]:
        db = Database(
            db_name=_unique_test_db_name(),
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            max_pool_size=3,
        )
        await db.provision()
        pool = await db.connect()
        try:
            await db.ensure_schema()
            yield pool
        finally:
            await db.close()

    return _provision
