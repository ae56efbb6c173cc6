"""Notification scheduler: medication reminders, daily updates, health alerts.

Three periodic activities run as independent asyncio tasks while the
scheduler is running:

- medication tick: sends a reminder for every active medication with a dose
  time in the minutes since the previous tick, inside medication hours;
- daily-update tick: sends the motivational email to every patient whose
  preferred email time has come up, then any unsent high/critical alerts
  from the lookback window;
- reload tick: rebuilds the patient/medication schedule snapshot from the
  store.

Firing is time-of-day based. Nothing persists a "next fire time"; each tick
re-evaluates the schedule against the clock, and an occurrence whose minute
falls entirely inside downtime is skipped, not retried. A tick covers at most
one period's worth of minutes, so restarting after downtime never floods.

Ticks read the schedule snapshot, which the reload tick replaces wholesale.
A tick that started before a reload finishes with the snapshot it began
with.

Only one scheduler may run against a given store. Two instances each send
every reminder.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from types import MappingProxyType
from typing import Any

from caretrack.analysis.coordinator import AnalysisCoordinator
from caretrack.analysis.risk import classify
from caretrack.config import SchedulerConfig
from caretrack.core.logging import patient_context
from caretrack.core.metrics import SchedulerMetrics
from caretrack.core.telemetry import tick_span
from caretrack.errors import NotFoundError, PersistenceError
from caretrack.models import (
    AnalysisResult,
    MedicationSchedule,
    Patient,
    Reading,
    minute_key,
)
from caretrack.notify.base import DeliveryResult, NotificationSink
from caretrack.store.base import ReadingStore

logger = logging.getLogger(__name__)

KIND_MEDICATION = "medication_reminder"
KIND_MOTIVATIONAL = "motivational_email"
KIND_ALERT = "health_alert"
KIND_TEST = "test_email"


class SchedulerState(enum.StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class ScheduleSnapshot:
    """An immutable view of who gets what, and when.

    Replaced as a whole on every reload; never mutated in place.
    """

    patients: Mapping[str, Patient] = field(default_factory=lambda: MappingProxyType({}))
    medications: tuple[MedicationSchedule, ...] = ()
    loaded_at: datetime | None = None

    @classmethod
    def build(
        cls,
        patients: list[Patient],
        medications: list[MedicationSchedule],
        loaded_at: datetime,
    ) -> ScheduleSnapshot:
        return cls(
            patients=MappingProxyType({p.id: p for p in patients}),
            medications=tuple(m for m in medications if m.is_active),
            loaded_at=loaded_at,
        )

    def email_schedule(self) -> list[Patient]:
        """Patients with a preferred email time, earliest first."""
        timed = [p for p in self.patients.values() if p.preferred_email_time]
        return sorted(timed, key=lambda p: (p.preferred_email_time, p.id))


@dataclass
class TickStats:
    runs: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    last_run: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
        }


class NotificationScheduler:
    """Owns the three periodic tasks and the schedule snapshot they read.

    Collaborators are injected, so tests can drive ticks directly with an
    in-memory store, a recording sink and a fixed clock.
    """

    def __init__(
        self,
        store: ReadingStore,
        sink: NotificationSink,
        *,
        coordinator: AnalysisCoordinator | None = None,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: SchedulerMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._sink = sink
        self._config = config or SchedulerConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._coordinator = coordinator or AnalysisCoordinator(
            store, sink=sink, clock=self._clock
        )
        self._metrics = metrics or SchedulerMetrics()
        self._sleep = sleep
        self._tz = self._config.tzinfo

        self._state = SchedulerState.STOPPED
        self._closing = False
        self._snapshot = ScheduleSnapshot()
        self._tasks: list[asyncio.Task] = []
        self._inflight: set[asyncio.Future] = set()

        self._fired_doses: set[tuple[str, date, str]] = set()
        self._emailed_today: set[tuple[str, date]] = set()
        self._last_medication_minute: datetime | None = None
        self._last_daily_minute: datetime | None = None

        self._medication_stats = TickStats()
        self._daily_stats = TickStats()
        self._alert_stats = TickStats()
        self._reload_stats = TickStats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def snapshot(self) -> ScheduleSnapshot:
        return self._snapshot

    async def start(self) -> None:
        """Load schedules and start the periodic tasks. Starting twice is a no-op."""
        if self._state is SchedulerState.RUNNING:
            logger.debug("Scheduler already running")
            return

        self._state = SchedulerState.RUNNING
        try:
            await self.reload_tick()
        except BaseException:
            self._state = SchedulerState.STOPPED
            raise

        config = self._config
        self._tasks = [
            asyncio.create_task(
                self._periodic("medication", config.medication_tick_seconds, self.medication_tick),
                name="caretrack-medication-tick",
            ),
            asyncio.create_task(
                self._periodic(
                    "daily-update", config.daily_update_tick_seconds, self.daily_update_tick
                ),
                name="caretrack-daily-update-tick",
            ),
            asyncio.create_task(
                self._periodic(
                    "reload",
                    config.reload_tick_seconds,
                    self.reload_tick,
                    run_immediately=False,
                ),
                name="caretrack-reload-tick",
            ),
        ]
        logger.info(
            "Scheduler running: medication every %gs (%02d:00-%02d:00), "
            "daily updates every %gs (%02d:00-%02d:00), reload every %gs",
            config.medication_tick_seconds,
            *config.medication_hours,
            config.daily_update_tick_seconds,
            *config.daily_update_hours,
            config.reload_tick_seconds,
        )

    async def stop(self) -> None:
        """Cancel the periodic tasks and let in-flight sends finish."""
        if self._state is SchedulerState.STOPPED:
            return

        self._closing = True
        try:
            for task in self._tasks:
                task.cancel()
            for task in self._tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            self._tasks = []
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
        finally:
            self._closing = False
            self._state = SchedulerState.STOPPED
            self._fired_doses.clear()
            self._emailed_today.clear()
            self._last_medication_minute = None
            self._last_daily_minute = None
        logger.info("Scheduler stopped")

    async def _periodic(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = True,
    ) -> None:
        try:
            if not run_immediately:
                await self._sleep(interval)
            while True:
                try:
                    await tick()
                except Exception:
                    logger.exception("Scheduler %s tick failed", name)
                await self._sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Scheduler %s loop cancelled", name)
            raise

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    @staticmethod
    def _in_hours(now: datetime, hours: tuple[int, int]) -> bool:
        start, end = hours
        return start <= now.hour < end

    def _minutes_since(
        self,
        last: datetime | None,
        now: datetime,
        period_seconds: float,
        hours: tuple[int, int],
    ) -> list[datetime]:
        """Minute marks in ``(last, now]`` inside *hours*, capped at one tick period back.

        The first tick after a (re)start only looks at the current minute.
        """
        current = now.replace(second=0, microsecond=0)
        if last is None:
            return [current]
        span = min(
            max(1, math.ceil(period_seconds / 60)),
            int((current - last).total_seconds() // 60),
        )
        marks = (current - timedelta(minutes=i) for i in range(span - 1, -1, -1))
        return [m for m in marks if self._in_hours(m, hours)]

    async def _deliver(
        self, kind: str, send: Awaitable[DeliveryResult]
    ) -> DeliveryResult:
        """Run one sink call to completion even if the tick is cancelled."""
        future = asyncio.ensure_future(send)
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        result = await asyncio.shield(future)
        self._metrics.record_delivery(kind, result.status.value)
        return result

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    # ------------------------------------------------------------------
    # Reload tick
    # ------------------------------------------------------------------

    async def reload_tick(self) -> ScheduleSnapshot:
        """Rebuild the schedule snapshot from the store and swap it in.

        On a store failure the previous snapshot stays in place.
        """
        stats = self._reload_stats
        with tick_span("caretrack.schedule_reload") as span:
            stats.runs += 1
            stats.last_run = self._clock()
            try:
                snapshot = await self._load_snapshot()
            except PersistenceError as exc:
                stats.failed += 1
                stats.last_error = str(exc)
                span.set_attribute("caretrack.error", str(exc))
                logger.error("Schedule reload failed, keeping previous snapshot: %s", exc)
                return self._snapshot

            self._snapshot = snapshot
            stats.last_error = None
            span.set_attribute("caretrack.patients", len(snapshot.patients))
            span.set_attribute("caretrack.medications", len(snapshot.medications))
            logger.info(
                "Loaded schedules: %d patients, %d active medications",
                len(snapshot.patients),
                len(snapshot.medications),
            )
            return snapshot

    async def reload_schedules(self) -> ScheduleSnapshot:
        """Pick up schedule edits now instead of waiting for the reload tick."""
        return await self.reload_tick()

    async def _load_snapshot(self) -> ScheduleSnapshot:
        patients = {p.id: p for p in await self._store.find_patients_with_email_time()}
        medications = await self._store.find_active_medications()
        for patient_id in {m.patient_id for m in medications} - patients.keys():
            patient = await self._store.get_patient(patient_id)
            if patient is not None:
                patients[patient.id] = patient
        return ScheduleSnapshot.build(list(patients.values()), medications, self._clock())

    # ------------------------------------------------------------------
    # Medication tick
    # ------------------------------------------------------------------

    async def medication_tick(self) -> int:
        """Send reminders for doses due since the last tick. Returns the number sent."""
        now = self._now()
        stats = self._medication_stats
        with tick_span("caretrack.medication_tick", time=minute_key(now)) as span:
            stats.runs += 1
            stats.last_run = now
            if not self._in_hours(now, self._config.medication_hours):
                span.set_attribute("caretrack.outside_hours", True)
                logger.debug("Outside medication reminder hours (%s)", minute_key(now))
                return 0

            minutes = self._minutes_since(
                self._last_medication_minute,
                now,
                self._config.medication_tick_seconds,
                self._config.medication_hours,
            )
            self._last_medication_minute = now.replace(second=0, microsecond=0)
            self._fired_doses = {k for k in self._fired_doses if k[1] >= now.date()}

            snapshot = self._snapshot
            due: list[tuple[MedicationSchedule, tuple[str, date, str]]] = []
            for minute in minutes:
                hhmm = minute_key(minute)
                for medication in snapshot.medications:
                    key = (medication.medication_id, minute.date(), hhmm)
                    if medication.is_due_at(hhmm) and key not in self._fired_doses:
                        due.append((medication, key))
            span.set_attribute("caretrack.due", len(due))

            sent = 0
            for index, (medication, key) in enumerate(due):
                if self._closing:
                    break
                patient = snapshot.patients.get(medication.patient_id)
                self._fired_doses.add(key)
                if patient is None or not patient.wants("medication"):
                    stats.skipped += 1
                    continue
                with patient_context(patient.id):
                    try:
                        result = await self._deliver(
                            KIND_MEDICATION,
                            self._sink.send_medication_reminder(patient, medication),
                        )
                    except Exception:
                        stats.failed += 1
                        logger.exception("Error sending reminder for %s", medication.name)
                        continue
                    if result.ok:
                        sent += 1
                        stats.sent += 1
                        logger.info(
                            "Reminder %s to %s (%s at %s)",
                            result.status.value,
                            patient.email,
                            medication.name,
                            key[2],
                        )
                    else:
                        stats.failed += 1
                        logger.warning(
                            "Medication reminder failed for %s: %s", patient.email, result.error
                        )
                if index < len(due) - 1:
                    await self._pause(self._config.reminder_send_delay_seconds)

            span.set_attribute("caretrack.sent", sent)
            return sent

    # ------------------------------------------------------------------
    # Daily-update tick
    # ------------------------------------------------------------------

    async def daily_update_tick(self) -> int:
        """Send daily updates (and pending alerts) to patients due now.

        Returns the number of patients processed. A store failure abandons
        the rest of the tick; the next tick starts fresh.
        """
        now = self._now()
        stats = self._daily_stats
        with tick_span("caretrack.daily_update_tick", time=minute_key(now)) as span:
            stats.runs += 1
            stats.last_run = now
            if not self._in_hours(now, self._config.daily_update_hours):
                span.set_attribute("caretrack.outside_hours", True)
                return 0

            minutes = {
                minute_key(m)
                for m in self._minutes_since(
                    self._last_daily_minute,
                    now,
                    self._config.daily_update_tick_seconds,
                    self._config.daily_update_hours,
                )
            }
            self._last_daily_minute = now.replace(second=0, microsecond=0)
            self._emailed_today = {k for k in self._emailed_today if k[1] >= now.date()}

            due = [
                p
                for p in self._snapshot.email_schedule()
                if p.preferred_email_time in minutes
                and (p.id, now.date()) not in self._emailed_today
            ]
            span.set_attribute("caretrack.due", len(due))

            processed = 0
            try:
                for index, patient in enumerate(due):
                    if self._closing:
                        break
                    self._emailed_today.add((patient.id, now.date()))
                    with patient_context(patient.id):
                        try:
                            await self.send_daily_update(patient)
                            processed += 1
                        except PersistenceError:
                            raise
                        except Exception:
                            stats.failed += 1
                            logger.exception("Failed daily update for %s", patient.email)
                    if index < len(due) - 1:
                        await self._pause(self._config.daily_update_send_delay_seconds)
            except PersistenceError as exc:
                stats.last_error = str(exc)
                span.set_attribute("caretrack.error", str(exc))
                logger.error("Store unavailable, abandoning daily-update tick: %s", exc)

            span.set_attribute("caretrack.processed", processed)
            return processed

    async def send_daily_update(self, patient: Patient) -> DeliveryResult | None:
        """Motivational email with adherence/goal context, then pending alerts."""
        stats = self._daily_stats
        result: DeliveryResult | None = None
        if patient.wants("motivational"):
            context = await self._coordinator.daily_update_context(patient)
            result = await self._deliver(
                KIND_MOTIVATIONAL, self._sink.send_motivational_email(patient, context)
            )
            if result.ok:
                stats.sent += 1
                logger.info("Daily update %s to %s", result.status.value, patient.email)
            else:
                stats.failed += 1
                logger.warning("Daily update failed for %s: %s", patient.email, result.error)
        else:
            stats.skipped += 1

        if patient.wants("alerts"):
            await self.send_pending_alerts(patient)
        return result

    async def send_pending_alerts(self, patient: Patient) -> int:
        """Send each unsent high/critical reading from the lookback window once.

        A reading is flagged alert-sent only after the sink reports real
        delivery, so simulated or failed alerts are tried again next time.
        """
        stats = self._alert_stats
        since = self._clock() - timedelta(hours=self._config.alert_lookback_hours)
        readings = await self._store.find_unsent_alerts(
            patient.id, since, self._config.alert_batch_limit
        )
        delivered = 0
        for index, reading in enumerate(readings):
            if self._closing:
                break
            try:
                analysis = await self._alert_analysis(patient, reading)
                result = await self._deliver(
                    KIND_ALERT, self._sink.send_health_alert(patient, reading, analysis)
                )
                if result.delivered:
                    await self._store.mark_reminder_sent(reading.id)
                    delivered += 1
                    stats.sent += 1
                    logger.info("Health alert sent to %s (%s)", patient.email, reading.data_type)
                elif result.ok:
                    stats.skipped += 1
                    logger.info("[SIMULATED] Health alert for %s", patient.email)
                else:
                    stats.failed += 1
                    logger.warning("Health alert failed for %s: %s", patient.email, result.error)
            except PersistenceError:
                raise
            except Exception:
                stats.failed += 1
                logger.exception("Error processing alert for %s", patient.email)
            if index < len(readings) - 1:
                await self._pause(self._config.alert_send_delay_seconds)
        return delivered

    async def _alert_analysis(self, patient: Patient, reading: Reading) -> AnalysisResult:
        try:
            return await self._coordinator.analyze_reading(patient.id, reading)
        except Exception as exc:
            logger.warning("Analysis failed for alert on reading %s: %s", reading.id, exc)
            classification = classify(reading.data_type, reading.value)
            return AnalysisResult(
                risk_level=classification.risk_level, insights=[classification.insight]
            )

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def send_immediate_medication_reminder(
        self, patient_id: str, medication_id: str
    ) -> DeliveryResult:
        """Send one medication reminder right now, outside the schedule.

        Raises:
            NotFoundError: If the patient or medication does not exist.
        """
        patient = await self._store.get_patient(patient_id)
        medication = await self._store.get_medication(medication_id)
        if patient is None or medication is None or medication.patient_id != patient_id:
            raise NotFoundError("Patient or medication not found")
        with patient_context(patient.id):
            return await self._deliver(
                KIND_MEDICATION, self._sink.send_medication_reminder(patient, medication)
            )

    async def send_test_email(self, patient_id: str) -> DeliveryResult:
        """Send a delivery check email to one patient, ignoring their preferences.

        Raises:
            NotFoundError: If the patient does not exist.
        """
        patient = await self._store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        logger.info("Sending test email to %s", patient.email)
        with patient_context(patient.id):
            return await self._deliver(KIND_TEST, self._sink.send_test_email(patient))

    async def manual_check(self) -> dict[str, int]:
        """Run the daily-update and medication ticks now."""
        logger.info("Manual scheduler check")
        patients = await self.daily_update_tick()
        reminders = await self.medication_tick()
        return {"daily_updates": patients, "medication_reminders": reminders}

    def status(self) -> dict[str, Any]:
        snapshot = self._snapshot
        return {
            "state": self._state.value,
            "running": self._state is SchedulerState.RUNNING,
            "patients_scheduled": len(snapshot.email_schedule()),
            "medications_scheduled": len(snapshot.medications),
            "schedules_loaded_at": snapshot.loaded_at.isoformat() if snapshot.loaded_at else None,
            "timezone": self._config.timezone,
            "medication_hours": list(self._config.medication_hours),
            "daily_update_hours": list(self._config.daily_update_hours),
            "ticks": {
                "medication": self._medication_stats.to_dict(),
                "daily_update": self._daily_stats.to_dict(),
                "alerts": self._alert_stats.to_dict(),
                "reload": self._reload_stats.to_dict(),
            },
        }

    def upcoming_schedule(self) -> list[dict[str, Any]]:
        """Daily-update recipients in email-time order."""
        return [
            {
                "patient_id": p.id,
                "name": p.full_name,
                "email": p.email,
                "email_time": p.preferred_email_time,
                "notifications_enabled": p.email_notifications,
            }
            for p in self._snapshot.email_schedule()
        ]
