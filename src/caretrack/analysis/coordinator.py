"""AnalysisCoordinator: orchestrates classification, trends, forecasts and advice.

Single-reading analysis runs classify → same-type history → trend →
forecast → recommendations. Every stage after classification degrades rather
than aborts: if history cannot be read or a downstream stage fails, the
result still carries the classifier output plus an explanatory insight.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from caretrack.analysis import reports
from caretrack.analysis.adherence import (
    MotivationAssessment,
    assess_motivation,
    calculate_adherence,
)
from caretrack.analysis.forecast import forecast, forecast_sentences, recent_baseline
from caretrack.analysis.recommendations import prediction_advice, recommend
from caretrack.analysis.risk import classify
from caretrack.analysis.trends import analyze_trend, describe_trend
from caretrack.config import AnalysisConfig
from caretrack.errors import (
    CaretrackError,
    InsufficientDataError,
    NotFoundError,
    PersistenceError,
)
from caretrack.models import (
    AnalysisResult,
    ComprehensiveAnalysis,
    DataType,
    MedicationSchedule,
    Patient,
    Reading,
    ReadingSubmission,
    ReminderType,
    TrendDirection,
    parse_data_type,
    value_to_json,
)
from caretrack.notify.base import DeliveryResult, NotificationSink
from caretrack.store.base import ReadingStore

logger = logging.getLogger(__name__)

PREDICTION_MIN_READINGS = 7
PREDICTION_TREND_WINDOW = 14
MOTIVATION_WINDOW_DAYS = 7
RECOMMENDATION_WINDOW_DAYS = 14

UNAVAILABLE_INSIGHT = "Unable to analyze trends at this time"
HISTORY_UNAVAILABLE_INSIGHT = "Historical data unavailable; trend analysis skipped"
PREDICTION_UNAVAILABLE = "Need more data points for accurate predictions"


@dataclass
class Submission:
    """What happened to a newly submitted reading."""

    reading: Reading
    analysis: AnalysisResult
    alert: DeliveryResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reading": {
                "id": self.reading.id,
                "patient_id": self.reading.patient_id,
                "data_type": self.reading.data_type.value,
                "value": value_to_json(self.reading.value),
                "unit": self.reading.unit,
                "recorded_at": self.reading.recorded_at.isoformat(),
                "risk_level": self.reading.risk_level.value,
                "alert_sent": self.reading.alert_sent,
            },
            "analysis": self.analysis.to_dict(),
            "alert": self.alert.status.value if self.alert else None,
        }


@dataclass
class RiskDrift:
    reading_id: str
    cached: str
    current: str


@dataclass
class DriftReport:
    checked: int = 0
    drifted: list[RiskDrift] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.drifted


class AnalysisCoordinator:
    """Answers analysis requests for one patient at a time.

    The store is the only source of history; nothing is cached between calls.
    """

    def __init__(
        self,
        store: ReadingStore,
        *,
        config: AnalysisConfig | None = None,
        sink: NotificationSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config or AnalysisConfig()
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> ReadingStore:
        return self._store

    async def _require_patient(self, patient_id: str) -> Patient:
        patient = await self._store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        return patient

    # ------------------------------------------------------------------
    # Single reading
    # ------------------------------------------------------------------

    async def analyze_reading(self, patient_id: str, reading: Reading) -> AnalysisResult:
        """Full analysis of *reading* in the context of the patient's history.

        Raises:
            NotFoundError: If the patient does not exist.
            ValidationError: If the reading's value is malformed.
        """
        patient = await self._require_patient(patient_id)
        classification = classify(reading.data_type, reading.value)
        result = AnalysisResult(
            risk_level=classification.risk_level,
            insights=[classification.insight],
        )

        history = await self._same_type_history(patient_id, reading)
        if history is None:
            result.insights.append(HISTORY_UNAVAILABLE_INSIGHT)
            history = [reading]
        values = [r.value for r in history]

        try:
            trend = analyze_trend(values)
            result.trends[reading.data_type.value] = trend
            trend_line, follow_up = describe_trend(reading.data_type, trend)
            result.insights.append(trend_line)
            result.insights.extend(trend.insights)
            result.insights.append(follow_up)
        except Exception:
            logger.exception("Trend analysis failed for reading %s", reading.id)
            result.insights.append(UNAVAILABLE_INSIGHT)

        try:
            predicted = forecast(values)
            result.predictions = forecast_sentences(
                reading.data_type, predicted, recent_baseline(values)
            )
        except InsufficientDataError:
            result.predictions = [PREDICTION_UNAVAILABLE]
        except Exception:
            logger.exception("Forecast failed for reading %s", reading.id)
            result.predictions = ["Unable to generate predictions at this time"]

        adherence, medications = await self._adherence_or_none(patient_id)
        result.recommendations = recommend(
            patient,
            reading,
            result,
            adherence=adherence,
            has_active_medications=bool(medications),
        )
        return result

    async def _same_type_history(self, patient_id: str, reading: Reading) -> list[Reading] | None:
        try:
            history = await self._store.find_readings(
                patient_id,
                data_type=reading.data_type,
                limit=self._config.history_limit,
                newest_first=False,
            )
        except CaretrackError as exc:
            logger.warning("Could not load history for patient %s: %s", patient_id, exc)
            return None
        if all(r.id != reading.id for r in history):
            history = [*history, reading][-self._config.history_limit :]
        return history

    async def _adherence_or_none(
        self, patient_id: str
    ) -> tuple[int | None, list[MedicationSchedule]]:
        try:
            medications = await self._store.find_active_medications(patient_id)
            return await self._adherence(patient_id, medications), medications
        except CaretrackError as exc:
            logger.warning("Could not compute adherence for patient %s: %s", patient_id, exc)
            return None, []

    async def submit_reading(self, payload: dict[str, Any] | ReadingSubmission) -> Submission:
        """Create, analyze and persist a reading; alert immediately when risky.

        The cached risk level and snapshot are written back after analysis.
        A high or critical reading sends a health alert straight away and is
        flagged alert-sent only when the sink actually delivered it.

        Raises:
            ValidationError: If the payload is malformed.
            NotFoundError: If the patient does not exist.
        """
        submission = (
            payload
            if isinstance(payload, ReadingSubmission)
            else ReadingSubmission.parse(payload)
        )
        reading = submission.to_reading()
        patient = await self._require_patient(reading.patient_id)
        reading.risk_level = classify(reading.data_type, reading.value).risk_level

        reading = await self._store.create_reading(reading)
        analysis = await self.analyze_reading(patient.id, reading)
        reading.risk_level = analysis.risk_level
        reading.analysis = analysis.to_dict()
        await self._store.update_reading_analysis(reading.id, reading.risk_level, reading.analysis)
        logger.info(
            "Reading %s recorded: %s risk=%s",
            reading.id,
            reading.data_type.value,
            reading.risk_level.value,
        )

        outcome = Submission(reading=reading, analysis=analysis)
        if analysis.risk_level.is_alerting and self._sink is not None and patient.wants("alerts"):
            outcome.alert = await self._sink.send_health_alert(patient, reading, analysis)
            if outcome.alert.delivered:
                await self._store.mark_reminder_sent(reading.id)
                reading.alert_sent = True
        return outcome

    async def verify_cached_risk(
        self, patient_id: str, *, since: datetime | None = None
    ) -> DriftReport:
        """Recompute the classifier for stored readings and report any drift."""
        report = DriftReport()
        for reading in await self._store.find_readings(patient_id, since=since):
            report.checked += 1
            current = classify(reading.data_type, reading.value).risk_level
            if current is not reading.risk_level:
                report.drifted.append(
                    RiskDrift(reading.id, reading.risk_level.value, current.value)
                )
        if report.drifted:
            logger.warning(
                "%d of %d cached risk levels drifted for patient %s",
                len(report.drifted),
                report.checked,
                patient_id,
            )
        return report

    # ------------------------------------------------------------------
    # Whole-patient views
    # ------------------------------------------------------------------

    async def comprehensive_analysis(self, patient_id: str) -> ComprehensiveAnalysis:
        """Every metric type over the comprehensive window, plus risk and alerts."""
        patient = await self._require_patient(patient_id)
        now = self._clock()
        since = now - timedelta(days=self._config.comprehensive_window_days)
        readings = await self._store.find_readings(patient_id, since=since)
        medications = await self._store.find_active_medications(patient_id)
        goals = await self._store.find_goals(patient_id, achieved=False)
        adherence = await self._adherence(patient_id, medications)

        result = ComprehensiveAnalysis(
            patient_overview={
                "name": patient.full_name,
                "conditions": sorted(patient.chronic_conditions),
                "motivation_level": patient.motivation_level.value,
            }
        )
        result.risk_level, _ = reports.overall_risk(readings)

        for data_type in DataType:
            typed = [r for r in readings if r.data_type is data_type]
            if not typed:
                continue
            result.health_metrics[data_type.value] = reports.metric_stats(typed, data_type)
            ascending = sorted(typed, key=lambda r: r.recorded_at)
            trend = analyze_trend([r.value for r in ascending])
            if trend.direction is not TrendDirection.INSUFFICIENT_DATA:
                result.trends[data_type.value] = trend
                result.insights.append(describe_trend(data_type, trend)[0])
                result.insights.extend(trend.insights)

        result.risk_assessment = reports.risk_assessment(patient, readings)
        result.alerts = reports.check_alerts(readings)
        result.recommendations = recommend(
            patient,
            readings,
            result,
            adherence=adherence,
            has_active_medications=bool(medications),
            goals=goals,
        )
        return result

    async def get_trend(
        self, patient_id: str, data_type: DataType | str, days: int = 30
    ) -> dict[str, Any]:
        """OLS trend for one metric over the last *days* days."""
        data_type = parse_data_type(data_type)
        since = self._clock() - timedelta(days=days)
        readings = await self._store.find_readings(
            patient_id, data_type=data_type, since=since, newest_first=False
        )
        if not readings:
            return {
                "data_type": data_type.value,
                "message": "No data available for trend analysis",
                "trend": None,
                "insights": [],
            }
        trend = analyze_trend([r.value for r in readings])
        return {
            "data_type": data_type.value,
            "data_points": len(readings),
            "time_range": f"{days} days",
            **trend.to_dict(),
        }

    async def get_predictions(
        self, patient_id: str, data_type: DataType | str, forecast_days: int = 30
    ) -> dict[str, Any]:
        """Forecast one metric from up to the prediction history window.

        Needs at least seven readings; confidence and direction come from the
        OLS trend over the latest fourteen.
        """
        data_type = parse_data_type(data_type)
        since = self._clock() - timedelta(days=self._config.prediction_history_days)
        readings = await self._store.find_readings(
            patient_id, data_type=data_type, since=since, newest_first=False
        )
        if len(readings) < PREDICTION_MIN_READINGS:
            return {
                "data_type": data_type.value,
                "prediction": TrendDirection.INSUFFICIENT_DATA.value,
                "confidence": "low",
                "message": "Need more historical data for accurate predictions",
            }

        values = [r.value for r in readings]
        predicted = forecast(values)
        trend = analyze_trend(values[-PREDICTION_TREND_WINDOW:])
        return {
            "data_type": data_type.value,
            "forecast_days": forecast_days,
            "current_value": value_to_json(readings[-1].value),
            "predicted_value": predicted.predicted_value,
            "confidence": trend.confidence.value,
            "trend": trend.direction.value,
            "recommendation": prediction_advice(data_type, trend.direction),
        }

    async def get_adherence(self, patient_id: str) -> int:
        medications = await self._store.find_active_medications(patient_id)
        return await self._adherence(patient_id, medications)

    async def _adherence(self, patient_id: str, medications: list[MedicationSchedule]) -> int:
        if not medications:
            return 100
        now = self._clock()
        window = self._config.adherence_window_days
        completed = await self._store.find_completed_reminders(
            patient_id, ReminderType.MEDICATION, now - timedelta(days=window)
        )
        return calculate_adherence(patient_id, medications, completed, window, now=now)

    async def _motivation(
        self, patient_id: str, adherence: int
    ) -> tuple[MotivationAssessment, int]:
        since = self._clock() - timedelta(days=MOTIVATION_WINDOW_DAYS)
        recent = await self._store.find_readings(patient_id, since=since)
        return assess_motivation(len(recent), adherence), len(recent)

    async def risk_assessment(self, patient_id: str, days: int = 7) -> dict[str, Any]:
        patient = await self._require_patient(patient_id)
        since = self._clock() - timedelta(days=days)
        readings = await self._store.find_readings(patient_id, since=since)
        return reports.risk_assessment(patient, readings)

    async def recommendations(self, patient_id: str) -> list[dict[str, str]]:
        """Personalised recommendations over the last two weeks of readings."""
        patient = await self._require_patient(patient_id)
        since = self._clock() - timedelta(days=RECOMMENDATION_WINDOW_DAYS)
        readings = await self._store.find_readings(patient_id, since=since)
        medications = await self._store.find_active_medications(patient_id)
        adherence = await self._adherence(patient_id, medications)
        recs = recommend(
            patient, readings, adherence=adherence, has_active_medications=bool(medications)
        )
        return [r.to_dict() for r in recs]

    async def medication_insights(self, patient_id: str) -> dict[str, Any]:
        medications = await self._store.find_active_medications(patient_id)
        adherence = await self._adherence(patient_id, medications)
        return reports.medication_insights(adherence, medications)

    async def motivational_insights(self, patient_id: str) -> dict[str, Any]:
        await self._require_patient(patient_id)
        adherence = await self.get_adherence(patient_id)
        motivation, recent_count = await self._motivation(patient_id, adherence)
        return reports.motivational_insights(motivation, recent_count)

    async def progress_report(self, patient_id: str, period: str = "week") -> dict[str, Any]:
        await self._require_patient(patient_id)
        now = self._clock()
        days = reports.REPORT_PERIODS.get(period, reports.REPORT_PERIODS["week"])
        readings = await self._store.find_readings(patient_id, since=now - timedelta(days=days))
        medications = await self._store.find_active_medications(patient_id)
        goals = await self._store.find_goals(patient_id)
        adherence = await self._adherence(patient_id, medications)
        motivation, _ = await self._motivation(patient_id, adherence)
        return reports.progress_report(
            period, readings, medications, goals, adherence, motivation, now=now
        )

    async def daily_update_context(self, patient: Patient) -> dict[str, Any]:
        """Adherence and goal progress for the daily motivational email.

        Either half falls back to a neutral value when it cannot be computed.
        A ``PersistenceError`` propagates so the caller can abandon its tick.
        """
        context: dict[str, Any] = {}
        try:
            context["adherence"] = await self.get_adherence(patient.id)
        except PersistenceError:
            raise
        except CaretrackError as exc:
            logger.warning("Could not get adherence for %s: %s", patient.id, exc)
        try:
            goals = await self._store.find_goals(patient.id, achieved=False)
            context.update(reports.goal_progress_context(goals))
        except PersistenceError:
            raise
        except CaretrackError as exc:
            logger.warning("Could not get goals for %s: %s", patient.id, exc)
        return context
