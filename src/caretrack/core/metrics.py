"""OpenTelemetry counters for notification delivery.

Instruments are created lazily from the global MeterProvider. Call
``init_metrics(service_name)`` once at startup alongside ``init_telemetry``;
without OTEL_EXPORTER_OTLP_ENDPOINT every recording is a silent no-op.

Instruments
-----------
  caretrack.notifications.sent_total    Counter (labels: kind, status)
      Every sink call, labelled with its delivery status.

  caretrack.notifications.failed_total  Counter (label: kind)
      Sink calls that came back with an error.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "caretrack"


def init_metrics(service_name: str) -> metrics.Meter:
    """Install a periodic OTLP MeterProvider when an endpoint is configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    provider = MeterProvider(
        resource=Resource.create({"service.name": service_name}), metric_readers=[reader]
    )

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(_METER_NAME)


def _notifications_sent_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="caretrack.notifications.sent_total",
        description="Notification sink calls by kind and delivery status",
        unit="notifications",
    )


def _notifications_failed_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="caretrack.notifications.failed_total",
        description="Notification sink calls that failed",
        unit="notifications",
    )


class SchedulerMetrics:
    """Lazily created delivery counters.

    Safe to construct before ``init_metrics``; recordings are no-ops until a
    real provider is installed.
    """

    def __init__(self) -> None:
        self.__sent: metrics.Counter | None = None
        self.__failed: metrics.Counter | None = None

    @property
    def _sent(self) -> metrics.Counter:
        if self.__sent is None:
            self.__sent = _notifications_sent_total()
        return self.__sent

    @property
    def _failed(self) -> metrics.Counter:
        if self.__failed is None:
            self.__failed = _notifications_failed_total()
        return self.__failed

    def record_delivery(self, kind: str, status: str) -> None:
        """Count one sink call of *kind* that ended with *status*."""
        self._sent.add(1, {"kind": kind, "status": status})
        if status == "error":
            self._failed.add(1, {"kind": kind})
