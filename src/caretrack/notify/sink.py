"""EmailSink: the NotificationSink that composes email and hands it to a transport."""

from __future__ import annotations

import logging
import random
from typing import Any

from caretrack.config import NotificationBackend, NotificationConfig
from caretrack.errors import NotificationDeliveryError
from caretrack.models import AnalysisResult, MedicationSchedule, Patient, Reading
from caretrack.notify import messages
from caretrack.notify.base import DeliveryResult, EmailMessage, Transport
from caretrack.notify.transports import BrevoTransport, LoggingTransport, SmtpTransport

logger = logging.getLogger(__name__)


class EmailSink:
    """Turns notification requests into email and never raises.

    Transport errors, and anything unexpected while composing, come back as
    an ``ERROR`` ``DeliveryResult``.
    """

    def __init__(self, transport: Transport, *, rng: random.Random | None = None) -> None:
        self._transport = transport
        self._rng = rng

    async def _send(self, kind: str, patient: Patient, build) -> DeliveryResult:
        if not patient.email:
            return DeliveryResult.failed(f"Patient {patient.id} has no email address")
        try:
            message: EmailMessage = build()
            return await self._transport.deliver(message)
        except NotificationDeliveryError as exc:
            logger.error("Failed to send %s to %s: %s", kind, patient.email, exc)
            return DeliveryResult.failed(str(exc))
        except Exception as exc:
            logger.exception("Unexpected error sending %s to %s", kind, patient.email)
            return DeliveryResult.failed(f"{type(exc).__name__}: {exc}")

    async def send_medication_reminder(
        self, patient: Patient, medication: MedicationSchedule
    ) -> DeliveryResult:
        return await self._send(
            "medication reminder",
            patient,
            lambda: messages.medication_reminder(patient, medication, self._rng),
        )

    async def send_motivational_email(
        self, patient: Patient, context: dict[str, Any]
    ) -> DeliveryResult:
        return await self._send(
            "motivational email",
            patient,
            lambda: messages.motivational_email(patient, context, self._rng),
        )

    async def send_health_alert(
        self, patient: Patient, reading: Reading, analysis: AnalysisResult
    ) -> DeliveryResult:
        return await self._send(
            "health alert",
            patient,
            lambda: messages.health_alert(patient, reading, analysis),
        )

    async def send_test_email(self, patient: Patient) -> DeliveryResult:
        return await self._send(
            "test email", patient, lambda: messages.confirmation_email(patient)
        )

    async def close(self) -> None:
        await self._transport.close()


def build_sink(config: NotificationConfig) -> EmailSink:
    """Construct the sink for the configured backend."""
    if config.backend is NotificationBackend.SMTP:
        transport: Transport = SmtpTransport(
            config.smtp_host,
            config.smtp_port,
            sender_email=config.sender_email,
            sender_name=config.sender_name,
            use_tls=config.smtp_use_tls,
            username_env=config.smtp_username_env,
            password_env=config.smtp_password_env,
        )
    elif config.backend is NotificationBackend.BREVO:
        transport = BrevoTransport.from_env(
            config.brevo_api_key_env,
            sender_email=config.sender_email,
            sender_name=config.sender_name,
            api_url=config.brevo_api_url,
        )
    else:
        transport = LoggingTransport()
    logger.info("Notification backend: %s", config.backend.value)
    return EmailSink(transport)
