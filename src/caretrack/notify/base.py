"""Notification sink interface and delivery result types."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from caretrack.models import AnalysisResult, MedicationSchedule, Patient, Reading


class DeliveryStatus(enum.StrEnum):
    DELIVERED = "delivered"
    SIMULATED = "simulated"
    ERROR = "error"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one sink call. Sinks return this instead of raising."""

    status: DeliveryStatus
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True when the message was handed off, for real or simulated."""
        return self.status is not DeliveryStatus.ERROR

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

    @classmethod
    def sent(cls, message_id: str | None = None) -> DeliveryResult:
        return cls(DeliveryStatus.DELIVERED, message_id=message_id)

    @classmethod
    def simulated(cls) -> DeliveryResult:
        return cls(DeliveryStatus.SIMULATED)

    @classmethod
    def failed(cls, error: str) -> DeliveryResult:
        return cls(DeliveryStatus.ERROR, error=error)


@dataclass(frozen=True)
class EmailMessage:
    to_email: str
    to_name: str
    subject: str
    body: str


@runtime_checkable
class NotificationSink(Protocol):
    """The capability that actually gets a message to a patient.

    Implementations must never raise; failures come back as an ``ERROR``
    result so that one bad send cannot abort a batch.
    """

    async def send_medication_reminder(
        self, patient: Patient, medication: MedicationSchedule
    ) -> DeliveryResult: ...

    async def send_motivational_email(
        self, patient: Patient, context: dict[str, Any]
    ) -> DeliveryResult: ...

    async def send_health_alert(
        self, patient: Patient, reading: Reading, analysis: AnalysisResult
    ) -> DeliveryResult: ...

    async def send_test_email(self, patient: Patient) -> DeliveryResult: ...


class Transport(Protocol):
    """Moves a composed message to its destination.

    Raises ``NotificationDeliveryError`` when the destination is unreachable
    or rejects the message.
    """

    async def deliver(self, message: EmailMessage) -> DeliveryResult: ...

    async def close(self) -> None: ...
