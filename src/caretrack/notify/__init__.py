"""Notification delivery: sink interface, email composition, transports."""

from caretrack.notify.base import (
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    NotificationSink,
    Transport,
)
from caretrack.notify.sink import EmailSink, build_sink
from caretrack.notify.transports import BrevoTransport, LoggingTransport, SmtpTransport

__all__ = [
    "BrevoTransport",
    "DeliveryResult",
    "DeliveryStatus",
    "EmailMessage",
    "EmailSink",
    "LoggingTransport",
    "NotificationSink",
    "SmtpTransport",
    "Transport",
    "build_sink",
]
