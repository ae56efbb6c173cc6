"""Tests for EmailSink, build_sink and the email transports."""

from __future__ import annotations

import json
import smtplib
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import make_medication, make_patient, make_reading

from caretrack.config import NotificationBackend, NotificationConfig
from caretrack.errors import NotificationDeliveryError
from caretrack.models import AnalysisResult, RiskLevel
from caretrack.notify import (
    BrevoTransport,
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    EmailSink,
    LoggingTransport,
    NotificationSink,
    SmtpTransport,
    build_sink,
)

pytestmark = pytest.mark.unit

MESSAGE = EmailMessage(
    to_email="ann@example.com", to_name="Ann Lee", subject="Hello", body="Take your meds"
)


class _RaisingTransport:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def deliver(self, message):
        raise self.exc

    async def close(self):
        return None


# ---------------------------------------------------------------------------
# EmailSink
# ---------------------------------------------------------------------------


class TestEmailSink:
    def test_satisfies_sink_protocol(self):
        assert isinstance(EmailSink(LoggingTransport()), NotificationSink)

    async def test_simulated_through_logging_transport(self):
        transport = LoggingTransport()
        sink = EmailSink(transport)

        result = await sink.send_medication_reminder(make_patient(), make_medication())

        assert result.status is DeliveryStatus.SIMULATED
        assert result.ok and not result.delivered
        assert transport.outbox[0].subject == "Medication Reminder: Time for Metformin"

    async def test_all_three_kinds(self):
        transport = LoggingTransport()
        sink = EmailSink(transport)
        patient = make_patient()

        await sink.send_motivational_email(patient, {"adherence": 90})
        await sink.send_health_alert(
            patient,
            make_reading("blood_sugar", 300),
            AnalysisResult(risk_level=RiskLevel.CRITICAL),
        )

        assert [m.subject for m in transport.outbox] == [
            "Daily Health Motivation & Update",
            "Health Alert: BLOOD SUGAR - CRITICAL",
        ]

    async def test_test_email_mentions_schedule(self):
        transport = LoggingTransport()
        sink = EmailSink(transport)

        result = await sink.send_test_email(make_patient(email_time="7:30"))

        assert result.status is DeliveryStatus.SIMULATED
        [message] = transport.outbox
        assert message.subject == "CareTrack Test Email"
        assert "07:30" in message.body

    async def test_missing_email_is_an_error_result(self):
        sink = EmailSink(LoggingTransport())
        result = await sink.send_medication_reminder(make_patient(email=None), make_medication())
        assert result.status is DeliveryStatus.ERROR
        assert "no email address" in result.error

    async def test_transport_failure_becomes_error_result(self):
        sink = EmailSink(_RaisingTransport(NotificationDeliveryError("relay down")))
        result = await sink.send_motivational_email(make_patient(), {})
        assert result == DeliveryResult.failed("relay down")

    async def test_unexpected_failure_becomes_error_result(self):
        sink = EmailSink(_RaisingTransport(KeyError("template")))
        result = await sink.send_motivational_email(make_patient(), {})
        assert result.status is DeliveryStatus.ERROR
        assert result.error.startswith("KeyError")


class TestBuildSink:
    def test_default_is_logging(self):
        sink = build_sink(NotificationConfig())
        assert isinstance(sink._transport, LoggingTransport)

    def test_smtp(self):
        sink = build_sink(NotificationConfig(backend=NotificationBackend.SMTP))
        assert isinstance(sink._transport, SmtpTransport)

    def test_brevo_without_key_simulates(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("BREVO_API_KEY", raising=False)
        sink = build_sink(NotificationConfig(backend=NotificationBackend.BREVO))
        assert isinstance(sink._transport, BrevoTransport)
        assert sink._transport._api_key is None


# ---------------------------------------------------------------------------
# BrevoTransport
# ---------------------------------------------------------------------------


def _brevo(handler, api_key: str | None = "key-123") -> BrevoTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BrevoTransport(
        api_key, sender_email="care@clinic.example", sender_name="Clinic", client=client
    )


class TestBrevoTransport:
    async def test_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"messageId": "<abc@brevo>"})

        result = await _brevo(handler).deliver(MESSAGE)

        assert result == DeliveryResult.sent("<abc@brevo>")
        [request] = seen
        assert request.headers["api-key"] == "key-123"
        body = json.loads(request.content)
        assert body["to"] == [{"email": "ann@example.com", "name": "Ann Lee"}]
        assert body["sender"] == {"email": "care@clinic.example", "name": "Clinic"}
        assert body["textContent"] == "Take your meds"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(201, text="queued"),
            httpx.Response(201),
            httpx.Response(201, json=["<abc@brevo>"]),
        ],
    )
    async def test_accepted_without_json_id_is_still_sent(self, response):
        result = await _brevo(lambda request: response).deliver(MESSAGE)

        assert result.status is DeliveryStatus.DELIVERED
        assert result.message_id is None

    async def test_rejection_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"code": "invalid_parameter"})

        with pytest.raises(NotificationDeliveryError, match="400"):
            await _brevo(handler).deliver(MESSAGE)

    async def test_network_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NotificationDeliveryError, match="unreachable"):
            await _brevo(handler).deliver(MESSAGE)

    async def test_no_key_simulates_without_http(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _brevo(handler, api_key=None).deliver(MESSAGE)
        assert result.status is DeliveryStatus.SIMULATED

    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        transport = BrevoTransport("k", sender_email="a@b.c", sender_name="A", client=client)
        await transport.close()
        assert not client.is_closed
        await client.aclose()


# ---------------------------------------------------------------------------
# SmtpTransport
# ---------------------------------------------------------------------------


@pytest.fixture
def smtp_server(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    server = MagicMock()
    monkeypatch.setattr(smtplib, "SMTP", MagicMock(return_value=server))
    return server


def _smtp(**kwargs) -> SmtpTransport:
    return SmtpTransport(
        "smtp.clinic.example",
        587,
        sender_email="care@clinic.example",
        sender_name="Clinic",
        **kwargs,
    )


class TestSmtpTransport:
    async def test_sends_with_tls_and_login(self, smtp_server, monkeypatch):
        monkeypatch.setenv("CARETRACK_SMTP_USERNAME", "care")
        monkeypatch.setenv("CARETRACK_SMTP_PASSWORD", "secret")

        result = await _smtp().deliver(MESSAGE)

        assert result.status is DeliveryStatus.DELIVERED
        smtp_server.starttls.assert_called_once()
        smtp_server.login.assert_called_once_with("care", "secret")
        sender, recipients, raw = smtp_server.sendmail.call_args.args
        assert sender == "care@clinic.example"
        assert recipients == ["ann@example.com"]
        assert "Subject: Hello" in raw
        smtp_server.quit.assert_called_once()

    async def test_no_credentials_no_login(self, smtp_server, monkeypatch):
        monkeypatch.delenv("CARETRACK_SMTP_USERNAME", raising=False)
        monkeypatch.delenv("CARETRACK_SMTP_PASSWORD", raising=False)

        await _smtp(use_tls=False).deliver(MESSAGE)

        smtp_server.starttls.assert_not_called()
        smtp_server.login.assert_not_called()

    async def test_smtp_error_raises_delivery_error(self, smtp_server):
        smtp_server.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})

        with pytest.raises(NotificationDeliveryError, match="ann@example.com"):
            await _smtp().deliver(MESSAGE)
        smtp_server.quit.assert_called_once()
