"""Email transports: simulated (log only), SMTP, and the Brevo HTTP API."""

from __future__ import annotations

import asyncio
import logging
import os
import smtplib
from email.mime.text import MIMEText

import httpx

from caretrack.errors import NotificationDeliveryError
from caretrack.notify.base import DeliveryResult, EmailMessage

logger = logging.getLogger(__name__)


class LoggingTransport:
    """Logs each message instead of sending it. Every result is ``simulated``."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessage] = []

    async def deliver(self, message: EmailMessage) -> DeliveryResult:
        self.outbox.append(message)
        logger.info("[SIMULATED] Email to %s: %s", message.to_email, message.subject)
        return DeliveryResult.simulated()

    async def close(self) -> None:
        return None


class SmtpTransport:
    """Sends mail over SMTP; blocking calls run via ``asyncio.to_thread``.

    Credentials are read from the named environment variables at send time.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        sender_email: str,
        sender_name: str,
        use_tls: bool = True,
        username_env: str = "CARETRACK_SMTP_USERNAME",
        password_env: str = "CARETRACK_SMTP_PASSWORD",
    ) -> None:
        self._host = host
        self._port = port
        self._sender_email = sender_email
        self._sender_name = sender_name
        self._use_tls = use_tls
        self._username_env = username_env
        self._password_env = password_env

    def _smtp_send(self, message: EmailMessage) -> None:
        """Blocking SMTP send, run via ``asyncio.to_thread``."""
        msg = MIMEText(message.body)
        msg["Subject"] = message.subject
        msg["From"] = f"{self._sender_name} <{self._sender_email}>"
        msg["To"] = message.to_email

        server = smtplib.SMTP(self._host, self._port, timeout=30)
        try:
            if self._use_tls:
                server.starttls()
            username = os.environ.get(self._username_env)
            password = os.environ.get(self._password_env)
            if username and password:
                server.login(username, password)
            server.sendmail(self._sender_email, [message.to_email], msg.as_string())
        finally:
            server.quit()

    async def deliver(self, message: EmailMessage) -> DeliveryResult:
        try:
            await asyncio.to_thread(self._smtp_send, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(
                f"SMTP delivery to {message.to_email} failed: {exc}"
            ) from exc
        logger.info("Email sent to %s: %s", message.to_email, message.subject)
        return DeliveryResult.sent()

    async def close(self) -> None:
        return None


class BrevoTransport:
    """Sends mail through Brevo's transactional email API.

    Without an API key every message is simulated rather than sent.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        sender_email: str,
        sender_name: str,
        api_url: str = "https://api.brevo.com/v3/smtp/email",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = {"email": sender_email, "name": sender_name}
        self._api_url = api_url
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_env(cls, api_key_env: str, **kwargs) -> BrevoTransport:
        api_key = os.environ.get(api_key_env)
        if not api_key:
            logger.warning("%s not set - Brevo email delivery is simulated", api_key_env)
        return cls(api_key, **kwargs)

    def _get_client(self) -> httpx.AsyncClient:
        """Return the HTTP client, creating one if needed."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
        return self._client

    async def deliver(self, message: EmailMessage) -> DeliveryResult:
        if not self._api_key:
            logger.info("[SIMULATED] Email to %s: %s", message.to_email, message.subject)
            return DeliveryResult.simulated()

        payload = {
            "sender": self._sender,
            "to": [{"email": message.to_email, "name": message.to_name}],
            "subject": message.subject,
            "textContent": message.body,
        }
        headers = {
            "api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            response = await self._get_client().post(self._api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationDeliveryError(
                f"Brevo rejected email to {message.to_email}: "
                f"{exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(f"Brevo unreachable: {exc}") from exc

        # The mail is accepted at this point; a missing or odd body only loses the id.
        message_id = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message_id = body.get("messageId")
        logger.info("Email sent to %s: %s (id=%s)", message.to_email, message.subject, message_id)
        return DeliveryResult.sent(message_id)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
