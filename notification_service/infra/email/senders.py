"""Email senders used by the email channel.

A sender takes an ``OutgoingEmail`` and returns the transport message id.
Failures are raised, never returned, so the delivery engine can record the
attempt and retry.

Usage:
    from notification_service.infra.email import build_email_sender

    sender = build_email_sender()  # picks SMTP or console from EMAIL_BACKEND
    message_id = await sender.send(OutgoingEmail(to="a@example.com", subject="Hi", html="<p>Hi</p>"))
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import ssl
from typing import TYPE_CHECKING, Protocol
import uuid

import aiosmtplib

if TYPE_CHECKING:
    from notification_service.core.settings import EmailSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingEmail:
    """A single rendered email ready for a transport."""

    to: str
    subject: str
    html: str
    text: str | None = None
    from_address: str | None = None


class EmailSender(Protocol):
    """Anything that can put an email on the wire."""

    async def send(self, message: OutgoingEmail) -> str:
        """Send the message and return its transport id."""
        ...


class SMTPEmailSender:
    """SMTP sender using native async aiosmtplib.

    Supports STARTTLS (port 587), implicit TLS (port 465) and optional
    LOGIN/PLAIN authentication.

    Example:
        sender = SMTPEmailSender(EmailSettings(backend="smtp", smtp_host="smtp.example.com"))
        message_id = await sender.send(message)
    """

    def __init__(self, settings: EmailSettings) -> None:
        self._settings = settings
        self._host = settings.smtp_host
        self._port = settings.smtp_port

        logger.info(
            "SMTP email sender initialized",
            extra={
                "host": self._host,
                "port": self._port,
                "use_tls": settings.use_tls,
                "use_ssl": settings.use_ssl,
            },
        )

    def _create_ssl_context(self) -> ssl.SSLContext | None:
        if not (self._settings.use_tls or self._settings.use_ssl):
            return None
        return ssl.create_default_context()

    def _build_mime_message(self, message: OutgoingEmail) -> MIMEMultipart:
        mime_msg = MIMEMultipart("alternative")
        mime_msg["From"] = message.from_address or self._settings.from_address
        mime_msg["To"] = message.to
        mime_msg["Subject"] = message.subject
        mime_msg["Message-ID"] = f"<{uuid.uuid4()}@{self._host}>"
        mime_msg["Date"] = datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S +0000")

        if message.text:
            mime_msg.attach(MIMEText(message.text, "plain", "utf-8"))
        mime_msg.attach(MIMEText(message.html, "html", "utf-8"))
        return mime_msg

    async def send(self, message: OutgoingEmail) -> str:
        """Send via SMTP.

        Raises:
            aiosmtplib.SMTPException: On connection, auth or protocol errors.
            aiosmtplib.SMTPRecipientsRefused: When the recipient is rejected.
        """
        mime_message = self._build_mime_message(message)
        message_id = mime_message["Message-ID"]

        smtp = aiosmtplib.SMTP(
            hostname=self._host,
            port=self._port,
            use_tls=self._settings.use_ssl,  # Implicit TLS
            start_tls=self._settings.use_tls,  # STARTTLS
            tls_context=self._create_ssl_context(),
            timeout=self._settings.timeout,
        )

        async with smtp:
            if self._settings.requires_auth:
                assert self._settings.smtp_password is not None
                await smtp.login(
                    self._settings.smtp_username or "",
                    self._settings.smtp_password.get_secret_value(),
                )
            errors, _response = await smtp.send_message(mime_message)

        if errors:
            raise aiosmtplib.SMTPRecipientsRefused(
                [
                    aiosmtplib.SMTPRecipientRefused(response.code, response.message, recipient)
                    for recipient, response in errors.items()
                ]
            )

        logger.debug(
            "Email sent via SMTP",
            extra={"message_id": message_id, "host": self._host},
        )
        return message_id


class ConsoleEmailSender:
    """Development sender that logs emails instead of sending them.

    Every sent message is also kept in ``outbox`` for inspection.
    """

    def __init__(self, from_address: str = "Notification Service <noreply@example.com>") -> None:
        self._from_address = from_address
        self.outbox: list[OutgoingEmail] = []
        logger.info("Console email sender initialized (development mode)")

    async def send(self, message: OutgoingEmail) -> str:
        message_id = f"console-{uuid.uuid4()}"
        self.outbox.append(message)

        separator = "=" * 60
        output_lines = [
            "",
            separator,
            "EMAIL (Console Backend - Development Mode)",
            separator,
            f"Message-ID: {message_id}",
            f"From: {message.from_address or self._from_address}",
            f"To: {message.to}",
            f"Subject: {message.subject}",
            separator,
            message.text or message.html,
            separator,
        ]
        logger.info("\n".join(output_lines), extra={"message_id": message_id})
        return message_id


def build_email_sender(settings: EmailSettings | None = None) -> EmailSender:
    """Create the sender selected by ``EmailSettings.backend``."""
    if settings is None:
        from notification_service.core.settings import get_email_settings

        settings = get_email_settings()

    if settings.backend == "smtp":
        return SMTPEmailSender(settings)
    return ConsoleEmailSender(settings.from_address)
