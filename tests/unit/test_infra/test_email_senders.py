"""Tests for the email senders used by the email channel."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from notification_service.core.settings import EmailSettings
from notification_service.infra.email import (
    ConsoleEmailSender,
    OutgoingEmail,
    SMTPEmailSender,
    build_email_sender,
)

MESSAGE = OutgoingEmail(
    to="ada@example.com",
    subject="Your sign-in link",
    html="<p>Sign in</p>",
    text="Sign in",
)


@pytest.fixture
def smtp_settings():
    return EmailSettings(
        backend="smtp",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_username="mailer",
        smtp_password="secret",
        use_tls=True,
    )


@pytest.fixture
def mock_smtp():
    """aiosmtplib.SMTP replacement usable as an async context manager."""
    smtp = MagicMock()
    smtp.__aenter__ = AsyncMock(return_value=smtp)
    smtp.__aexit__ = AsyncMock(return_value=False)
    smtp.login = AsyncMock()
    smtp.send_message = AsyncMock(return_value=({}, "OK"))
    with patch(
        "notification_service.infra.email.senders.aiosmtplib.SMTP", return_value=smtp
    ) as factory:
        factory.instance = smtp
        yield factory


@pytest.mark.unit
class TestConsoleEmailSender:
    """Tests for ConsoleEmailSender."""

    @pytest.mark.asyncio
    async def test_records_message_in_outbox(self):
        sender = ConsoleEmailSender()

        message_id = await sender.send(MESSAGE)

        assert message_id.startswith("console-")
        assert sender.outbox == [MESSAGE]

    @pytest.mark.asyncio
    async def test_logs_the_message(self, caplog):
        sender = ConsoleEmailSender()

        with caplog.at_level("INFO", logger="notification_service.infra.email.senders"):
            await sender.send(MESSAGE)

        assert "To: ada@example.com" in caplog.text
        assert "Subject: Your sign-in link" in caplog.text


@pytest.mark.unit
class TestSMTPEmailSender:
    """Tests for SMTPEmailSender with a mocked SMTP client."""

    @pytest.mark.asyncio
    async def test_sends_and_returns_message_id(self, smtp_settings, mock_smtp):
        sender = SMTPEmailSender(smtp_settings)

        message_id = await sender.send(MESSAGE)

        smtp = mock_smtp.instance
        smtp.login.assert_awaited_once_with("mailer", "secret")
        smtp.send_message.assert_awaited_once()
        sent = smtp.send_message.await_args.args[0]
        assert sent["To"] == "ada@example.com"
        assert sent["Subject"] == "Your sign-in link"
        assert sent["From"] == "Notification Service <noreply@example.com>"
        assert sent["Message-ID"] == message_id
        assert message_id.endswith("@smtp.example.com>")
        assert mock_smtp.call_args.kwargs["start_tls"] is True
        assert mock_smtp.call_args.kwargs["hostname"] == "smtp.example.com"

    @pytest.mark.asyncio
    async def test_message_has_text_and_html_parts(self, smtp_settings, mock_smtp):
        await SMTPEmailSender(smtp_settings).send(MESSAGE)

        sent = mock_smtp.instance.send_message.await_args.args[0]
        content_types = [part.get_content_type() for part in sent.get_payload()]
        assert content_types == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_explicit_from_address_wins(self, smtp_settings, mock_smtp):
        message = OutgoingEmail(
            to="ada@example.com",
            subject="Hi",
            html="<p>Hi</p>",
            from_address="Team <team@example.com>",
        )

        await SMTPEmailSender(smtp_settings).send(message)

        sent = mock_smtp.instance.send_message.await_args.args[0]
        assert sent["From"] == "Team <team@example.com>"

    @pytest.mark.asyncio
    async def test_no_login_without_credentials(self, mock_smtp):
        await SMTPEmailSender(EmailSettings(backend="smtp")).send(MESSAGE)

        mock_smtp.instance.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refused_recipient_raises(self, smtp_settings, mock_smtp):
        response = aiosmtplib.SMTPResponse(550, "mailbox unavailable")
        mock_smtp.instance.send_message.return_value = ({"ada@example.com": response}, "OK")

        with pytest.raises(aiosmtplib.SMTPRecipientsRefused):
            await SMTPEmailSender(smtp_settings).send(MESSAGE)

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, smtp_settings, mock_smtp):
        mock_smtp.instance.send_message.side_effect = aiosmtplib.SMTPServerDisconnected("gone")

        with pytest.raises(aiosmtplib.SMTPServerDisconnected):
            await SMTPEmailSender(smtp_settings).send(MESSAGE)


@pytest.mark.unit
class TestBuildEmailSender:
    """Tests for build_email_sender."""

    def test_console_backend(self):
        assert isinstance(build_email_sender(EmailSettings(backend="console")), ConsoleEmailSender)

    def test_smtp_backend(self, smtp_settings):
        assert isinstance(build_email_sender(smtp_settings), SMTPEmailSender)
