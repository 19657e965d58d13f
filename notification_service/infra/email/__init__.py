"""Email transports for the email notification channel."""

from notification_service.infra.email.senders import (
    ConsoleEmailSender,
    EmailSender,
    OutgoingEmail,
    SMTPEmailSender,
    build_email_sender,
)

__all__ = [
    "ConsoleEmailSender",
    "EmailSender",
    "OutgoingEmail",
    "SMTPEmailSender",
    "build_email_sender",
]
