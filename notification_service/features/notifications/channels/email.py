"""Email channel plugin.

Transmission is delegated to an injected async ``send_email`` callable, such
as ``SMTPEmailSender.send`` or ``ConsoleEmailSender.send``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from notification_service.features.notifications.channels.base import (
    ChannelInitContext,
    ChannelSendParams,
    ChannelSendResult,
)
from notification_service.features.notifications.definitions import ChannelKind
from notification_service.features.notifications.exceptions import ChannelError
from notification_service.infra.email import OutgoingEmail
from notification_service.infra.logging import get_lazy_logger

SendEmail = Callable[[OutgoingEmail], Awaitable[Any]]

DEFAULT_EMAIL_RETRIES = 3

_lazy = get_lazy_logger(__name__)


def _external_id(result: Any) -> str | None:
    """Accept None, a string id, a mapping or an object carrying ``external_id``."""
    if result is None:
        return None
    if isinstance(result, str):
        return result
    if isinstance(result, Mapping):
        value = result.get("external_id")
    else:
        value = getattr(result, "external_id", None)
    return str(value) if value is not None else None


class EmailHandler:
    """Sends email content through the injected transport."""

    def __init__(self, send_email: SendEmail, from_address: str | None = None) -> None:
        self._send_email = send_email
        self._from_address = from_address

    async def send(self, params: ChannelSendParams) -> ChannelSendResult:
        if not params.recipient_email:
            msg = (
                "recipient_email is required for email channel. "
                "Pass it to send() or ensure it is set on the user."
            )
            raise ChannelError(ChannelKind.EMAIL, msg)

        content = params.content
        message = OutgoingEmail(
            to=params.recipient_email,
            subject=content.subject,  # type: ignore[union-attr]
            html=content.html,  # type: ignore[union-attr]
            text=content.text,  # type: ignore[union-attr]
            from_address=self._from_address,
        )
        result = await self._send_email(message)

        external_id = _external_id(result)
        _lazy.debug(
            lambda: f"email.send({params.notification_type=}, to={params.recipient_email}) -> {external_id}"
        )
        return ChannelSendResult(external_id=external_id)


class EmailChannel:
    """Email channel plugin.

    Example:
        sender = build_email_sender()
        channel = EmailChannel(send_email=sender.send)
    """

    name = ChannelKind.EMAIL

    def __init__(
        self,
        send_email: SendEmail,
        *,
        retries: int = DEFAULT_EMAIL_RETRIES,
        from_address: str | None = None,
    ) -> None:
        if retries < 0:
            msg = "retries must be non-negative"
            raise ValueError(msg)
        self.retries = retries
        self._send_email = send_email
        self._from_address = from_address

    def init(self, context: ChannelInitContext) -> EmailHandler:
        return EmailHandler(self._send_email, self._from_address)
