"""Notification error taxonomy.

All errors derive from ``NotificationError`` which is an ``AppException``, so
anything that escapes to the HTTP layer renders as RFC 7807 problem details.

- ``ConfigurationError``: wrong setup (unknown type or channel, missing table,
  bad content). Raised immediately, never retried.
- ``ChannelError``: raised by a channel handler; the delivery engine records
  it as a failed attempt and retries.
- ``DeliveryError``: one channel exhausted its retry budget.
- ``NotificationSendError``: aggregate raised by ``send`` once every channel
  has been attempted and at least one failed.
"""

from __future__ import annotations

from typing import Any

from notification_service.core.exceptions import AppException


class NotificationError(AppException):
    """Base class for notification errors."""

    def __init__(
        self,
        detail: str,
        *,
        status_code: int = 500,
        type: str = "notification-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=status_code,
            detail=detail,
            type=type,
            extra=extra,
        )


class ConfigurationError(NotificationError):
    """The registry, a definition or a channel is misconfigured."""

    def __init__(self, detail: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail, type="notification-configuration-error", extra=extra)


class ChannelError(NotificationError):
    """A channel handler could not send.

    Example:
        raise ChannelError("email", "recipient_email is required for email channel.")
        # str(exc) == "[email] recipient_email is required for email channel."
    """

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(
            f"[{channel}] {message}",
            status_code=502,
            type="notification-channel-error",
            extra={"channel": channel},
        )


class DeliveryError(NotificationError):
    """All attempts on one channel failed.

    Attributes:
        delivery_id: Id of the last attempt row in the chain.
    """

    def __init__(self, delivery_id: str, message: str) -> None:
        self.delivery_id = delivery_id
        super().__init__(
            message,
            status_code=502,
            type="notification-delivery-error",
            extra={"delivery_id": delivery_id},
        )


class NotificationSendError(NotificationError):
    """One or more channels failed after every other channel was attempted.

    Attributes:
        notification_type: Type that was being sent.
        failures: Channel name mapped to the error that ended its chain.
        delivered: Channels that succeeded during the same send.
    """

    def __init__(
        self,
        notification_type: str,
        failures: dict[str, Exception],
        delivered: list[str] | None = None,
    ) -> None:
        self.notification_type = notification_type
        self.failures = failures
        self.delivered = list(delivered or [])
        channels = ", ".join(failures)
        super().__init__(
            f'Failed to deliver notification "{notification_type}" on '
            f"{len(failures)} channel(s): {channels}",
            status_code=502,
            type="notification-send-error",
            extra={
                "notification_type": notification_type,
                "failed_channels": list(failures),
                "delivered_channels": self.delivered,
            },
        )
