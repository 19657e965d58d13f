"""Notification delivery feature.

Typed notification definitions fan out to channel plugins (email, in-app),
gated by per-user preferences, with every delivery attempt recorded and
retried with backoff.

Basic usage:
    registry = NotificationRegistry(
        engine,
        channels=[EmailChannel(send_email=sender.send), InAppChannel()],
        notifications={"welcome": welcome},
    )
    await registry.send("welcome", user_id="user-1", data={"name": "Ada"})
"""

from __future__ import annotations

from notification_service.features.notifications.channels import (
    ChannelHandler,
    ChannelInitContext,
    ChannelPlugin,
    ChannelSendParams,
    ChannelSendResult,
    EmailChannel,
    InAppChannel,
)
from notification_service.features.notifications.client import (
    NotificationAPIError,
    NotificationClient,
)
from notification_service.features.notifications.definitions import (
    ChannelKind,
    NotificationDefinition,
    define_notification,
)
from notification_service.features.notifications.delivery import (
    DEFAULT_BACKOFF_DELAYS_MS,
    DeliveryEngine,
    DeliveryOutcome,
)
from notification_service.features.notifications.exceptions import (
    ChannelError,
    ConfigurationError,
    DeliveryError,
    NotificationError,
    NotificationSendError,
)
from notification_service.features.notifications.models import (
    DEFAULT_TABLE_NAMES,
    DeliveryStatus,
    define_notification_tables,
)
from notification_service.features.notifications.preferences import (
    DefaultPreferences,
    PreferenceStore,
    resolve_channel_enabled,
)
from notification_service.features.notifications.registry import (
    NotificationRegistry,
    SendResult,
)
from notification_service.features.notifications.schemas import (
    EmailContent,
    InAppContent,
    InAppNotificationRead,
    PreferenceRead,
    PreferenceUpdate,
)

__all__ = [
    "DEFAULT_BACKOFF_DELAYS_MS",
    "DEFAULT_TABLE_NAMES",
    "ChannelError",
    "ChannelHandler",
    "ChannelInitContext",
    "ChannelKind",
    "ChannelPlugin",
    "ChannelSendParams",
    "ChannelSendResult",
    "ConfigurationError",
    "DefaultPreferences",
    "DeliveryEngine",
    "DeliveryError",
    "DeliveryOutcome",
    "DeliveryStatus",
    "EmailChannel",
    "EmailContent",
    "InAppChannel",
    "InAppContent",
    "InAppNotificationRead",
    "NotificationAPIError",
    "NotificationClient",
    "NotificationDefinition",
    "NotificationError",
    "NotificationRegistry",
    "NotificationSendError",
    "PreferenceRead",
    "PreferenceStore",
    "PreferenceUpdate",
    "SendResult",
    "define_notification",
    "define_notification_tables",
    "resolve_channel_enabled",
]
