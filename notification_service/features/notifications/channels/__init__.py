"""Channel plugins.

Each plugin declares a ``name`` (a ``ChannelKind``), a retry budget and an
``init`` that builds the handler used for every send on that channel:
- Email: delegates to an injected async transport
- In-App: writes inbox rows to the configured table
"""

from __future__ import annotations

from notification_service.features.notifications.channels.base import (
    ChannelHandler,
    ChannelInitContext,
    ChannelPlugin,
    ChannelSendParams,
    ChannelSendResult,
)
from notification_service.features.notifications.channels.email import (
    DEFAULT_EMAIL_RETRIES,
    EmailChannel,
    EmailHandler,
)
from notification_service.features.notifications.channels.in_app import (
    InAppChannel,
    InAppHandler,
)

__all__ = [
    "DEFAULT_EMAIL_RETRIES",
    "ChannelHandler",
    "ChannelInitContext",
    "ChannelPlugin",
    "ChannelSendParams",
    "ChannelSendResult",
    "EmailChannel",
    "EmailHandler",
    "InAppChannel",
    "InAppHandler",
]
