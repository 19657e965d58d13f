"""Notification type definitions.

A definition maps event data to per-channel content. Definitions are built
once at configuration time and never mutated:

    welcome = define_notification(
        "welcome",
        channels={
            ChannelKind.IN_APP: lambda data: InAppContent(title=f"Welcome, {data['name']}!"),
        },
    )

    magic_link = define_notification(
        "magic-link",
        critical=True,
        channels={
            ChannelKind.EMAIL: lambda data: {
                "subject": "Your sign-in link",
                "html": f'<a href="{data["url"]}">Sign in</a>',
            },
        },
    )
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ValidationError

from notification_service.features.notifications.exceptions import ConfigurationError
from notification_service.features.notifications.schemas import EmailContent, InAppContent


class ChannelKind(StrEnum):
    """Closed set of delivery channels."""

    EMAIL = "email"
    IN_APP = "in-app"


ChannelContent = EmailContent | InAppContent
ContentFactory = Callable[[dict[str, Any]], ChannelContent | Mapping[str, Any]]

CONTENT_MODELS: Mapping[ChannelKind, type[BaseModel]] = MappingProxyType(
    {
        ChannelKind.EMAIL: EmailContent,
        ChannelKind.IN_APP: InAppContent,
    }
)


def parse_channel(name: str | ChannelKind) -> ChannelKind:
    """Coerce a channel name to ``ChannelKind``.

    Raises:
        ConfigurationError: If the name is not a known channel kind.
    """
    try:
        return ChannelKind(name)
    except ValueError:
        known = ", ".join(kind.value for kind in ChannelKind)
        msg = f'Unknown channel "{name}". Known channels: {known}'
        raise ConfigurationError(msg, extra={"channel": str(name)}) from None


@dataclass(frozen=True)
class NotificationDefinition:
    """An immutable notification type.

    Attributes:
        key: Unique notification type identifier.
        channels: Channel kind to content factory. Order is dispatch order.
        critical: Bypass preference gating (e.g. sign-in emails).
        description: Optional human-readable description.
    """

    key: str
    channels: Mapping[ChannelKind, ContentFactory] = field(default_factory=dict)
    critical: bool = False
    description: str | None = None

    def render(self, channel: ChannelKind, data: dict[str, Any]) -> ChannelContent:
        """Build validated content for ``channel`` from ``data``.

        Raises:
            ConfigurationError: If the channel is not defined for this type or
                the factory returns content of the wrong shape.
        """
        factory = self.channels.get(channel)
        if factory is None:
            msg = f'Notification "{self.key}" defines no content for channel "{channel}"'
            raise ConfigurationError(msg, extra={"notification_type": self.key, "channel": channel})
        return coerce_content(channel, factory(data), notification_type=self.key)


def coerce_content(
    channel: ChannelKind,
    raw: ChannelContent | Mapping[str, Any],
    *,
    notification_type: str,
) -> ChannelContent:
    """Validate factory output into the content model for ``channel``."""
    model = CONTENT_MODELS[channel]
    if isinstance(raw, model):
        return raw  # type: ignore[return-value]
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as exc:
        msg = f'Invalid {channel} content for notification "{notification_type}": {exc.error_count()} error(s)'
        raise ConfigurationError(
            msg,
            extra={
                "notification_type": notification_type,
                "channel": channel,
                "errors": [error["msg"] for error in exc.errors()],
            },
        ) from exc


def define_notification(
    key: str,
    *,
    channels: Mapping[ChannelKind | str, ContentFactory],
    critical: bool = False,
    description: str | None = None,
) -> NotificationDefinition:
    """Create a definition, normalising channel names to ``ChannelKind``.

    Raises:
        ConfigurationError: On an empty key or an unknown channel name.
    """
    if not key:
        msg = "Notification key must be a non-empty string"
        raise ConfigurationError(msg)
    normalized = {parse_channel(name): factory for name, factory in channels.items()}
    return NotificationDefinition(
        key=key,
        channels=MappingProxyType(normalized),
        critical=critical,
        description=description,
    )
