"""Base protocols and types for channel plugins."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from notification_service.features.notifications.models import get_table

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_service.features.notifications.definitions import (
        ChannelContent,
        ChannelKind,
    )


@dataclass(frozen=True)
class ChannelSendParams:
    """Input to a single handler call.

    Attributes:
        user_id: Target user, or None for anonymous notifications
        notification_type: Definition key being delivered
        content: Validated channel-specific content
        recipient_email: Address for the email channel
    """

    user_id: str | None
    notification_type: str
    content: ChannelContent
    recipient_email: str | None = None


@dataclass(frozen=True)
class ChannelSendResult:
    """Result of a successful handler call.

    Attributes:
        external_id: Channel-assigned id (message id, inbox row id), if any
    """

    external_id: str | None = None


@dataclass(frozen=True)
class ChannelInitContext:
    """Persistence handles passed to ``ChannelPlugin.init``."""

    engine: AsyncEngine
    schema: Mapping[str, Table]
    table_names: Mapping[str, str] = field(default_factory=dict)

    def table(self, key: str) -> Table:
        """Resolve a logical table key to its configured Table."""
        return get_table(self.schema, self.table_names.get(key, key), key)


class ChannelHandler(Protocol):
    """Stateless sender for one channel. Raises on failure."""

    async def send(self, params: ChannelSendParams) -> ChannelSendResult:
        """Send one notification on this channel.

        Args:
            params: Recipient and content

        Returns:
            ChannelSendResult carrying the external id, if any
        """
        ...


class ChannelPlugin(Protocol):
    """A named, pluggable channel.

    ``retries`` is the number of attempts allowed beyond the first. ``init``
    is called at most once per registry, on first use of the channel.
    """

    name: ChannelKind
    retries: int

    def init(self, context: ChannelInitContext) -> ChannelHandler:
        """Build the handler for this channel."""
        ...
