"""In-app channel plugin: writes inbox rows."""

from __future__ import annotations

from typing import TYPE_CHECKING

from notification_service.core.database import new_id, utc_now
from notification_service.features.notifications.channels.base import (
    ChannelInitContext,
    ChannelSendParams,
    ChannelSendResult,
)
from notification_service.features.notifications.definitions import ChannelKind
from notification_service.features.notifications.models import IN_APP_TABLE
from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine

_lazy = get_lazy_logger(__name__)


class InAppHandler:
    """Inserts one InAppNotification row per successful delivery."""

    def __init__(self, engine: AsyncEngine, table: Table) -> None:
        self._engine = engine
        self._table = table

    async def send(self, params: ChannelSendParams) -> ChannelSendResult:
        # No inbox to write to
        if params.user_id is None:
            return ChannelSendResult()

        content = params.content
        notification_id = new_id()
        async with self._engine.begin() as conn:
            await conn.execute(
                self._table.insert().values(
                    id=notification_id,
                    user_id=params.user_id,
                    type=params.notification_type,
                    title=content.title,  # type: ignore[union-attr]
                    body=content.body,  # type: ignore[union-attr]
                    url=content.url,  # type: ignore[union-attr]
                    icon=content.icon,  # type: ignore[union-attr]
                    read=False,
                    created_at=utc_now(),
                )
            )

        _lazy.debug(lambda: f"in_app.send({params.user_id=}, {params.notification_type=}) -> {notification_id}")
        return ChannelSendResult(external_id=notification_id)


class InAppChannel:
    """In-app channel plugin.

    Local writes are not retried, so ``retries`` is always 0.
    """

    name = ChannelKind.IN_APP
    retries = 0

    def init(self, context: ChannelInitContext) -> InAppHandler:
        return InAppHandler(context.engine, context.table(IN_APP_TABLE))
