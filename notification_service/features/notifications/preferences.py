"""Per-user channel preferences.

Resolution order for a (notification type, channel) pair, most specific
first; the first matching row wins:

1. exact (type, channel)
2. (type, "*")       all channels for this type
3. ("*", channel)    this channel for all types
4. ``channel in defaults.enabled_channels``

Row order never matters: each level is searched over all rows before the
next level is considered.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError

from notification_service.core.database import new_id, utc_now
from notification_service.features.notifications.models import WILDCARD
from notification_service.features.notifications.schemas import PreferenceRead, PreferenceUpdate
from notification_service.infra.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine

DEFAULT_ENABLED_CHANNELS: tuple[str, ...] = ("email", "in-app")

logger = get_logger(__name__)


class PreferenceLike(Protocol):
    notification_type: str
    channel: str
    enabled: bool


@dataclass(frozen=True)
class DefaultPreferences:
    """System defaults used when no preference row matches."""

    enabled_channels: tuple[str, ...] = DEFAULT_ENABLED_CHANNELS

    @classmethod
    def from_channels(cls, channels: Iterable[str]) -> DefaultPreferences:
        return cls(enabled_channels=tuple(channels))


def _find(
    preferences: Sequence[PreferenceLike],
    notification_type: str,
    channel: str,
) -> PreferenceLike | None:
    for pref in preferences:
        if pref.notification_type == notification_type and pref.channel == channel:
            return pref
    return None


def resolve_channel_enabled(
    preferences: Sequence[PreferenceLike],
    defaults: DefaultPreferences,
    notification_type: str,
    channel: str,
) -> bool:
    """Decide whether ``channel`` is enabled for ``notification_type``.

    Args:
        preferences: The user's preference rows, in any order
        defaults: System defaults
        notification_type: Definition key
        channel: Channel name

    Returns:
        True if the channel should be attempted
    """
    for type_key, channel_key in (
        (notification_type, channel),
        (notification_type, WILDCARD),
        (WILDCARD, channel),
    ):
        match = _find(preferences, type_key, channel_key)
        if match is not None:
            return match.enabled
    return channel in defaults.enabled_channels


class PreferenceStore:
    """Reads and upserts preference rows."""

    def __init__(self, engine: AsyncEngine, table: Table) -> None:
        self._engine = engine
        self._table = table

    async def get_preferences(self, user_id: str) -> list[PreferenceRead]:
        """Return every preference row stored for ``user_id``."""
        table = self._table
        async with self._engine.connect() as conn:
            result = await conn.execute(
                select(table).where(table.c.user_id == user_id).order_by(table.c.updated_at)
            )
            rows = result.mappings().all()
        return [PreferenceRead.model_validate(dict(row)) for row in rows]

    async def update_preferences(
        self,
        user_id: str,
        updates: Iterable[PreferenceUpdate | Mapping[str, Any]],
    ) -> None:
        """Upsert each update; at most one row per (user, type, channel).

        Mappings are validated as ``PreferenceUpdate`` (camelCase or
        snake_case keys).
        """
        for update in updates:
            pref = (
                update
                if isinstance(update, PreferenceUpdate)
                else PreferenceUpdate.model_validate(update)
            )
            await self._upsert(user_id, pref)

        logger.debug("Preferences updated", extra={"user_id": user_id})

    async def _upsert(self, user_id: str, pref: PreferenceUpdate) -> None:
        table = self._table
        match = and_(
            table.c.user_id == user_id,
            table.c.notification_type == pref.notification_type,
            table.c.channel == pref.channel,
        )
        now = utc_now()

        try:
            async with self._engine.begin() as conn:
                existing = (
                    await conn.execute(select(table.c.id).where(match).limit(1))
                ).scalar_one_or_none()
                if existing is not None:
                    await conn.execute(
                        table.update()
                        .where(table.c.id == existing)
                        .values(enabled=pref.enabled, updated_at=now)
                    )
                else:
                    await conn.execute(
                        table.insert().values(
                            id=new_id(),
                            user_id=user_id,
                            notification_type=pref.notification_type,
                            channel=pref.channel,
                            enabled=pref.enabled,
                            updated_at=now,
                        )
                    )
        except IntegrityError:
            # A concurrent writer inserted the same triple first
            async with self._engine.begin() as conn:
                await conn.execute(
                    table.update().where(match).values(enabled=pref.enabled, updated_at=now)
                )
