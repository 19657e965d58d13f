"""Notification registry: definitions, channel plugins and the send pipeline.

``send`` looks up the definition, loads the user's preferences (unless the
definition is critical or the send is anonymous), gates each channel through
the preference resolver, renders content and drives the delivery engine per
channel. Channel failures are collected and raised together once every
channel has been attempted.

Example:
    registry = NotificationRegistry(
        engine,
        channels=[EmailChannel(send_email=sender.send), InAppChannel()],
        notifications={"welcome": welcome, "magic-link": magic_link},
    )
    await registry.create_tables()
    await registry.send("welcome", user_id="user-1", data={"name": "Ada"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
import json
import re
import threading
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import and_, select
from starlette.responses import JSONResponse

from notification_service.core.database import create_metadata
from notification_service.features.notifications.channels.base import ChannelInitContext
from notification_service.features.notifications.definitions import (
    ChannelKind,
    NotificationDefinition,
    parse_channel,
)
from notification_service.features.notifications.delivery import (
    DeliveryEngine,
    DeliveryOutcome,
)
from notification_service.features.notifications.exceptions import (
    ConfigurationError,
    NotificationSendError,
)
from notification_service.features.notifications.metrics import (
    notification_channel_skipped_total,
    notification_read_total,
    notification_send_total,
)
from notification_service.features.notifications.models import (
    DELIVERY_TABLE,
    IN_APP_TABLE,
    PREFERENCE_TABLE,
    define_notification_tables,
    get_table,
    resolve_table_names,
)
from notification_service.features.notifications.preferences import (
    DefaultPreferences,
    PreferenceStore,
    resolve_channel_enabled,
)
from notification_service.features.notifications.schemas import (
    InAppNotificationRead,
    MarkReadRequest,
    PreferenceRead,
    PreferencesUpdateRequest,
    PreferenceUpdate,
)
from notification_service.infra.logging import (
    get_logger,
    remove_from_log_context,
    set_log_context,
)

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine
    from starlette.requests import Request

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.channels.base import (
        ChannelHandler,
        ChannelPlugin,
    )
    from notification_service.features.notifications.definitions import ChannelContent
    from notification_service.features.notifications.delivery import Sleep

logger = get_logger(__name__)

_PATH_PREFIX = re.compile(r".*/notifications")


@dataclass(frozen=True)
class SendResult:
    """Outcome of a fully successful ``send``.

    Attributes:
        delivered: Channel name to the successful delivery outcome
        skipped: Channels not attempted because preferences disabled them
    """

    delivered: dict[str, DeliveryOutcome] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _PlannedDelivery:
    channel: ChannelKind
    handler: ChannelHandler
    retries: int
    content: ChannelContent


class NotificationRegistry:
    """Holds definitions and channel plugins; sends and queries notifications.

    Configuration problems are raised from the constructor as
    ``ConfigurationError``: duplicate plugin names, a definition stored under a
    key different from its own, a definition using a channel with no plugin, a
    missing table, or invalid backoff delays.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        channels: Sequence[ChannelPlugin],
        notifications: Mapping[str, NotificationDefinition],
        schema: Mapping[str, Table] | None = None,
        table_names: Mapping[str, str] | None = None,
        default_preferences: DefaultPreferences | None = None,
        backoff_delays: Sequence[int] | None = None,
        sleep: Sleep | None = None,
        dispatch_concurrently: bool = False,
    ) -> None:
        self._engine = engine
        self._table_names = resolve_table_names(table_names)

        if schema is None:
            metadata = create_metadata()
            define_notification_tables(metadata, self._table_names)
            schema = metadata.tables
        self._schema = schema

        self._delivery_table = get_table(schema, self._table_names[DELIVERY_TABLE], DELIVERY_TABLE)
        self._in_app_table = get_table(schema, self._table_names[IN_APP_TABLE], IN_APP_TABLE)
        self._preference_table = get_table(
            schema, self._table_names[PREFERENCE_TABLE], PREFERENCE_TABLE
        )

        self._plugins = self._register_plugins(channels)
        self._definitions = self._register_definitions(notifications)

        self._defaults = default_preferences or DefaultPreferences()
        self._preferences = PreferenceStore(engine, self._preference_table)
        self._delivery = DeliveryEngine(
            engine, self._delivery_table, backoff_delays, sleep or asyncio.sleep
        )
        self._dispatch_concurrently = dispatch_concurrently

        self._init_context = ChannelInitContext(
            engine=engine,
            schema=schema,
            table_names=self._table_names,
        )
        self._handlers: dict[ChannelKind, ChannelHandler] = {}
        self._handler_lock = threading.Lock()

        logger.info(
            "Notification registry configured",
            extra={
                "channels": [str(name) for name in self._plugins],
                "notification_types": list(self._definitions),
            },
        )

    @classmethod
    def from_settings(
        cls,
        engine: AsyncEngine,
        *,
        channels: Sequence[ChannelPlugin],
        notifications: Mapping[str, NotificationDefinition],
        settings: NotificationSettings | None = None,
        schema: Mapping[str, Table] | None = None,
    ) -> NotificationRegistry:
        """Build a registry using ``NotificationSettings`` for defaults."""
        if settings is None:
            from notification_service.core.settings import get_notification_settings

            settings = get_notification_settings()

        return cls(
            engine,
            channels=channels,
            notifications=notifications,
            schema=schema,
            table_names=settings.table_names(),
            default_preferences=DefaultPreferences.from_channels(settings.default_enabled_channels),
            backoff_delays=settings.backoff_delays_ms,
            dispatch_concurrently=settings.dispatch_concurrently,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @staticmethod
    def _register_plugins(channels: Sequence[ChannelPlugin]) -> dict[ChannelKind, ChannelPlugin]:
        plugins: dict[ChannelKind, ChannelPlugin] = {}
        for plugin in channels:
            name = parse_channel(plugin.name)
            if name in plugins:
                msg = f'Channel "{name}" is registered more than once.'
                raise ConfigurationError(msg, extra={"channel": name})
            if plugin.retries < 0:
                msg = f'Channel "{name}" declares a negative retry budget.'
                raise ConfigurationError(msg, extra={"channel": name})
            plugins[name] = plugin
        return plugins

    def _register_definitions(
        self,
        notifications: Mapping[str, NotificationDefinition],
    ) -> dict[str, NotificationDefinition]:
        definitions: dict[str, NotificationDefinition] = {}
        for key, definition in notifications.items():
            if definition.key != key:
                msg = f'Notification "{definition.key}" is registered under a different key "{key}".'
                raise ConfigurationError(msg, extra={"notification_type": key})
            for channel in definition.channels:
                if channel not in self._plugins:
                    msg = (
                        f'Notification "{key}" uses channel "{channel}" which is not registered. '
                        f"Available channels: {self._available_channels()}"
                    )
                    raise ConfigurationError(
                        msg,
                        extra={"notification_type": key, "channel": channel},
                    )
            definitions[key] = definition
        return definitions

    def _available_channels(self) -> str:
        return ", ".join(str(name) for name in self._plugins)

    @property
    def definitions(self) -> Mapping[str, NotificationDefinition]:
        return dict(self._definitions)

    @property
    def table_names(self) -> Mapping[str, str]:
        return dict(self._table_names)

    async def create_tables(self) -> None:
        """Create the three notification tables if they do not exist."""
        tables = [self._delivery_table, self._in_app_table, self._preference_table]

        def _create(sync_conn: Connection) -> None:
            for table in tables:
                table.create(sync_conn, checkfirst=True)

        async with self._engine.begin() as conn:
            await conn.run_sync(_create)

    def get_handler(self, channel: ChannelKind | str) -> ChannelHandler:
        """Return the cached handler for ``channel``, building it on first use.

        Raises:
            ConfigurationError: If no plugin is registered for ``channel``.
        """
        name = parse_channel(channel)
        handler = self._handlers.get(name)
        if handler is not None:
            return handler

        with self._handler_lock:
            handler = self._handlers.get(name)
            if handler is None:
                plugin = self._plugins.get(name)
                if plugin is None:
                    msg = (
                        f'Channel "{name}" is not registered. '
                        f"Available channels: {self._available_channels()}"
                    )
                    raise ConfigurationError(msg, extra={"channel": name})
                handler = plugin.init(self._init_context)
                self._handlers[name] = handler
                logger.info("Channel handler initialized", extra={"channel": str(name)})
        return handler

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(
        self,
        notification_type: str,
        *,
        user_id: str | None = None,
        data: dict[str, Any] | None = None,
        recipient_email: str | None = None,
    ) -> SendResult:
        """Deliver a notification on every enabled channel of its definition.

        Args:
            notification_type: Definition key
            user_id: Target user; None for anonymous sends (no preference lookup)
            data: Event data passed to each content factory
            recipient_email: Address for the email channel

        Returns:
            SendResult listing delivered and skipped channels

        Raises:
            ConfigurationError: Unknown type or invalid content. Raised before
                any channel is attempted.
            NotificationSendError: One or more channels failed after every
                channel was attempted.
        """
        definition = self._definitions.get(notification_type)
        if definition is None:
            msg = f'Notification type "{notification_type}" is not defined.'
            raise ConfigurationError(msg, extra={"notification_type": notification_type})

        set_log_context(notification_type=notification_type, user_id=user_id)
        try:
            return await self._send(definition, user_id, data or {}, recipient_email)
        finally:
            remove_from_log_context("notification_type", "user_id")

    async def _send(
        self,
        definition: NotificationDefinition,
        user_id: str | None,
        data: dict[str, Any],
        recipient_email: str | None,
    ) -> SendResult:
        preferences: list[PreferenceRead] = []
        if not definition.critical and user_id:
            preferences = await self._preferences.get_preferences(user_id)

        planned: list[_PlannedDelivery] = []
        skipped: list[str] = []
        for channel in definition.channels:
            if not definition.critical and not resolve_channel_enabled(
                preferences, self._defaults, definition.key, channel
            ):
                skipped.append(str(channel))
                notification_channel_skipped_total.labels(
                    channel=str(channel), reason="preference_disabled"
                ).inc()
                continue

            planned.append(
                _PlannedDelivery(
                    channel=channel,
                    handler=self.get_handler(channel),
                    retries=self._plugins[channel].retries,
                    content=definition.render(channel, data),
                )
            )

        delivered: dict[str, DeliveryOutcome] = {}
        failures: dict[str, Exception] = {}

        if self._dispatch_concurrently:
            results = await asyncio.gather(
                *(
                    self._deliver(item, definition.key, user_id, recipient_email)
                    for item in planned
                ),
                return_exceptions=True,
            )
            for item, result in zip(planned, results, strict=True):
                if isinstance(result, DeliveryOutcome):
                    delivered[str(item.channel)] = result
                elif isinstance(result, Exception):
                    failures[str(item.channel)] = result
                else:
                    raise result
        else:
            for item in planned:
                try:
                    outcome = await self._deliver(item, definition.key, user_id, recipient_email)
                except Exception as exc:
                    failures[str(item.channel)] = exc
                else:
                    delivered[str(item.channel)] = outcome

        if failures:
            notification_send_total.labels(
                notification_type=definition.key, outcome="partial_failure"
            ).inc()
            logger.error(
                "Notification delivery failed on some channels",
                extra={
                    "failed_channels": list(failures),
                    "delivered_channels": list(delivered),
                },
            )
            raise NotificationSendError(definition.key, failures, list(delivered))

        notification_send_total.labels(notification_type=definition.key, outcome="ok").inc()
        logger.info(
            "Notification sent",
            extra={"delivered_channels": list(delivered), "skipped_channels": skipped},
        )
        return SendResult(delivered=delivered, skipped=skipped)

    async def _deliver(
        self,
        item: _PlannedDelivery,
        notification_type: str,
        user_id: str | None,
        recipient_email: str | None,
    ) -> DeliveryOutcome:
        return await self._delivery.deliver(
            handler=item.handler,
            channel=str(item.channel),
            retries=item.retries,
            user_id=user_id,
            notification_type=notification_type,
            content=item.content,
            recipient_email=recipient_email,
        )

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def list(
        self,
        user_id: str,
        limit: int = 50,
        unread_only: bool = False,
    ) -> list[InAppNotificationRead]:
        """Return the user's in-app notifications, newest first."""
        table = self._in_app_table
        conditions = [table.c.user_id == user_id]
        if unread_only:
            conditions.append(table.c.read.is_(False))

        stmt = (
            select(table)
            .where(and_(*conditions))
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(limit)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [InAppNotificationRead.model_validate(dict(row)) for row in rows]

    async def mark_read(
        self,
        user_id: str,
        notification_ids: Iterable[str] | None = None,
    ) -> int:
        """Mark notifications as read for ``user_id``.

        Args:
            user_id: Owner of the notifications
            notification_ids: Ids to mark. None marks every unread row of the
                user. Ids owned by other users are ignored.

        Returns:
            Number of rows flipped from unread to read
        """
        table = self._in_app_table
        conditions = [table.c.user_id == user_id, table.c.read.is_(False)]
        if notification_ids is not None:
            ids = list(notification_ids)
            if not ids:
                return 0
            conditions.append(table.c.id.in_(ids))

        async with self._engine.begin() as conn:
            result = await conn.execute(table.update().where(and_(*conditions)).values(read=True))

        count = result.rowcount or 0
        notification_read_total.inc(count)
        logger.debug(
            "Notifications marked read",
            extra={"user_id": user_id, "count": count, "all": notification_ids is None},
        )
        return count

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> list[PreferenceRead]:
        return await self._preferences.get_preferences(user_id)

    async def update_preferences(
        self,
        user_id: str,
        updates: Iterable[PreferenceUpdate | Mapping[str, Any]],
    ) -> None:
        await self._preferences.update_preferences(user_id, updates)

    # ------------------------------------------------------------------
    # HTTP facade
    # ------------------------------------------------------------------

    async def handle(self, request: Request, user_id: str | None) -> JSONResponse:
        """Dispatch ``POST /mark-read``, ``GET /preferences`` and ``PUT /preferences``.

        The route is the part of the URL path after ``/notifications`` with
        any trailing slash removed. Returns 401 without a user, 400 on a
        malformed body and 404 for anything else.
        """
        if not user_id:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        path = _PATH_PREFIX.sub("", request.url.path, count=1).removesuffix("/")
        method = request.method.upper()

        if path == "/mark-read" and method == "POST":
            return await self._handle_mark_read(request, user_id)
        if path == "/preferences" and method == "GET":
            preferences = await self.get_preferences(user_id)
            return JSONResponse(
                {"preferences": [p.model_dump(mode="json", by_alias=True) for p in preferences]}
            )
        if path == "/preferences" and method == "PUT":
            return await self._handle_update_preferences(request, user_id)

        return JSONResponse({"error": "Not found"}, status_code=404)

    async def _handle_mark_read(self, request: Request, user_id: str) -> JSONResponse:
        body, error = await _read_json(request)
        if error is not None:
            return error
        try:
            payload = MarkReadRequest.model_validate(body)
        except ValidationError:
            return _bad_request("Provide notificationIds array or { all: true }")

        if payload.all:
            await self.mark_read(user_id)
        else:
            await self.mark_read(user_id, payload.notification_ids)
        return JSONResponse({"ok": True})

    async def _handle_update_preferences(self, request: Request, user_id: str) -> JSONResponse:
        body, error = await _read_json(request)
        if error is not None:
            return error
        if not isinstance(body, dict) or not isinstance(body.get("preferences"), list):
            return _bad_request("Provide a preferences array")
        try:
            payload = PreferencesUpdateRequest.model_validate(body)
        except ValidationError:
            return _bad_request(
                "Each preference needs notificationType, channel and enabled"
            )

        await self.update_preferences(user_id, payload.preferences)
        return JSONResponse({"ok": True})


async def _read_json(request: Request) -> tuple[Any, JSONResponse | None]:
    try:
        return await request.json(), None
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, _bad_request("Invalid JSON body")


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)
