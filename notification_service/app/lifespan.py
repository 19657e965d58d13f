"""Application lifespan management.

Startup order:
1. Logging
2. Database engine (+ table creation when enabled)
3. Email transport
4. Notification registry, stored on ``app.state.notification_registry``

Shutdown disposes the engine.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from notification_service.app.notification_types import NOTIFICATIONS
from notification_service.core.database import create_engine
from notification_service.core.settings import (
    get_db_settings,
    get_email_settings,
    get_logging_settings,
    get_notification_settings,
)
from notification_service.features.notifications import (
    EmailChannel,
    InAppChannel,
    NotificationRegistry,
)
from notification_service.infra.email import build_email_sender
from notification_service.infra.logging.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the registry on startup and release the engine on shutdown."""
    setup_logging(get_logging_settings())

    db_settings = get_db_settings()
    notification_settings = get_notification_settings()
    email_settings = get_email_settings()

    engine = create_engine(db_settings)
    sender = build_email_sender(email_settings)

    registry = NotificationRegistry.from_settings(
        engine,
        channels=[
            EmailChannel(
                send_email=sender.send,
                retries=notification_settings.email_retries,
                from_address=email_settings.from_address,
            ),
            InAppChannel(),
        ],
        notifications=NOTIFICATIONS,
        settings=notification_settings,
    )
    if db_settings.create_tables:
        await registry.create_tables()

    app.state.notification_registry = registry
    logger.info(
        "Notification service started",
        extra={"email_backend": email_settings.backend, "dialect": engine.dialect.name},
    )

    try:
        yield
    finally:
        app.state.notification_registry = None
        await engine.dispose()
        logger.info("Notification service stopped")
