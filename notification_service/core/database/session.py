"""Async engine construction from database settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import create_async_engine as _create_async_engine
from sqlalchemy.pool import StaticPool

from notification_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_service.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def create_engine(db_settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create the async engine used by every notification component.

    In-memory SQLite URLs share a single connection (StaticPool) so the
    schema survives across checkouts.

    Args:
        db_settings: Optional settings override (defaults to cached settings).

    Returns:
        Configured AsyncEngine.
    """
    settings = db_settings or get_db_settings()
    kwargs: dict[str, Any] = {"echo": settings.echo}

    if settings.is_sqlite and ":memory:" in settings.database_url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    elif not settings.is_sqlite:
        kwargs["pool_pre_ping"] = settings.pool_pre_ping

    engine = _create_async_engine(settings.database_url, **kwargs)
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name},
    )
    return engine
