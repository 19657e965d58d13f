"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine and notification tables
    - Notification Fixtures: delivery fakes, email outbox and registry factory
    - Application Fixtures: FastAPI app and HTTP client

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Use @pytest.fixture with clear docstrings
    3. Make fixtures composable (fixtures can depend on other fixtures)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
import os
from typing import TYPE_CHECKING, Any

from httpx import ASGITransport, AsyncClient
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tests.utils import RecordingSleep

if TYPE_CHECKING:
    from sqlalchemy import MetaData, Table
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_service.features.notifications import NotificationRegistry
    from notification_service.infra.email import ConsoleEmailSender

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMAIL_BACKEND", "console")
os.environ.setdefault("LOG_JSON", "false")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory SQLite engine shared by one test.

    StaticPool keeps a single connection so tables created on it stay
    visible to every later checkout.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest.fixture
def notification_metadata() -> MetaData:
    """MetaData holding the three notification tables under default names."""
    from notification_service.core.database import create_metadata
    from notification_service.features.notifications import define_notification_tables

    metadata = create_metadata()
    define_notification_tables(metadata)
    return metadata


@pytest.fixture
async def tables(db_engine: AsyncEngine, notification_metadata: MetaData) -> dict[str, Table]:
    """Create the notification tables and return them keyed by logical name.

    Example:
        async def test_rows(db_engine, tables):
            delivery = tables["notification_delivery"]
    """
    async with db_engine.begin() as conn:
        await conn.run_sync(notification_metadata.create_all)
    return dict(notification_metadata.tables)


# ============================================================================
# Notification Fixtures
# ============================================================================


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""
    return RecordingSleep()


@pytest.fixture
def console_sender() -> ConsoleEmailSender:
    """Console email sender; sent messages land in ``outbox``."""
    from notification_service.infra.email import ConsoleEmailSender

    return ConsoleEmailSender()


@pytest.fixture
def make_registry(
    db_engine: AsyncEngine,
    tables: dict[str, Table],
    notification_metadata: MetaData,
    console_sender: ConsoleEmailSender,
    recording_sleep: RecordingSleep,
):
    """Factory building a registry on the test engine.

    Defaults to the application's notification types with the console email
    sender and the in-app channel, zero backoff and a recording sleep.

    Example:
        registry = make_registry(channels=[InAppChannel()], notifications={...})
    """
    from notification_service.app.notification_types import NOTIFICATIONS
    from notification_service.features.notifications import (
        EmailChannel,
        InAppChannel,
        NotificationRegistry,
    )

    def _make(**overrides: Any) -> NotificationRegistry:
        kwargs: dict[str, Any] = {
            "channels": [EmailChannel(send_email=console_sender.send), InAppChannel()],
            "notifications": NOTIFICATIONS,
            "schema": notification_metadata.tables,
            "backoff_delays": [0],
            "sleep": recording_sleep,
        }
        kwargs.update(overrides)
        return NotificationRegistry(db_engine, **kwargs)

    return _make


@pytest.fixture
def registry(make_registry) -> NotificationRegistry:
    """Registry with the default channels and notification types."""
    return make_registry()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(registry: NotificationRegistry):
    """FastAPI application with the test registry installed on app.state.

    ASGITransport does not run the lifespan, so the registry is placed on
    state directly.
    """
    from notification_service.app.main import create_app

    application = create_app()
    application.state.notification_registry = registry
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client authenticated as ``user-1`` through the identity header."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"x-user-id": "user-1"},
    ) as ac:
        yield ac


@pytest.fixture
async def anonymous_client(app) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client without the identity header."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
