"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from notification_service.app.exception_handlers import configure_exception_handlers
from notification_service.app.lifespan import lifespan
from notification_service.app.middleware import UserIdentityMiddleware
from notification_service.core.settings import get_app_settings
from notification_service.features.notifications.router import create_notifications_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = get_app_settings()

    app = FastAPI(
        title=app_settings.title,
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )

    configure_exception_handlers(app)
    app.add_middleware(UserIdentityMiddleware, header_name=app_settings.user_id_header)
    app.include_router(create_notifications_router(), prefix=app_settings.api_prefix)

    return app


# Application instance for uvicorn
app = create_app()
