"""API router for the notifications feature.

Every method under ``/notifications/`` is forwarded to
``NotificationRegistry.handle``, which owns routing and validation:

- POST /notifications/mark-read    - ``{"all": true}`` or ``{"notificationIds": [...]}``
- GET  /notifications/preferences  - list the caller's preference rows
- PUT  /notifications/preferences  - upsert ``{"preferences": [...]}``
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from notification_service.features.notifications.dependencies import (
    CurrentUserIdDep,
    NotificationRegistryDep,
)

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def create_notifications_router() -> APIRouter:
    """Build the router; mount it under the API prefix."""
    router = APIRouter(prefix="/notifications", tags=["notifications"])

    @router.api_route(
        "/{path:path}",
        methods=FORWARDED_METHODS,
        include_in_schema=False,
    )
    async def notifications_facade(
        path: str,
        request: Request,
        registry: NotificationRegistryDep,
        user_id: CurrentUserIdDep,
    ) -> JSONResponse:
        return await registry.handle(request, user_id)

    return router
