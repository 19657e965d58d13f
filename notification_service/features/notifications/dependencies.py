"""FastAPI dependencies for the notifications feature.

Example usage:
    from notification_service.features.notifications.dependencies import (
        CurrentUserIdDep,
        NotificationRegistryDep,
    )

    @router.get("/inbox")
    async def inbox(user_id: CurrentUserIdDep, registry: NotificationRegistryDep):
        return await registry.list(user_id)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from notification_service.core.exceptions import ServiceUnavailableException
from notification_service.features.notifications.registry import NotificationRegistry


def get_notification_registry(request: Request) -> NotificationRegistry:
    """Return the registry created by the application lifespan.

    Raises:
        ServiceUnavailableException: If the lifespan has not set it up.
    """
    registry = getattr(request.app.state, "notification_registry", None)
    if registry is None:
        raise ServiceUnavailableException(
            detail="Notification registry is not initialised",
            type="notification-registry-unavailable",
        )
    return registry


def get_current_user_id(request: Request) -> str | None:
    """User id placed on ``request.state`` by the identity middleware, if any."""
    return getattr(request.state, "user_id", None)


NotificationRegistryDep = Annotated[NotificationRegistry, Depends(get_notification_registry)]
CurrentUserIdDep = Annotated[str | None, Depends(get_current_user_id)]
