"""Identity middleware.

Authentication happens upstream (gateway or auth proxy). This middleware
copies the trusted user id header into ``request.state.user_id`` and the
logging context; requests without it reach the routes anonymously and the
notifications facade answers 401.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from notification_service.infra.logging.context import clear_log_context, set_log_context

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


class UserIdentityMiddleware:
    """Pure ASGI middleware placing the caller's user id on request state.

    Usage:
        app.add_middleware(UserIdentityMiddleware, header_name="x-user-id")
    """

    state_key = "user_id"

    def __init__(self, app: ASGIApp, header_name: str = "x-user-id") -> None:
        self.app = app
        self.header_name = header_name.lower().encode("latin-1")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        # Upstream middleware may already have authenticated the request
        if not state.get(self.state_key):
            headers = dict(scope.get("headers", []))
            raw = headers.get(self.header_name)
            value = raw.decode("latin-1").strip() if raw else ""
            state[self.state_key] = value or None

        if user_id := state[self.state_key]:
            set_log_context(user_id=user_id)

        try:
            await self.app(scope, receive, send)
        finally:
            clear_log_context()
