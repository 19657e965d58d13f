"""HTTP client for the notifications facade.

Usage:
    async with NotificationClient("https://app.example.com/api/notifications",
                                  headers={"x-user-id": "user-1"}) as client:
        await client.mark_read(["0192f3a4-..."])
        await client.update_preferences({"welcome": {"email": False}})
        prefs = await client.get_preferences()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from notification_service.features.notifications.exceptions import NotificationError
from notification_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class NotificationAPIError(NotificationError):
    """The facade answered with a non-2xx status."""

    def __init__(self, status_code: int, text: str) -> None:
        self.response_text = text
        super().__init__(
            f"Notification API error ({status_code}): {text}",
            status_code=status_code,
            type="notification-api-error",
            extra={"response_text": text},
        )


class NotificationClient:
    """Async client for ``/notifications`` endpoints.

    Args:
        base_url: URL of the facade mount, e.g. ``https://host/api/notifications``.
            A trailing slash is ignored.
        client: Optional pre-configured ``httpx.AsyncClient``; not closed by us.
        transport: Optional transport (e.g. ``httpx.ASGITransport`` or
            ``httpx.MockTransport``) for an internally created client.
        headers: Extra headers sent with every request (auth, user id).
        timeout: Request timeout in seconds for an internally created client.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.removesuffix("/")
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport, timeout=timeout)

    async def __aenter__(self) -> NotificationClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        lazy_logger.debug(lambda: f"client.{method.lower()}({url})")
        response = await self._client.request(method, url, json=json, headers=self._headers)
        if not response.is_success:
            text = response.text or "Unknown error"
            logger.warning(
                "Notification API request failed",
                extra={"url": url, "method": method, "status_code": response.status_code},
            )
            raise NotificationAPIError(response.status_code, text)
        return response

    async def mark_read(self, notification_ids: list[str]) -> None:
        await self._request("POST", "/mark-read", {"notificationIds": list(notification_ids)})

    async def mark_all_read(self) -> None:
        await self._request("POST", "/mark-read", {"all": True})

    async def get_preferences(self) -> dict[str, Any]:
        """Return the decoded ``{"preferences": [...]}`` body."""
        response = await self._request("GET", "/preferences")
        return response.json()

    async def update_preferences(self, preferences: Mapping[str, Mapping[str, bool]]) -> None:
        """Upsert preferences given as ``{notification_type: {channel: enabled}}``.

        Example:
            await client.update_preferences({"*": {"email": False}, "welcome": {"*": True}})
        """
        updates = [
            {"notificationType": notification_type, "channel": channel, "enabled": enabled}
            for notification_type, channels in preferences.items()
            for channel, enabled in channels.items()
        ]
        await self._request("PUT", "/preferences", {"preferences": updates})
