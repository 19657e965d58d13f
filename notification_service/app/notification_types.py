"""Notification types registered by the application."""

from __future__ import annotations

from html import escape
from typing import Any

from notification_service.features.notifications import (
    ChannelKind,
    EmailContent,
    InAppContent,
    define_notification,
)


def _magic_link_email(data: dict[str, Any]) -> EmailContent:
    url = data["url"]
    return EmailContent(
        subject="Your sign-in link",
        html=(
            "<p>Click the link below to sign in. It expires in 10 minutes.</p>"
            f'<p><a href="{escape(url, quote=True)}">Sign in</a></p>'
        ),
        text=f"Sign in: {url}\n\nThis link expires in 10 minutes.",
    )


def _welcome_in_app(data: dict[str, Any]) -> InAppContent:
    name = data.get("name")
    return InAppContent(
        title=f"Welcome, {name}!" if name else "Welcome!",
        body="Your account is ready.",
        url=data.get("url"),
    )


NOTIFICATIONS = {
    # Auth emails bypass user preferences
    "magic-link": define_notification(
        "magic-link",
        critical=True,
        channels={ChannelKind.EMAIL: _magic_link_email},
        description="Passwordless sign-in link",
    ),
    "welcome": define_notification(
        "welcome",
        channels={ChannelKind.IN_APP: _welcome_in_app},
        description="Greeting shown in the inbox after sign-up",
    ),
}
