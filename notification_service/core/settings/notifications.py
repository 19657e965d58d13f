"""Notification engine settings.

Environment variables use NOTIFICATIONS_ prefix. List values are JSON encoded.
Example: NOTIFICATIONS_BACKOFF_DELAYS_MS='[1000, 5000]'
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """Defaults for the notification registry and delivery engine."""

    default_enabled_channels: list[str] = Field(
        default_factory=lambda: ["email", "in-app"],
        description="Channels enabled when a user has no matching preference row",
    )
    backoff_delays_ms: list[int] = Field(
        default_factory=lambda: [1000, 5000, 15000, 30000, 60000],
        min_length=1,
        description="Delay before each retry, by attempt index; the last value repeats",
    )
    dispatch_concurrently: bool = Field(
        default=False,
        description="Run the channels of one notification concurrently instead of in order",
    )
    email_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries (beyond the first attempt) for the email channel",
    )

    # Table names
    table_delivery: str = Field(
        default="notification_delivery",
        min_length=1,
        description="Table holding one row per delivery attempt",
    )
    table_in_app: str = Field(
        default="in_app_notification",
        min_length=1,
        description="Table holding in-app inbox rows",
    )
    table_preference: str = Field(
        default="notification_preference",
        min_length=1,
        description="Table holding per-user channel preferences",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("backoff_delays_ms")
    @classmethod
    def _non_negative_delays(cls, value: list[int]) -> list[int]:
        if any(delay < 0 for delay in value):
            msg = "backoff delays must be non-negative"
            raise ValueError(msg)
        return value

    def table_names(self) -> dict[str, str]:
        """Return the table-name map understood by the notification models."""
        return {
            "notification_delivery": self.table_delivery,
            "in_app_notification": self.table_in_app,
            "notification_preference": self.table_preference,
        }
