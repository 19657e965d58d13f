"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# ============================================================================
# Channel content
# ============================================================================


class EmailContent(BaseModel):
    """Content produced by a definition for the email channel."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    subject: str = Field(..., min_length=1, max_length=998)
    html: str = Field(..., description="HTML body")
    text: str | None = Field(default=None, description="Plain-text alternative")


class InAppContent(BaseModel):
    """Content produced by a definition for the in-app channel."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str = Field(..., min_length=1, max_length=500)
    body: str | None = None
    url: str | None = Field(default=None, max_length=2048)
    icon: str | None = Field(default=None, max_length=255)


# ============================================================================
# Rows returned to callers
# ============================================================================


class _CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class InAppNotificationRead(_CamelModel):
    """An inbox row."""

    id: str
    user_id: str
    type: str
    title: str
    body: str | None = None
    url: str | None = None
    icon: str | None = None
    read: bool = False
    created_at: datetime


class PreferenceRead(_CamelModel):
    """A stored preference row."""

    id: str
    user_id: str
    notification_type: str
    channel: str
    enabled: bool
    updated_at: datetime


class DeliveryAttemptRead(_CamelModel):
    """A delivery attempt row."""

    id: str
    user_id: str | None = None
    type: str
    channel: str
    status: str
    content: dict
    error: str | None = None
    retry_of: str | None = None
    retries_left: int
    recipient_email: str | None = None
    external_id: str | None = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Request bodies
# ============================================================================


class PreferenceUpdate(_CamelModel):
    """One preference upsert; ``*`` is a wildcard for type or channel."""

    notification_type: str = Field(..., min_length=1, max_length=100)
    channel: str = Field(..., min_length=1, max_length=50)
    enabled: bool


class MarkReadRequest(_CamelModel):
    """Body of ``POST /mark-read``: ``{"all": true}`` or ``{"notificationIds": [...]}``."""

    all: bool = False
    notification_ids: list[str] | None = None

    @model_validator(mode="after")
    def require_target(self) -> MarkReadRequest:
        if not self.all and self.notification_ids is None:
            msg = "Provide notificationIds array or { all: true }"
            raise ValueError(msg)
        return self


class PreferencesUpdateRequest(_CamelModel):
    """Body of ``PUT /preferences``."""

    preferences: list[PreferenceUpdate]
