"""Table definitions for the notifications feature.

Tables are declared with SQLAlchemy Core so the host application can rename
them. ``define_notification_tables`` registers all three on a MetaData using
the configured names; components then look tables up by name through
``get_table`` so a missing table fails at startup rather than on first send.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from notification_service.core.database import utc_now
from notification_service.features.notifications.exceptions import ConfigurationError

DELIVERY_TABLE = "notification_delivery"
IN_APP_TABLE = "in_app_notification"
PREFERENCE_TABLE = "notification_preference"

DEFAULT_TABLE_NAMES: dict[str, str] = {
    DELIVERY_TABLE: DELIVERY_TABLE,
    IN_APP_TABLE: IN_APP_TABLE,
    PREFERENCE_TABLE: PREFERENCE_TABLE,
}

WILDCARD = "*"

# Native JSONB on PostgreSQL, JSON elsewhere
ContentJSON = JSON().with_variant(JSONB(), "postgresql")


class DeliveryStatus(StrEnum):
    """Status of a single delivery attempt row.

    ``DELIVERED`` is reserved for channel-reported confirmation and is never
    written by the delivery engine.
    """

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


def resolve_table_names(table_names: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge overrides onto the default table-name map.

    Raises:
        ConfigurationError: If an override uses an unknown key.
    """
    resolved = dict(DEFAULT_TABLE_NAMES)
    for key, name in (table_names or {}).items():
        if key not in DEFAULT_TABLE_NAMES:
            msg = f'Unknown table key "{key}". Expected one of: {", ".join(DEFAULT_TABLE_NAMES)}'
            raise ConfigurationError(msg, extra={"table_key": key})
        resolved[key] = name
    return resolved


def define_notification_tables(
    metadata: MetaData,
    table_names: Mapping[str, str] | None = None,
) -> dict[str, Table]:
    """Register the delivery, in-app and preference tables on ``metadata``.

    Args:
        metadata: MetaData to register on (see ``create_metadata``).
        table_names: Optional overrides keyed by logical table name.

    Returns:
        Mapping of logical table key to Table.
    """
    names = resolve_table_names(table_names)

    delivery = Table(
        names[DELIVERY_TABLE],
        metadata,
        Column("id", String(36), primary_key=True),
        Column("user_id", String(255), nullable=True, index=True),
        Column("type", String(100), nullable=False),
        Column("channel", String(50), nullable=False),
        Column("status", String(20), nullable=False, default=DeliveryStatus.PENDING.value),
        Column("content", ContentJSON, nullable=False),
        Column("error", Text, nullable=True),
        Column("retry_of", String(36), nullable=True),
        Column("retries_left", Integer, nullable=False, default=0),
        Column("recipient_email", String(320), nullable=True),
        Column("external_id", String(255), nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Index(f"ix_{names[DELIVERY_TABLE]}_type_status", "type", "status"),
    )

    in_app = Table(
        names[IN_APP_TABLE],
        metadata,
        Column("id", String(36), primary_key=True),
        Column("user_id", String(255), nullable=False),
        Column("type", String(100), nullable=False),
        Column("title", String(500), nullable=False),
        Column("body", Text, nullable=True),
        Column("url", String(2048), nullable=True),
        Column("icon", String(255), nullable=True),
        Column("read", Boolean, nullable=False, default=False),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Index(f"ix_{names[IN_APP_TABLE]}_user_read", "user_id", "read"),
        Index(f"ix_{names[IN_APP_TABLE]}_user_created", "user_id", "created_at"),
    )

    preference = Table(
        names[PREFERENCE_TABLE],
        metadata,
        Column("id", String(36), primary_key=True),
        Column("user_id", String(255), nullable=False, index=True),
        Column("notification_type", String(100), nullable=False),
        Column("channel", String(50), nullable=False),
        Column("enabled", Boolean, nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=utc_now),
        UniqueConstraint("user_id", "notification_type", "channel"),
    )

    return {
        DELIVERY_TABLE: delivery,
        IN_APP_TABLE: in_app,
        PREFERENCE_TABLE: preference,
    }


def get_table(schema: Mapping[str, Table], name: str, label: str) -> Table:
    """Look up a configured table, failing loudly when it is absent.

    Args:
        schema: Table name to Table mapping (usually ``metadata.tables``).
        name: Configured table name.
        label: Logical key, used in the error message.

    Raises:
        ConfigurationError: If the table is not in ``schema``.
    """
    table = schema.get(name)
    if table is None:
        msg = f'Table "{name}" ({label}) is not in the configured schema.'
        raise ConfigurationError(msg, extra={"table": name, "table_key": label})
    return table
