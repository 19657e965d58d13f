"""Database helpers: metadata naming convention, engine factory, id/clock utilities."""

from notification_service.core.database.base import NAMING_CONVENTION, create_metadata
from notification_service.core.database.session import create_engine
from notification_service.core.database.utils import generate_uuid7, new_id, utc_now

__all__ = [
    "NAMING_CONVENTION",
    "create_engine",
    "create_metadata",
    "generate_uuid7",
    "new_id",
    "utc_now",
]
