"""Shared SQLAlchemy metadata helpers.

Notification tables are declared with SQLAlchemy Core so their names can be
configured per host application. Every table registered through
`create_metadata()` gets the same constraint naming convention, which keeps
migrations and constraint names predictable.

Example:
    metadata = create_metadata()
    tables = define_notification_tables(metadata, {"in_app_notification": "inbox"})
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
"""

from __future__ import annotations

from sqlalchemy import MetaData

# Consistent naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def create_metadata() -> MetaData:
    """Create a MetaData registry using the project naming convention."""
    return MetaData(naming_convention=NAMING_CONVENTION)
