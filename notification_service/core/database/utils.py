"""Database utility functions.

Provides UUID v7 generation (time-sortable) for string primary keys and a
timezone-aware clock used for created/updated timestamps.

Example:
    from notification_service.core.database.utils import new_id, utc_now

    attempt_id = new_id()  # "0192f3a4-5b6c-7d8e-9f01-23456789abcd"
    created_at = utc_now()
"""
from __future__ import annotations

import os
import time
import uuid
from datetime import UTC, datetime


def generate_uuid7() -> uuid.UUID:
    """Generate a UUID v7 (time-sortable).

    UUID v7 encodes Unix timestamp in milliseconds in the first 48 bits,
    providing natural time-ordering while maintaining uniqueness.

    Returns:
        UUID v7 instance
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    # RFC 9562 layout:
    # - Bits 0-47: Unix timestamp in milliseconds (big-endian)
    # - Bits 48-51: Version (7)
    # - Bits 64-65: Variant (10)
    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80
    uuid_bytes[9:16] = random_bytes[3:10]

    return uuid.UUID(bytes=bytes(uuid_bytes))


def new_id() -> str:
    """Return a new UUID v7 as its canonical string form."""
    return str(generate_uuid7())


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
