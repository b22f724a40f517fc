"""Column types that behave the same on PostgreSQL and SQLite."""

from __future__ import annotations

import ipaddress
import uuid
from datetime import timezone
from typing import Any

from sqlalchemy.dialects import postgresql
from sqlalchemy.types import CHAR, DateTime, String, TypeDecorator

POSTGRESQL = "postgresql"


def _canonical_uuid(value: Any) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        # Lookups with malformed ids must simply find nothing.
        return str(value)


class GUID(TypeDecorator):
    """UUID primary and foreign keys, read back as canonical strings.

    PostgreSQL stores the native ``UUID`` type; other engines use ``CHAR(36)``.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == POSTGRESQL:
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return None
        if dialect.name == POSTGRESQL:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return _canonical_uuid(value)

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        return None if value is None else str(value)


class INET(TypeDecorator):
    """Router management addresses.

    Values are validated with :mod:`ipaddress` before they reach the database
    so SQLite rejects the same garbage PostgreSQL's ``INET`` would.
    """

    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == POSTGRESQL:
            return dialect.type_descriptor(postgresql.INET())
        return dialect.type_descriptor(String(45))

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return None
        return str(ipaddress.ip_address(str(value).strip()))

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        return None if value is None else str(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp column that always round-trips as UTC.

    PostgreSQL keeps the native ``TIMESTAMP WITH TIME ZONE`` behaviour. SQLite
    has no timezone support, so values are stored as naive UTC and tagged with
    ``timezone.utc`` again when loaded; comparisons against ``datetime.now(timezone.utc)``
    therefore work the same on every backend.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == POSTGRESQL:
            return value
        return value.replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
