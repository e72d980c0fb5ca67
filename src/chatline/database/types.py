"""
Column types shared by the models.
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Timezone-aware current time in UTC (microsecond resolution)."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    A timezone-aware DateTime that always round-trips as UTC.

    PostgreSQL returns aware values already; SQLite drops the offset and hands
    back naive datetimes. Both are normalized to aware UTC here so message
    timestamps can always be compared with each other.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
