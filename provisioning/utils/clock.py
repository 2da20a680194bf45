"""Timezone helpers.

SQLite hands back naive datetimes even for DateTime(timezone=True) columns;
everything stored by this service is UTC, so naive values are read as UTC.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
