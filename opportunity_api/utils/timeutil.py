"""Timezone helpers.

All lifecycle decisions are made in UTC. Some stores (SQLite, older rows)
hand back naive datetimes; those are read as UTC.
"""

from datetime import UTC, datetime


def as_utc(value: datetime | None) -> datetime | None:
    """Return `value` as an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)
