"""Timestamp helpers shared by the SQLite document store and task queue.

Every instant is stored as a UTC ISO-8601 string with microseconds, so
string comparison in SQL (``scheduled_at <= ?``) matches time order.
Naive datetimes are treated as UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone


def to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)  # noqa: UP017
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")  # noqa: UP017


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)  # noqa: UP017
    return parsed
