"""Declarative base and shared column types."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_bounds(on_date: date) -> tuple[datetime, datetime]:
    """UTC half-open interval covering ``on_date``."""
    start = datetime.combine(on_date, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime stored as naive UTC.

    SQLite has no timezone support, so values are normalized to UTC on the
    way in and tagged as UTC on the way out. Lexical comparison of the stored
    strings is then chronological.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
