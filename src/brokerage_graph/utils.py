"""Shared utilities for the Brokerage Graph core."""

from datetime import date, datetime, timezone
from uuid import UUID

import fastuuid


def uuid7() -> UUID:
    """Generate a time-ordered UUIDv7 (RFC 9562)."""
    return UUID(str(fastuuid.uuid7()))


def new_id(prefix: str) -> str:
    """Prefixed, time-ordered entity id, e.g. ``offer_0192...``."""
    return f"{prefix}_{uuid7().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return utc_now().date()


def as_utc_datetime(value: date | datetime) -> datetime:
    """
    Normalize a date or datetime to an aware UTC datetime.

    Plain dates map to midnight UTC; naive datetimes are assumed to be UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
