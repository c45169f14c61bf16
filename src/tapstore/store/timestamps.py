"""Instant handling for stored timestamps and report predicates.

Transactions store UTC instants as `YYYY-MM-DDTHH:MM:SS.mmmZ`. Every bound
used in a predicate is rendered the same way so that plain string
comparison in SQL is chronological.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

Instant = Union[datetime, date, str]


def to_utc(value: Instant) -> datetime:
    """Coerce a datetime, date or ISO string into an aware UTC datetime.

    Naive datetimes are taken as UTC; a bare date means midnight UTC.
    """
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(f"Not an ISO-8601 date or datetime: {value!r}") from exc
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise TypeError(f"Unsupported instant type: {type(value).__name__}")


def iso_timestamp(value: Instant) -> str:
    dt = to_utc(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def iso_now() -> str:
    return iso_timestamp(datetime.now(timezone.utc))


def end_of_day(value: Instant) -> datetime:
    """Inclusive end bound: one day later minus one second.

    For a midnight instant this is 23:59:59 of the same calendar day.
    """
    return to_utc(value) + timedelta(days=1) - timedelta(seconds=1)


def optional_utc(value: Optional[Instant]) -> Optional[datetime]:
    return to_utc(value) if value is not None and value != "" else None
