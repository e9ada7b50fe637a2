"""
Day keys for streak accounting.

An instant maps to exactly one calendar day in a single pinned reference
timezone. The host's local zone is never consulted.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_KEY_FORMAT = "%Y-%m-%d"


@lru_cache(maxsize=32)
def resolve_timezone(name: str) -> tzinfo:
    """Return the tzinfo for an IANA zone name, raising ValueError if unknown."""
    if not name or name.upper() in {"UTC", "Z", "ETC/UTC"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown reference timezone: {name!r}") from exc


def normalize_day(moment: datetime, reference_tz: tzinfo = timezone.utc) -> date:
    """Map an instant to its calendar day in the reference timezone.

    Naive datetimes are taken to be UTC instants.
    """
    aware = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return aware.astimezone(reference_tz).date()


def is_consecutive(earlier: date, later: date) -> bool:
    return later - earlier == timedelta(days=1)


def days_between(earlier: date, later: date) -> int:
    """Whole days from earlier to later (negative when later precedes earlier)."""
    return (later - earlier).days


def day_key(day: date) -> str:
    return day.strftime(DAY_KEY_FORMAT)


def parse_day_key(value: str) -> date:
    return datetime.strptime(value, DAY_KEY_FORMAT).date()
