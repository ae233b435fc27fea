"""UTC helpers shared by the local store, sync and domain services."""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union


UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def midnight_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _normalize_fraction(s: str) -> str:
    """Pad or trim fractional seconds to 6 digits."""

    digits = s[:6]
    if len(digits) < 6:
        digits = digits + "0" * (6 - len(digits))
    return digits


def parse_timestamp(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 / RFC3339 string into a timezone-aware UTC datetime.

    Date-only values (``2024-03-01``) are read as midnight UTC. Anything that
    cannot be parsed yields ``None``.
    """

    if not s:
        return None

    value = s.strip()
    if not value:
        return None

    if len(value) == 10:
        try:
            return midnight_utc(date.fromisoformat(value))
        except ValueError:
            return None

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    if "." in value:
        head, tail = value.split(".", 1)
        tz_sign = "+"
        tz_suffix = "00:00"
        if "+" in tail:
            frac, tz_suffix = tail.split("+", 1)
            tz_sign = "+"
        elif "-" in tail:
            frac, tz_suffix = tail.split("-", 1)
            tz_sign = "-"
        else:
            frac = tail
        frac = _normalize_fraction(frac)
        value = f"{head}.{frac}{tz_sign}{tz_suffix}"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def to_iso_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to ISO-8601 in UTC with a ``Z`` suffix."""

    if dt is None:
        return None
    value = ensure_utc(dt)
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def today_iso(now: Optional[datetime] = None) -> str:
    """Return the calendar day (``YYYY-MM-DD``) of ``now`` in UTC."""

    current = ensure_utc(now) or utc_now()
    return current.date().isoformat()


def as_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    parsed = parse_timestamp(str(value))
    return parsed.date() if parsed else None


def is_past(value: Union[str, date, datetime, None], now: Optional[datetime] = None) -> bool:
    """True when ``value`` (a day or a moment) lies strictly before ``now``."""

    if value is None:
        return False
    current = ensure_utc(now) or utc_now()
    if isinstance(value, datetime):
        return ensure_utc(value) < current
    day = as_date(value)
    if day is None:
        return False
    return day < current.date()


__all__ = [
    "UTC",
    "as_date",
    "ensure_utc",
    "is_past",
    "midnight_utc",
    "parse_timestamp",
    "to_iso_utc",
    "today_iso",
    "utc_now",
]
