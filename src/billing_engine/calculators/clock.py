"""Clock-time and civil-calendar primitives.

Wall-clock times are integers counting minutes since local midnight
(0-1439). ``INVALID_TIME`` marks an unparseable or absent value; parsing
never raises.

Entries are stored as UTC instants but compared by their civil date in a
single fixed timezone (``Settings.civil_timezone``).
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from billing_engine.calculators.types import BillingPeriod

INVALID_TIME = -1
MINUTES_PER_DAY = 24 * 60
DEFAULT_CIVIL_TIMEZONE = "America/New_York"

_TWELVE_HOUR = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp])\.?\s*(?:[Mm]\.?)?$")
_TWENTY_FOUR_HOUR = re.compile(r"^(\d{1,2}):(\d{2})$")


# ===== Clock times =====


def parse_time(text: object) -> int:
    """Parse ``h:mm AM/PM`` or ``HH:mm`` into minutes since midnight.

    Returns ``INVALID_TIME`` for anything that is not a valid clock time.
    """
    if not isinstance(text, str):
        return INVALID_TIME
    value = text.strip()

    match = _TWELVE_HOUR.match(value)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if not 1 <= hour <= 12 or minute > 59:
            return INVALID_TIME
        hour %= 12
        if match.group(3).upper() == "P":
            hour += 12
        return hour * 60 + minute

    match = _TWENTY_FOUR_HOUR.match(value)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            return INVALID_TIME
        return hour * 60 + minute

    return INVALID_TIME


def is_valid_time(minutes: int) -> bool:
    return 0 <= minutes < MINUTES_PER_DAY


def to_24_hour(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    if not is_valid_time(minutes):
        return "--:--"
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_12_hour(minutes: int) -> str:
    """Format minutes since midnight as ``h:MM AM``/``h:MM PM``."""
    if not is_valid_time(minutes):
        return "--:--"
    hour, minute = divmod(minutes, 60)
    suffix = "PM" if hour >= 12 else "AM"
    display = hour % 12 or 12
    return f"{display}:{minute:02d} {suffix}"


def ranges_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def duration(start: int, end: int) -> int:
    """Same-day duration in minutes; zero unless ``end > start``."""
    if not is_valid_time(start) or not is_valid_time(end):
        return 0
    return end - start if end > start else 0


def validate_range(start: int, end: int) -> str | None:
    """Return an error message for an unusable interval, or None."""
    if not is_valid_time(start):
        return "Invalid start time"
    if not is_valid_time(end):
        return "Invalid end time"
    if end <= start:
        return "End time must be after start time"
    return None


# ===== Civil calendar =====


@lru_cache(maxsize=8)
def get_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or DEFAULT_CIVIL_TIMEZONE)


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are UTC instants (SQLite drops the offset)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def civil_date(value: date | datetime | str, tz: str | None = None) -> date:
    """Civil calendar date of a stored instant or supplied day.

    A plain ``date`` (or ``YYYY-MM-DD`` string) is already a civil day.
    Datetimes are instants and are converted into the civil timezone.

    Raises:
        ValueError: If a string is not ISO formatted
        TypeError: For unsupported values
    """
    if isinstance(value, datetime):
        return _as_utc(value).astimezone(get_zone(tz)).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return civil_date(datetime.fromisoformat(text), tz)
    raise TypeError(f"Cannot derive a civil date from {type(value).__name__}")


def civil_midnight_utc(day: date, tz: str | None = None) -> datetime:
    """UTC instant of civil midnight; the canonical stored form of a day."""
    return datetime.combine(day, time.min, tzinfo=get_zone(tz)).astimezone(timezone.utc)


def civil_day_bounds_utc(day: date, tz: str | None = None) -> tuple[datetime, datetime]:
    """Half-open UTC bounds ``[start, end)`` of a civil day."""
    return civil_midnight_utc(day, tz), civil_midnight_utc(day + timedelta(days=1), tz)


def civil_datetime(day: date, minutes: int, tz: str | None = None) -> datetime:
    """Aware datetime for a civil day at a minutes-since-midnight time."""
    hour, minute = divmod(minutes, 60)
    return datetime.combine(day, time(hour, minute), tzinfo=get_zone(tz))


def civil_instant(day: date, minutes: int, tz: str | None = None) -> datetime:
    """UTC instant of a civil wall-clock time.

    An ambiguous time (clocks set back) resolves to its first occurrence.
    A time skipped by clocks moving forward resolves to the first valid
    instant after the gap.
    """
    zone = get_zone(tz)
    local = civil_datetime(day, minutes, tz)
    instant = local.astimezone(timezone.utc)
    if instant.astimezone(zone).replace(tzinfo=None) == local.replace(tzinfo=None):
        return instant

    # Inside a gap: fold=1 maps before the transition, fold=0 after it
    low = local.replace(fold=1).astimezone(timezone.utc)
    before = low.astimezone(zone).utcoffset()
    lo, hi = 0, int((instant - low).total_seconds() // 60)
    while lo < hi:
        mid = (lo + hi) // 2
        if (low + timedelta(minutes=mid)).astimezone(zone).utcoffset() != before:
            hi = mid
        else:
            lo = mid + 1
    return low + timedelta(minutes=lo)


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def week_end(day: date) -> date:
    """Sunday of the week containing ``day``."""
    return week_start(day) + timedelta(days=6)


def week_key(day: date) -> str:
    """Deterministic week identifier: ISO date of the week's Monday."""
    return week_start(day).isoformat()


def week_period(day: date) -> BillingPeriod:
    return BillingPeriod(start=week_start(day), end=week_end(day))


def weekly_billing_period(
    reference: datetime | None = None,
    tz: str | None = None,
    completed: bool = False,
) -> BillingPeriod:
    """Monday-Sunday billing week containing ``reference`` (default: now).

    With ``completed=True`` the most recently finished week is returned
    instead, which is what a scheduled weekly run bills.
    """
    now = reference or datetime.now(timezone.utc)
    period = week_period(civil_date(now, tz))
    return period.previous() if completed else period
