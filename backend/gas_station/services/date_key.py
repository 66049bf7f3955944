"""
Bangkok calendar-day keys (YYYY-MM-DD).

Every daily and shift record is partitioned by the Bangkok day it belongs to,
not by its raw UTC timestamp. Bangkok is a fixed UTC+7 with no DST, so the
conversion is a constant offset and no timezone database is consulted.
Instants inside the system are naive UTC datetimes; aware ones are converted.
"""
import calendar
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union

from gas_station.core.errors import InvalidDateKey

BANGKOK_OFFSET = timedelta(hours=7)
# 00:00 in Bangkok is 17:00 UTC of the previous day.
_BANGKOK_MIDNIGHT_UTC = time(17, 0)
_ONE_MS = timedelta(milliseconds=1)

DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Instant = Union[datetime, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(instant: Instant) -> datetime:
    if isinstance(instant, str):
        instant = datetime.fromisoformat(instant.strip().replace("Z", "+00:00"))
    if instant.tzinfo is not None:
        try:
            instant = instant.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            raise InvalidDateKey(instant.isoformat(), "instant is outside the supported calendar")
    return instant


def to_date_key(instant: Instant) -> str:
    """Bangkok day of a UTC instant."""
    utc = as_utc(instant)
    day = utc.date()
    # Same as adding 7h and truncating, without overflowing near datetime.max.
    if utc.time() >= _BANGKOK_MIDNIGHT_UTC:
        if day == date.max:
            raise InvalidDateKey(utc.isoformat(), "Bangkok day is past 9999-12-31")
        day += timedelta(days=1)
    return day.isoformat()


def validate_date_key(value) -> str:
    if not isinstance(value, str) or not DATE_KEY_RE.match(value):
        raise InvalidDateKey(value)
    try:
        date.fromisoformat(value)
    except ValueError:
        raise InvalidDateKey(value)
    return value


def is_valid_date_key(value) -> bool:
    try:
        validate_date_key(value)
    except InvalidDateKey:
        return False
    return True


def date_key_to_date(date_key: str) -> date:
    return date.fromisoformat(validate_date_key(date_key))


def date_key_to_utc_range(date_key: str) -> Tuple[datetime, datetime]:
    """
    UTC bounds of a Bangkok day, both inclusive.
    "2026-01-10" -> (2026-01-09 17:00:00, 2026-01-10 16:59:59.999)
    """
    day = date_key_to_date(date_key)
    if day == date.min:
        # The day starts before datetime.min; nothing earlier is representable.
        start = datetime.min
    else:
        start = datetime.combine(day, time.min) - BANGKOK_OFFSET
    end = datetime.combine(day, _BANGKOK_MIDNIGHT_UTC) - _ONE_MS
    return start, end


def date_range_utc(from_key: str, to_key: str) -> Tuple[datetime, datetime]:
    """UTC bounds from the start of from_key to the end of to_key."""
    start, _ = date_key_to_utc_range(from_key)
    _, end = date_key_to_utc_range(to_key)
    if end < start:
        raise InvalidDateKey(f"{from_key}..{to_key}", "range ends before it starts")
    return start, end


def month_date_keys(year: int, month: int) -> Tuple[str, str]:
    """First and last Bangkok day of a month."""
    if not 1 <= month <= 12:
        raise InvalidDateKey(f"{year:04d}-{month:02d}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1).isoformat(), date(year, month, last_day).isoformat()


def is_same_date_key(a: Instant, b: Instant) -> bool:
    """Accepts instants or date keys on either side."""
    return _key_of(a) == _key_of(b)


def _key_of(value: Instant) -> str:
    if isinstance(value, str) and DATE_KEY_RE.match(value):
        return validate_date_key(value)
    return to_date_key(value)


def today(now: Optional[datetime] = None) -> str:
    return to_date_key(now if now is not None else utc_now())

