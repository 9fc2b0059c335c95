from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MS_PER_HOUR = 3_600_000
# a day of margin at both ends so any zone offset still fits in a datetime
MIN_EPOCH_MS = (datetime(1, 1, 2, tzinfo=timezone.utc) - EPOCH) // timedelta(milliseconds=1)
MAX_EPOCH_MS = (datetime(9999, 12, 30, tzinfo=timezone.utc) - EPOCH) // timedelta(milliseconds=1)

_ABSOLUTE_RE = re.compile(
    r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})[ T]+(\d{1,2}):(\d{2})(?::(\d{2}))?(?:[.,](\d{1,3})\d*)?\s*(Z)?$",
    re.IGNORECASE,
)
_NUMERIC_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
TIME_OF_DAY_RE = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?(?:\.(\d{1,3}))?")
DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class TimeValue:
    ms: int | None
    raw: str


@lru_cache
def _zone(name: str) -> tzinfo:
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    return ZoneInfo(name)


def resolve_timezone(tz: str | tzinfo) -> tzinfo:
    if isinstance(tz, tzinfo):
        return tz
    return _zone(tz)


def datetime_to_ms(value: datetime) -> int:
    return (value - EPOCH) // timedelta(milliseconds=1)


def ms_to_datetime(ms: int, tz: str | tzinfo = "UTC") -> datetime:
    return (EPOCH + timedelta(milliseconds=ms)).astimezone(resolve_timezone(tz))


def _fraction_to_ms(fraction: str | None) -> int:
    if not fraction:
        return 0
    return int(fraction.ljust(3, "0")[:3])


def parse_time_of_day(value: str) -> tuple[int, int, int, int] | None:
    """Find an ``H:MM[:SS[.fff]]`` time of day inside ``value``.

    Returns ``(hour, minute, second, millisecond)`` or ``None``. Range checks
    are left to the caller building the datetime.
    """
    match = TIME_OF_DAY_RE.search(value or "")
    if not match:
        return None
    hour, minute, second, fraction = match.groups()
    return int(hour), int(minute), int(second or 0), _fraction_to_ms(fraction)


def time_of_day_on_date_ms(
    value: str, reference_ms: int, tz: str | tzinfo = "UTC"
) -> int | None:
    """Project a time of day onto the calendar date of ``reference_ms`` in ``tz``."""
    parts = parse_time_of_day(value)
    if parts is None:
        return None
    zone = resolve_timezone(tz)
    try:
        reference = ms_to_datetime(reference_ms, zone)
    except (OverflowError, ValueError):
        return None
    return _time_on_date_ms(reference.date(), parts, zone)


def _time_on_date_ms(day: date, parts: tuple[int, int, int, int], zone: tzinfo) -> int | None:
    hour, minute, second, millis = parts
    try:
        local_dt = datetime(
            day.year, day.month, day.day, hour, minute, second, millis * 1000, tzinfo=zone
        )
    except ValueError:
        return None
    return datetime_to_ms(local_dt)


def parse_time_value(
    raw: str | None,
    tz: str | tzinfo = "UTC",
    reference_date: date | None = None,
) -> TimeValue:
    """Parse one timestamp cell into epoch milliseconds.

    Accepts ``YYYY-MM-DD HH:MM[:SS[.fff]]`` datetimes (local to ``tz`` unless
    suffixed with ``Z``), plain numbers (already epoch milliseconds) and, when
    ``reference_date`` is given, a bare ``H:MM[:SS[.fff]]`` time of day.
    Anything else yields ``ms=None``; this function never raises.
    """
    text = "" if raw is None else str(raw)
    value = text.strip()
    if not value:
        return TimeValue(None, text)

    match = _ABSOLUTE_RE.match(value)
    if match:
        year, month, day, hour, minute, second, fraction, zulu = match.groups()
        zone = timezone.utc if zulu else resolve_timezone(tz)
        try:
            local_dt = datetime(
                int(year),
                int(month),
                int(day),
                int(hour),
                int(minute),
                int(second or 0),
                _fraction_to_ms(fraction) * 1000,
                tzinfo=zone,
            )
        except ValueError:
            return TimeValue(None, text)
        return TimeValue(datetime_to_ms(local_dt), text)

    if _NUMERIC_RE.match(value):
        number = float(value)
        if not math.isfinite(number) or not MIN_EPOCH_MS <= number <= MAX_EPOCH_MS:
            return TimeValue(None, text)
        return TimeValue(int(round(number)), text)

    if reference_date is not None and TIME_OF_DAY_RE.fullmatch(value):
        parts = parse_time_of_day(value)
        return TimeValue(_time_on_date_ms(reference_date, parts, resolve_timezone(tz)), text)

    return TimeValue(None, text)


def extract_time_of_day(raw: str | None) -> str:
    value = (raw or "").strip()
    match = TIME_OF_DAY_RE.search(value)
    if not match:
        return value
    return match.group(0)


def format_duration(ms: int | None) -> str:
    if ms is None:
        return ""
    total_seconds = int(ms) // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def normalize_cutoff_ms(value: int | float | str | None) -> int | None:
    """Interpret a stored cutoff: small values are hours, large ones milliseconds."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number <= 48:
        return int(round(number * MS_PER_HOUR))
    return int(number)
