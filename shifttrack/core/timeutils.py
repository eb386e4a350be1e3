"""
Timezone-aware clock reads and HH:MM / YYYY-MM-DD helpers.

Shift times are stored as bare ``HH:MM`` strings in the timezone the shift
was recorded in, and dates as ``YYYY-MM-DD``.  The system clock is read only
through :func:`_clock`, so every other function here is deterministic once
``at`` (or a pinned clock) is supplied.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shifttrack.core.config import settings
from shifttrack.core.exceptions import MalformedTimeError, ValidationError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
END_OF_DAY = "23:59"

# Day rollover: an early-morning time compared against an afternoon/evening
# reference is taken to belong to the following day.
ROLLOVER_MAX_HOUR = 8
ROLLOVER_MIN_REFERENCE_HOUR = 15

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")
_TZ_ID_RE = re.compile(r"^([A-Za-z]+(?:/[A-Za-z0-9_+\-]+)+)")


def _clock() -> datetime:
    """Current instant in UTC."""
    return datetime.now(timezone.utc)


def now_utc() -> datetime:
    """Read the clock once; pass the result as ``at`` to the helpers below."""
    return _clock()


# ── HH:MM parsing ───────────────────────────────────────────────────
def parse_hhmm(value: object) -> tuple[int, int]:
    """Return ``(hour, minute)`` or raise :class:`MalformedTimeError`."""
    if isinstance(value, (datetime, time)):
        return value.hour, value.minute
    if not isinstance(value, str):
        raise MalformedTimeError(value)
    match = _HHMM_RE.match(value.strip())
    if match is None:
        raise MalformedTimeError(value)
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise MalformedTimeError(value)
    return hour, minute


def to_minutes(value: object) -> int:
    hour, minute = parse_hhmm(value)
    return hour * 60 + minute


def is_valid_hhmm(value: object) -> bool:
    try:
        parse_hhmm(value)
    except MalformedTimeError:
        return False
    return True


def format_minutes(minutes: int) -> str:
    minutes %= MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_hhmm(value: object) -> str:
    """Zero-pad a valid time (``9:05`` -> ``09:05``)."""
    return format_minutes(to_minutes(value))


# ── Comparison ──────────────────────────────────────────────────────
def minutes_after(current: object, reference: object, *, rollover: bool = True) -> int:
    """Minutes from *reference* to *current* (negative when earlier).

    With *rollover*, a *current* hour in [0, 8] against a *reference* hour
    of 15 or later is moved to the next day.  Raises
    :class:`MalformedTimeError` on unparseable input.
    """
    current_min = to_minutes(current)
    reference_min = to_minutes(reference)
    if (
        rollover
        and current_min // 60 <= ROLLOVER_MAX_HOUR
        and reference_min // 60 >= ROLLOVER_MIN_REFERENCE_HOUR
    ):
        current_min += MINUTES_PER_DAY
    return current_min - reference_min


def is_after(current: object, reference: object, *, rollover: bool = True) -> bool:
    """Strictly after, with day rollover. Unparseable input -> ``False``."""
    try:
        return minutes_after(current, reference, rollover=rollover) > 0
    except MalformedTimeError as exc:
        logger.warning("is_after(%r, %r): %s", current, reference, exc)
        return False


def is_more_than_minutes_after(
    current: object, reference: object, minutes: int, *, rollover: bool = True
) -> bool:
    try:
        return minutes_after(current, reference, rollover=rollover) > minutes
    except MalformedTimeError as exc:
        logger.warning("is_more_than_minutes_after(%r, %r): %s", current, reference, exc)
        return False


def segment_duration(start: object, end: object) -> float:
    """Hours between two HH:MM values, 2 dp; an earlier end crossed midnight."""
    diff = to_minutes(end) - to_minutes(start)
    if diff < 0:
        diff += MINUTES_PER_DAY
    return round(diff / 60, 2)


# ── Timezones ───────────────────────────────────────────────────────
def extract_timezone_id(raw: object) -> str | None:
    """``"Asia/Kolkata (India Standard Time)"`` -> ``"Asia/Kolkata"``."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    match = _TZ_ID_RE.match(text)
    return match.group(1) if match else text


def get_zone(name: object) -> ZoneInfo | None:
    key = extract_timezone_id(name)
    if not key:
        return None
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError: keys naming a zoneinfo directory, e.g. "America"
        logger.debug("Unknown timezone %r", name)
        return None


def resolve_timezone(*candidates: object) -> str:
    """First valid timezone among *candidates*, else ``DEFAULT_TIMEZONE``."""
    for candidate in candidates:
        key = extract_timezone_id(candidate)
        if key and get_zone(key) is not None:
            return key
    return settings.DEFAULT_TIMEZONE


def _zone_or_default(name: object) -> ZoneInfo | timezone:
    zone = get_zone(name)
    if zone is None:
        if name:
            logger.warning("Invalid timezone %r, using %s", name, settings.DEFAULT_TIMEZONE)
        zone = get_zone(settings.DEFAULT_TIMEZONE)
    return zone or timezone.utc


def _localize(tz: object, at: datetime | None) -> datetime:
    moment = at or _clock()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(_zone_or_default(tz))


def current_time_in(tz: object = None, at: datetime | None = None) -> str:
    """``HH:MM`` now (or at *at*) in *tz*; never raises."""
    return _localize(tz, at).strftime("%H:%M")


def current_date_in(tz: object = None, at: datetime | None = None) -> str:
    """``YYYY-MM-DD`` now (or at *at*) in *tz*; never raises."""
    return _localize(tz, at).strftime("%Y-%m-%d")


def format_for_display(
    value: object,
    tz: object,
    reference_tz: object = None,
    on: date | str | None = None,
) -> str | None:
    """Convert a stored HH:MM from *reference_tz* into *tz* for display.

    Returns the input unchanged when it cannot be parsed or *tz* is absent
    or unknown.  *on* pins the calendar day used for the DST offset.
    """
    if value is None:
        return None
    text = str(value).strip()
    target = get_zone(tz) if tz else None
    if target is None:
        return text
    try:
        hour, minute = parse_hhmm(text)
    except MalformedTimeError:
        return text
    source = _zone_or_default(reference_tz or settings.DEFAULT_TIMEZONE)
    if on is None:
        day = _localize(reference_tz, None).date()
    elif isinstance(on, str):
        try:
            day = date.fromisoformat(on)
        except ValueError:
            return text
    else:
        day = on
    local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=source)
    return local.astimezone(target).strftime("%H:%M")


# ── Dates ───────────────────────────────────────────────────────────
def normalize_date(value: object) -> str:
    """Return ``YYYY-MM-DD`` or raise :class:`ValidationError`."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value or "").strip()
    if len(text) > 10 and text[10] in "T ":
        text = text[:10]
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from None


class Period(str, Enum):
    """Date-range presets offered by the shift history view."""

    ALL_TIME = "All Time"
    TODAY = "Today"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"
    THIS_QUARTER = "This Quarter"
    THIS_HALF_YEAR = "This Half Year"
    THIS_YEAR = "This Year"
    LAST_7_DAYS = "Last 7 Days"
    LAST_30_DAYS = "Last 30 Days"
    LAST_90_DAYS = "Last 90 Days"
    CUSTOM_RANGE = "Custom Range"


def _month_span(year: int, first_month: int, months: int) -> tuple[date, date]:
    last_month = first_month + months - 1
    _, last_day = calendar.monthrange(year, last_month)
    return date(year, first_month, 1), date(year, last_month, last_day)


def period_bounds(
    period: Period,
    today: date,
    custom_start: object = None,
    custom_end: object = None,
) -> tuple[date, date] | None:
    """Inclusive ``(start, end)`` for *period*; ``None`` means unbounded."""
    if period is Period.ALL_TIME:
        return None
    if period is Period.TODAY:
        return today, today
    if period is Period.THIS_WEEK:
        # Weeks start on Sunday.
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period is Period.THIS_MONTH:
        return _month_span(today.year, today.month, 1)
    if period is Period.THIS_QUARTER:
        return _month_span(today.year, (today.month - 1) // 3 * 3 + 1, 3)
    if period is Period.THIS_HALF_YEAR:
        return _month_span(today.year, (today.month - 1) // 6 * 6 + 1, 6)
    if period is Period.THIS_YEAR:
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if period is Period.LAST_7_DAYS:
        return today - timedelta(days=7), today
    if period is Period.LAST_30_DAYS:
        return today - timedelta(days=30), today
    if period is Period.LAST_90_DAYS:
        return today - timedelta(days=90), today
    # Custom range without both ends shows everything.
    if not custom_start or not custom_end:
        return None
    return (
        date.fromisoformat(normalize_date(custom_start)),
        date.fromisoformat(normalize_date(custom_end)),
    )
