"""Day and week boundary utilities.

Reading days are local calendar days in the reader's timezone; leaderboard
windows are ISO weeks (Monday 00:00 to next Monday 00:00) in one fixed
reference timezone. All instants handled here are timezone-aware.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bookpost.errors import InvalidInputError


@lru_cache(maxsize=256)
def resolve_timezone(name: str | None, default: str = "UTC") -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to ``default`` when unknown."""
    for candidate in (name, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def as_utc(instant: datetime) -> datetime:
    """Normalise a client instant to aware UTC; naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """Calendar day of ``instant`` as seen in ``tz``."""
    return instant.astimezone(tz).date()


def day_start(day: date, tz: ZoneInfo) -> datetime:
    """UTC instant of local midnight opening ``day``."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def split_seconds_by_day(
    start: datetime,
    end: datetime,
    seconds: int,
    tz: ZoneInfo,
) -> list[tuple[date, int]]:
    """Apportion ``seconds`` credited over ``[start, end)`` to local days.

    Each day receives a share proportional to its wall-clock overlap with
    the interval. Shares are integers whose sum is exactly ``seconds``.
    """
    if seconds <= 0:
        return []
    if end <= start:
        return [(local_date(start, tz), seconds)]

    total_span = (end - start).total_seconds()
    pieces: list[tuple[date, float]] = []
    cursor = start
    while cursor < end:
        day = local_date(cursor, tz)
        boundary = min(day_start(day + timedelta(days=1), tz), end)
        pieces.append((day, (boundary - cursor).total_seconds()))
        cursor = boundary

    result: list[tuple[date, int]] = []
    covered = 0.0
    allotted = 0
    for day, span in pieces:
        covered += span
        upto = round(seconds * covered / total_span)
        share = upto - allotted
        allotted = upto
        if share > 0:
            result.append((day, share))
    return result


# ---------------------------------------------------------------------------
# ISO weeks
# ---------------------------------------------------------------------------


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def week_window(week_start: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open settlement window ``[Monday 00:00, next Monday 00:00)`` as UTC instants."""
    return day_start(week_start, tz), day_start(week_start + timedelta(days=7), tz)


def current_week_start(now: datetime, tz: ZoneInfo) -> date:
    """Monday of the window that contains ``now``."""
    return get_monday(local_date(now, tz))


def parse_week_start(value: str | date) -> date:
    """Accept a Monday date ('2026-02-23') or an ISO week ('2026-W09')."""
    if isinstance(value, date):
        parsed = value
    elif "W" in value.upper():
        try:
            parsed = datetime.strptime(value.upper() + "-1", "%G-W%V-%u").date()
        except ValueError as exc:
            raise InvalidInputError(f"Invalid ISO week: {value!r}") from exc
    else:
        try:
            parsed = date.fromisoformat(value)
        except ValueError as exc:
            raise InvalidInputError(f"Invalid date: {value!r}") from exc
    if parsed.weekday() != 0:
        raise InvalidInputError(f"Week start must be a Monday, got {parsed.isoformat()}")
    return parsed


def month_range(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    if not 1 <= month <= 12:
        raise InvalidInputError(f"Invalid month: {month}")
    if not 1970 <= year <= 9998:
        raise InvalidInputError(f"Invalid year: {year}")
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def format_duration(seconds: int) -> str:
    """Format seconds as 'Xh Ym', or 'Ym' under an hour."""
    hours, remainder = divmod(max(0, seconds), 3600)
    minutes = remainder // 60
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"
