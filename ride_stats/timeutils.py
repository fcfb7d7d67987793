"""Timezone handling and calendar windows (week / month) for aggregation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Final, Literal

from zoneinfo import ZoneInfo

Period = Literal["week", "month"]
PERIODS: Final[tuple[str, ...]] = ("week", "month")


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Europe/Moscow".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid timezone: {tz_name!r}. Example: Europe/Moscow") from exc


def dt_from_epoch_s(epoch_s: float, tz_name: str) -> datetime:
    """Convert epoch seconds to a timezone-aware datetime."""

    return datetime.fromtimestamp(epoch_s, tz=tzinfo_from_name(tz_name))


def _floor_epoch_s(dt: datetime) -> int:
    return int(math.floor(dt.timestamp()))


def _localize(reference: datetime, tz: tzinfo) -> datetime:
    # naive references are read as wall-clock time in the window's timezone
    if reference.tzinfo is None:
        return reference.replace(tzinfo=tz)
    return reference.astimezone(tz)


def validate_period(period: str) -> Period:
    """Normalize a period name.

    Raises:
        ValueError: If the name is not "week" or "month".
    """

    p = str(period).strip().lower()
    if p not in PERIODS:
        raise ValueError(f"Unknown period: {period!r}. Use 'week' or 'month'.")
    return p  # type: ignore[return-value]


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """An inclusive ``[start_unix, end_unix]`` calendar window split into day buckets.

    Attributes:
        period: "week" or "month".
        start_unix: First second of the window (local midnight of the first day).
        end_unix: Last whole second of the window (23:59:59 of the last day).
        bucket_count: 7 for a week, number of days for a month.
        tz_name: IANA timezone the calendar days are evaluated in.
    """

    period: Period
    start_unix: int
    end_unix: int
    bucket_count: int
    tz_name: str

    def contains(self, unix_ts: int) -> bool:
        return self.start_unix <= unix_ts <= self.end_unix

    def bucket_index_of(self, unix_ts: int) -> int:
        """Map a timestamp to its day bucket.

        Week buckets run Monday=0 .. Sunday=6; month buckets run day 1 -> 0.
        """

        local = dt_from_epoch_s(unix_ts, self.tz_name)
        if self.period == "week":
            return local.weekday()
        return local.day - 1


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        nxt = date(year + 1, 1, 1)
    else:
        nxt = date(year, month + 1, 1)
    return (nxt - date(year, month, 1)).days


def resolve_window(period: str, reference: datetime, tz_name: str) -> TimeWindow:
    """Resolve the week or month containing ``reference``.

    Args:
        period: "week" (Monday..Sunday) or "month" (1st..last day).
        reference: Any instant inside the wanted window.
        tz_name: IANA timezone for calendar boundaries.

    Returns:
        TimeWindow with inclusive unix-second bounds.

    Raises:
        ValueError: Unknown period or timezone.
    """

    p = validate_period(period)
    tz = tzinfo_from_name(tz_name)
    local_day = _localize(reference, tz).date()

    if p == "week":
        first = local_day - timedelta(days=local_day.weekday())
        last = first + timedelta(days=6)
        count = 7
    else:
        count = _days_in_month(local_day.year, local_day.month)
        first = local_day.replace(day=1)
        last = local_day.replace(day=count)

    start_dt = datetime.combine(first, time.min, tzinfo=tz)
    end_dt = datetime.combine(last, time.max, tzinfo=tz)
    return TimeWindow(
        period=p,
        start_unix=_floor_epoch_s(start_dt),
        end_unix=_floor_epoch_s(end_dt),
        bucket_count=count,
        tz_name=tz_name,
    )


def shift_reference(period: str, reference: datetime, offset: int) -> datetime:
    """Move ``reference`` by whole periods.

    ``offset=0`` keeps the current window, ``offset=-1`` lands in the
    immediately preceding week/month.
    """

    p = validate_period(period)
    if p == "week":
        return reference + timedelta(weeks=offset)
    years, month0 = divmod(reference.month - 1 + offset, 12)
    return reference.replace(year=reference.year + years, month=month0 + 1, day=1)


def parse_day(text: str) -> date:
    """Parse a calendar date given as "DD.MM.YYYY" or "YYYY-MM-DD".

    Raises:
        ValueError: If neither format matches.
    """

    s = text.strip()
    try:
        return datetime.strptime(s, "%d.%m.%Y").date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"Cannot parse date: {text!r}. Expected DD.MM.YYYY, e.g. 30.07.2024") from exc


def day_range_unix(start_day: date, end_day: date, tz_name: str) -> tuple[int, int]:
    """Convert an inclusive date range to ``[start 00:00:00, end 23:59:59]`` unix seconds."""

    tz = tzinfo_from_name(tz_name)
    start_dt = datetime.combine(start_day, time.min, tzinfo=tz)
    end_dt = datetime.combine(end_day, time(23, 59, 59), tzinfo=tz)
    return _floor_epoch_s(start_dt), _floor_epoch_s(end_dt)
