"""Weekly business-hours calculator with optional public holiday support.

Schedules are per organization: one window per weekday (0 = Sunday), each
with an enabled flag and a [start, end) wall-clock range in the organization's
timezone. Minute-level precision, DST-safe via zoneinfo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterable
from zoneinfo import ZoneInfo

import holidays

from orchestrator.core.constants import DAYS_IN_WEEK

# Extra days scanned when a holiday calendar can knock out enabled days
HOLIDAY_LOOKAHEAD_DAYS = 21


class NoBusinessHoursConfigured(Exception):
    """The organization has no enabled business day to send in."""


@dataclass(frozen=True)
class DayWindow:
    enabled: bool
    start: time
    end: time

    def contains(self, value: time) -> bool:
        return self.enabled and self.start <= value < self.end


CLOSED = DayWindow(enabled=False, start=time(0, 0), end=time(0, 0))


@dataclass(frozen=True)
class WeeklySchedule:
    """Seven day windows keyed by Sunday-based weekday."""

    days: dict[int, DayWindow] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: Iterable) -> "WeeklySchedule":
        """Build from BusinessHours-like rows (day_of_week, is_enabled, start_time, end_time)."""
        days = {}
        for row in rows:
            days[row.day_of_week] = DayWindow(
                enabled=bool(row.is_enabled),
                start=row.start_time,
                end=row.end_time,
            )
        return cls(days=days)

    def window(self, day_of_week: int) -> DayWindow:
        return self.days.get(day_of_week, CLOSED)

    def has_enabled_day(self) -> bool:
        return any(w.enabled and w.start < w.end for w in self.days.values())


def sunday_based_weekday(dt: datetime | date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % DAYS_IN_WEEK


@lru_cache(maxsize=32)
def get_holidays(country: str, year: int) -> frozenset[date]:
    """Cache holiday sets per (country, year)."""
    return frozenset(holidays.country_holidays(country, years=year).keys())


def is_holiday(day: date, country: str | None) -> bool:
    if not country:
        return False
    return day in get_holidays(country, day.year)


def is_open(schedule: WeeklySchedule, local: datetime, holiday_country: str | None = None) -> bool:
    """Check if a local datetime falls inside the schedule."""
    if is_holiday(local.date(), holiday_country):
        return False
    return schedule.window(sunday_based_weekday(local)).contains(local.time())


def next_open_instant(
    schedule: WeeklySchedule,
    candidate: datetime,
    tz_name: str,
    holiday_country: str | None = None,
) -> datetime:
    """
    Return the earliest instant >= candidate inside the schedule.

    Args:
        schedule: Weekly windows
        candidate: Timezone-aware instant (naive values are read as UTC)
        tz_name: IANA timezone the windows are expressed in
        holiday_country: Optional country whose public holidays are closed days

    Returns:
        UTC datetime; the candidate itself (converted to UTC) when already open

    Raises:
        NoBusinessHoursConfigured: no day of the week is enabled
    """
    if not schedule.has_enabled_day():
        raise NoBusinessHoursConfigured("No business day is enabled for this organization")

    if candidate.tzinfo is None:
        candidate = candidate.replace(tzinfo=timezone.utc)
    tz = ZoneInfo(tz_name)
    local = candidate.astimezone(tz)

    if is_open(schedule, local, holiday_country):
        return candidate.astimezone(timezone.utc)

    # Today plus one full week covers every weekday once
    max_days = DAYS_IN_WEEK + 1
    if holiday_country:
        max_days += HOLIDAY_LOOKAHEAD_DAYS

    today = local.date()
    for offset in range(max_days):
        day = today + timedelta(days=offset)
        window = schedule.window(sunday_based_weekday(day))
        if not window.enabled or window.start >= window.end:
            continue
        if is_holiday(day, holiday_country):
            continue
        opens_at = datetime.combine(day, window.start, tzinfo=tz)
        if offset == 0 and local >= opens_at:
            # Past today's window (inside it would have returned above)
            continue
        return opens_at.astimezone(timezone.utc)

    raise NoBusinessHoursConfigured(
        f"No open business window within {max_days} days"
    )
