"""
Effective opening hours for a calendar date.

Precedence, highest first:
1. one-off overrides (UTC ranges intersecting the local day, latest id wins)
2. recurring schedules covering the date with an entry for its weekday (latest id wins)
3. the default weekday template
4. nothing configured: closed
"""

import calendar
from datetime import date

import structlog

from ..schemas import DayHours, DefaultScheduleEntry, HoursSource, OverrideType
from .timezones import DAY_END, DAY_START, TimeZoneContext

logger = structlog.get_logger(__name__)


class OverrideResolver:
    def __init__(self, store, timezones: TimeZoneContext):
        self.store = store
        self.timezones = timezones
        self._memo: dict[date, DayHours] = {}

    def resolve_day(self, day: date) -> DayHours:
        cached = self._memo.get(day)
        if cached is not None:
            return cached
        hours = self._resolve(day)
        self._memo[day] = hours
        logger.debug("day_hours_resolved", day=day.isoformat(), source=hours.source.value, is_closed=hours.is_closed)
        return hours

    def resolve_month(self, year: int, month: int) -> dict[date, DayHours]:
        if not 1 <= int(month) <= 12:
            raise ValueError("Invalid month, expected 1-12")
        _, days_in_month = calendar.monthrange(int(year), int(month))
        return {
            date(year, month, d): self.resolve_day(date(year, month, d))
            for d in range(1, days_in_month + 1)
        }

    def _resolve(self, day: date) -> DayHours:
        day_start_utc, day_end_utc = self.timezones.local_day_bounds_utc(day)
        overrides = self.store.get_overrides_covering(day_start_utc, day_end_utc)
        if overrides:
            winner = max(overrides, key=lambda o: o.id)
            if winner.override_type == OverrideType.CLOSED:
                return DayHours.closed(HoursSource.OVERRIDE, label=winner.display_label)
            return DayHours(
                is_closed=False,
                open_time=DAY_START,
                close_time=DAY_END,
                source=HoursSource.OVERRIDE,
                label=winner.display_label,
            )

        dow = day.isoweekday()
        matching = [
            s for s in self.store.get_recurring_schedules_covering(day)
            if s.start_date <= day <= s.end_date and s.entry_for(dow) is not None
        ]
        if matching:
            schedule = max(matching, key=lambda s: s.id)
            return self._from_entry(day, schedule.entry_for(dow), HoursSource.SCHEDULE, schedule.name)

        default = self.store.get_default_weekday(dow)
        if default is not None:
            return self._from_entry(day, default, HoursSource.DEFAULT)

        return DayHours.closed(HoursSource.NONE)

    def _from_entry(
        self,
        day: date,
        entry: DefaultScheduleEntry,
        source: HoursSource,
        label: str | None = None,
    ) -> DayHours:
        if entry.is_closed:
            return DayHours.closed(source, label=label)
        if entry.open_time is None or entry.close_time is None or entry.open_time > entry.close_time:
            logger.warning(
                "invalid_day_configuration",
                day=day.isoformat(),
                source=source.value,
                open_time=str(entry.open_time),
                close_time=str(entry.close_time),
            )
            return DayHours.closed(source, label=label)
        return DayHours(
            is_closed=False,
            open_time=entry.open_time,
            close_time=entry.close_time,
            source=source,
            label=label,
        )
