"""
Capacity-aware slot search.

Capacity counts boundary events (each reservation/checkout start and end
lands in one bucket), not true interval overlap: an event spanning a
bucket without a boundary inside it does not occupy that bucket. The day
slot grid shown to users counts true overlap instead.
"""

from datetime import date, datetime, time, timedelta

import structlog

from ..schemas import BookingEvent, DayHours, DaySlots, SlotInfo
from .overrides import OverrideResolver
from .timezones import TimeZoneContext, ensure_utc

logger = structlog.get_logger(__name__)

MINUTES_PER_DAY = 24 * 60


def _seconds_of_day(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def _minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


class CapacitySlotFinder:
    def __init__(
        self,
        resolver: OverrideResolver,
        events,
        timezones: TimeZoneContext,
        capacity: int = 0,
        interval_minutes: int = 15,
        horizon_days: int = 14,
    ):
        self.resolver = resolver
        self.events = events
        self.timezones = timezones
        self.capacity = max(0, int(capacity))
        self.interval_minutes = int(interval_minutes)
        self.horizon_days = int(horizon_days)

    def _interval(self, interval_minutes: int | None) -> int:
        interval = self.interval_minutes if interval_minutes is None else int(interval_minutes)
        if interval < 1:
            raise ValueError("interval_minutes must be >= 1")
        return interval

    def first_available_slot(
        self,
        from_utc: datetime,
        interval_minutes: int | None = None,
        horizon_days: int | None = None,
    ) -> datetime | None:
        interval = self._interval(interval_minutes)
        horizon = self.horizon_days if horizon_days is None else int(horizon_days)
        if horizon < 0:
            raise ValueError("horizon_days must be >= 0")

        from_utc = ensure_utc(from_utc)
        start_day = self.timezones.local_date(from_utc)

        for offset in range(horizon + 1):
            day = start_day + timedelta(days=offset)
            hours = self.resolver.resolve_day(day)
            if hours.is_closed or hours.open_time is None or hours.close_time is None:
                continue

            if self.capacity <= 0:
                slot = self._first_open_slot(day, hours, from_utc if offset == 0 else None, interval)
            else:
                slot = self._first_slot_under_capacity(day, hours, from_utc if offset == 0 else None, interval)
            if slot is not None:
                return slot

        logger.info(
            "slot_search_exhausted",
            from_utc=from_utc.isoformat(),
            interval_minutes=interval,
            horizon_days=horizon,
            capacity=self.capacity,
        )
        return None

    def _first_open_slot(self, day: date, hours: DayHours, not_before: datetime | None, interval: int) -> datetime | None:
        day_open = self.timezones.local_to_utc(day, hours.open_time)
        day_close = self.timezones.local_to_utc(day, hours.close_time)
        slot = day_open
        if not_before is not None and not_before > day_open:
            step = timedelta(minutes=interval)
            slots_to_skip = -((day_open - not_before) // step)
            slot = day_open + slots_to_skip * step
        if slot <= day_close:
            return slot
        return None

    def _first_slot_under_capacity(
        self, day: date, hours: DayHours, not_before: datetime | None, interval: int
    ) -> datetime | None:
        keys = self._slot_keys(hours.open_time, hours.close_time, interval)
        counts = self.bucket_counts(day, hours, interval)
        for key in keys:
            slot = self.timezones.local_to_utc(day, time(key // 60, key % 60))
            if not_before is not None and slot < not_before:
                continue
            if counts.get(key, 0) < self.capacity:
                return slot
        return None

    def bucket_counts(self, day: date, hours: DayHours, interval: int) -> dict[int, int]:
        """Boundary events per slot key (minutes since local midnight) for an open day."""
        window_start = self.timezones.local_to_utc(day, hours.open_time)
        window_end = self.timezones.local_to_utc(day, hours.close_time)
        events: list[BookingEvent] = [
            *self.events.get_active_reservations_in_window(window_start, window_end),
            *self.events.get_active_checkouts_in_window(window_start, window_end),
        ]

        counts = dict.fromkeys(self._slot_keys(hours.open_time, hours.close_time, interval), 0)
        open_min = _minute_of_day(hours.open_time)
        close_min = _minute_of_day(hours.close_time)
        for event in events:
            for boundary in (event.start_utc, event.end_utc):
                local = self.timezones.to_local(boundary)
                if local.date() != day:
                    continue
                minute = local.hour * 60 + local.minute
                if minute < open_min or minute > close_min:
                    continue
                key = (minute // interval) * interval
                if key in counts:
                    counts[key] += 1
        return counts

    @staticmethod
    def _slot_keys(open_time: time, close_time: time, interval: int) -> list[int]:
        keys = []
        cursor = _seconds_of_day(open_time)
        close = _seconds_of_day(close_time)
        while cursor <= close and cursor // 60 < MINUTES_PER_DAY:
            keys.append(cursor // 60)
            cursor += interval * 60
        return keys

    def day_slots(
        self,
        day: date,
        interval_minutes: int | None = None,
        bypass_capacity: bool = False,
        bypass_closed: bool = False,
    ) -> DaySlots:
        interval = self._interval(interval_minutes)
        hours = self.resolver.resolve_day(day)
        if hours.is_closed and not bypass_closed:
            return DaySlots(day=day, is_closed=True, slots=[])

        if hours.is_closed or hours.open_time is None or hours.close_time is None:
            open_time, close_time = time(0, 0), time(23, 59)
        else:
            open_time = hours.open_time.replace(second=0)
            close_time = hours.close_time.replace(second=0)

        keys = self._slot_keys(open_time, close_time, interval)
        if not keys:
            return DaySlots(day=day, is_closed=False, slots=[])

        window_start = self.timezones.local_to_utc(day, open_time)
        window_end = self.timezones.local_to_utc(day, close_time)
        events = [
            *self.events.get_active_reservations_overlapping(window_start, window_end),
            *self.events.get_active_checkouts_overlapping(window_start, window_end),
        ]

        step = timedelta(minutes=interval)
        slots = []
        for key in keys:
            slot_start = self.timezones.local_to_utc(day, time(key // 60, key % 60))
            slot_end = slot_start + step
            booked = sum(1 for e in events if e.start_utc < slot_end and e.end_utc > slot_start)

            if self.capacity <= 0:
                remaining = None
            elif bypass_capacity:
                remaining = self.capacity
            else:
                remaining = max(0, self.capacity - booked)

            slots.append(
                SlotInfo(
                    time=f"{key // 60:02d}:{key % 60:02d}",
                    capacity=self.capacity,
                    booked=booked,
                    remaining=remaining,
                )
            )
        return DaySlots(day=day, is_closed=False, slots=slots)
