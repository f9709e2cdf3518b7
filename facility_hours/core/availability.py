from datetime import date, datetime, time

from .formatting import format_date, format_time, weekday_name
from .overrides import OverrideResolver
from .timezones import TimeZoneContext


class AvailabilityChecker:
    def __init__(
        self,
        resolver: OverrideResolver,
        timezones: TimeZoneContext,
        date_format: str | None = None,
        time_format: str | None = None,
    ):
        self.resolver = resolver
        self.timezones = timezones
        self.date_format = date_format
        self.time_format = time_format

    def get_opening_hours(self, check_date: date) -> tuple[time, time] | None:
        """Returns (open, close) local times for a given date or None if closed."""
        hours = self.resolver.resolve_day(check_date)
        if hours.is_closed or hours.open_time is None or hours.close_time is None:
            return None
        return hours.open_time, hours.close_time

    def is_open_at(self, instant: datetime) -> bool:
        """Full check if the facility is open at a specific instant (inclusive bounds)."""
        local = self.timezones.to_local(instant)
        hours = self.get_opening_hours(local.date())
        if not hours:
            return False

        open_time, close_time = hours
        return open_time <= local.time().replace(microsecond=0) <= close_time

    def validate_window(self, start_utc: datetime, end_utc: datetime) -> list[str]:
        errors = []
        errors.extend(self._check_endpoint(start_utc, "Collection"))
        errors.extend(self._check_endpoint(end_utc, "Return"))
        return errors

    def _check_endpoint(self, instant: datetime, role: str) -> list[str]:
        local = self.timezones.to_local(instant)
        day = local.date()
        hours = self.resolver.resolve_day(day)
        day_name = weekday_name(day)

        if hours.is_closed:
            return [
                f"{role} date ({day_name}, {format_date(day, self.date_format)}) is outside "
                "opening hours: the facility is closed."
            ]
        if hours.open_time is None or hours.close_time is None:
            return []

        at = local.time().replace(microsecond=0)
        if at < hours.open_time or at > hours.close_time:
            fmt = self.time_format
            return [
                f"{role} time ({format_time(local, fmt)}) is outside opening hours on "
                f"{day_name} ({format_time(hours.open_time, fmt)} - {format_time(hours.close_time, fmt)})."
            ]
        return []
