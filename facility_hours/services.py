import re
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from .config import EngineConfig, Settings, parse_int_setting, parse_user_groups, settings
from .core.availability import AvailabilityChecker
from .core.cache import TTLCache
from .core.formatting import hhmm
from .core.limits import DurationLimitPolicy
from .core.overrides import OverrideResolver
from .core.slots import CapacitySlotFinder
from .core.timezones import ensure_utc
from .schemas import CeilingOut, DayHours, DayHoursOut, MonthHoursOut
from .stores import (
    CachedGroupProvider,
    SettingsGroupProvider,
    SqlEventStore,
    SqlScheduleStore,
    SystemClock,
)

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass
class FacilityEngine:
    config: EngineConfig
    resolver: OverrideResolver
    availability: AvailabilityChecker
    slots: CapacitySlotFinder
    limits: DurationLimitPolicy


def build_group_provider(source: Settings | None = None) -> CachedGroupProvider:
    cfg = source or settings
    memberships = parse_user_groups(cfg.USER_GROUPS)
    ttl = parse_int_setting("GROUP_CACHE_TTL_SECONDS", cfg.GROUP_CACHE_TTL_SECONDS)
    cache = TTLCache(ttl_seconds=ttl, directory=cfg.CACHE_DIR or None)
    return CachedGroupProvider(SettingsGroupProvider(memberships), cache)


def build_engine(db: Session, config: EngineConfig, clock=None, groups=None) -> FacilityEngine:
    """One engine per request: the resolver memo lives exactly as long as the session snapshot."""
    tz = config.timezones
    events = SqlEventStore(db)
    resolver = OverrideResolver(SqlScheduleStore(db), tz)
    finder = CapacitySlotFinder(
        resolver,
        events,
        tz,
        capacity=config.slot_capacity,
        interval_minutes=config.slot_interval_minutes,
        horizon_days=config.horizon_days,
    )
    limits = DurationLimitPolicy(
        config,
        groups if groups is not None else SettingsGroupProvider({}),
        finder,
        clock or SystemClock(),
        events,
    )
    return FacilityEngine(
        config=config,
        resolver=resolver,
        availability=AvailabilityChecker(resolver, tz, config.date_format, config.time_format),
        slots=finder,
        limits=limits,
    )


def day_hours_out(day: date, hours: DayHours) -> DayHoursOut:
    return DayHoursOut(
        day=day,
        is_closed=hours.is_closed,
        open_time=hhmm(hours.open_time) if hours.open_time else None,
        close_time=hhmm(hours.close_time) if hours.close_time else None,
        source=hours.source,
        label=hours.label,
    )


def month_hours(engine: FacilityEngine, month: str) -> MonthHoursOut:
    match = _MONTH_RE.match((month or "").strip())
    if not match:
        raise ValueError("Invalid month, expected YYYY-MM")
    year, month_no = int(match.group(1)), int(match.group(2))
    days = engine.resolver.resolve_month(year, month_no)
    return MonthHoursOut(
        month=f"{year:04d}-{month_no:02d}",
        days=[day_hours_out(d, h) for d, h in days.items()],
    )


def validate_reservation(
    engine: FacilityEngine,
    start: datetime,
    end: datetime,
    user_id: int | None = None,
    required_certifications: list[str] | None = None,
) -> list[str]:
    start_utc, end_utc = ensure_utc(start), ensure_utc(end)
    if end_utc <= start_utc:
        raise ValueError("end must be after start")

    violations = engine.availability.validate_window(start_utc, end_utc)
    if user_id is not None:
        for message in (
            engine.limits.validate_advance_reservation(user_id, start_utc),
            engine.limits.validate_checkout_duration(user_id, start_utc, end_utc),
        ):
            if message:
                violations.append(message)
        missing = engine.limits.missing_certifications(user_id, required_certifications or [])
        if missing:
            violations.append(f"You lack the required certification(s): {', '.join(missing)}.")
    return violations


def checkout_ceiling(
    engine: FacilityEngine,
    user_id: int,
    start: datetime,
    end: datetime | None = None,
) -> CeilingOut:
    ceiling = engine.limits.max_checkout_end(user_id, start)
    violation = engine.limits.validate_single_active_checkout(user_id)
    if violation is None and end is not None:
        violation = engine.limits.validate_checkout_duration(user_id, start, end)
    return CeilingOut(unlimited=ceiling is None, max_end=ceiling, violation=violation)


def renewal_ceiling(
    engine: FacilityEngine,
    user_id: int,
    current_expected: datetime | None,
    last_checkout_start: datetime | None,
    new_expected: datetime | None = None,
) -> CeilingOut:
    ceiling = engine.limits.max_renewal_end(user_id, current_expected, last_checkout_start)
    violation = None
    if new_expected is not None:
        violation = engine.limits.validate_renewal_duration(
            user_id, current_expected, new_expected, last_checkout_start
        )
    return CeilingOut(unlimited=ceiling is None, max_end=ceiling, violation=violation)
