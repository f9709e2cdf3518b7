from datetime import date, datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from .core.cache import TTLCache
from .core.timezones import ensure_utc, to_utc_naive
from .models import (
    Checkout,
    OpeningHoursDefault,
    OpeningHoursOverride,
    OpeningHoursSchedule,
    Reservation,
)
from .schemas import (
    CHECKOUT_ACTIVE_STATUSES,
    RESERVATION_ACTIVE_STATUSES,
    BookingEvent,
    DefaultScheduleEntry,
    OneOffOverride,
    OverrideType,
    RecurringSchedule,
    UserGroup,
)

logger = structlog.get_logger(__name__)


class ScheduleStore(Protocol):
    def get_default_weekday(self, day_of_week: int) -> DefaultScheduleEntry | None: ...

    def get_recurring_schedules_covering(self, day: date) -> list[RecurringSchedule]: ...

    def get_overrides_covering(self, start_utc: datetime, end_utc: datetime) -> list[OneOffOverride]: ...


class EventStore(Protocol):
    def get_active_reservations_in_window(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]: ...

    def get_active_checkouts_in_window(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]: ...

    def get_active_reservations_overlapping(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]: ...

    def get_active_checkouts_overlapping(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]: ...

    def count_active_checkouts_for_user(self, user_id: int) -> int: ...


class UserGroupProvider(Protocol):
    def get_groups(self, user_id: int) -> list[UserGroup]: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    def __init__(self, at: datetime):
        self.at = ensure_utc(at)

    def now(self) -> datetime:
        return self.at


def group_ids(provider: UserGroupProvider, user_id: int) -> list[int]:
    return [g.id for g in provider.get_groups(user_id)]


def _entry_from_row(row) -> DefaultScheduleEntry:
    return DefaultScheduleEntry(
        day_of_week=int(row.day_of_week),
        is_closed=bool(row.is_closed),
        open_time=row.open_time,
        close_time=row.close_time,
    )


class SqlScheduleStore:
    def __init__(self, db: Session):
        self.db = db

    def get_default_weekday(self, day_of_week: int) -> DefaultScheduleEntry | None:
        row = self.db.get(OpeningHoursDefault, int(day_of_week))
        if row is None:
            return None
        return _entry_from_row(row)

    def get_recurring_schedules_covering(self, day: date) -> list[RecurringSchedule]:
        stmt = (
            select(OpeningHoursSchedule)
            .options(selectinload(OpeningHoursSchedule.days))
            .where(
                OpeningHoursSchedule.start_date <= day,
                OpeningHoursSchedule.end_date >= day,
            )
            .order_by(OpeningHoursSchedule.id.desc())
        )
        out = []
        for sched in self.db.execute(stmt).scalars().all():
            out.append(
                RecurringSchedule(
                    id=sched.id,
                    name=sched.name,
                    start_date=sched.start_date,
                    end_date=sched.end_date,
                    days={int(d.day_of_week): _entry_from_row(d) for d in sched.days},
                )
            )
        return out

    def get_overrides_covering(self, start_utc: datetime, end_utc: datetime) -> list[OneOffOverride]:
        stmt = (
            select(OpeningHoursOverride)
            .where(
                OpeningHoursOverride.start_datetime <= to_utc_naive(end_utc),
                OpeningHoursOverride.end_datetime >= to_utc_naive(start_utc),
            )
            .order_by(OpeningHoursOverride.id.desc())
        )
        return [
            OneOffOverride(
                id=row.id,
                label=row.label or "",
                start_utc=ensure_utc(row.start_datetime),
                end_utc=ensure_utc(row.end_datetime),
                override_type=OverrideType(row.override_type),
            )
            for row in self.db.execute(stmt).scalars().all()
        ]


class SqlEventStore:
    def __init__(self, db: Session):
        self.db = db

    def _boundary_in_window(self, model, statuses, start_utc: datetime, end_utc: datetime):
        ws = to_utc_naive(start_utc)
        we = to_utc_naive(end_utc)
        stmt = select(model.start_datetime, model.end_datetime).where(
            model.status.in_(statuses),
            or_(
                and_(model.start_datetime >= ws, model.start_datetime < we),
                and_(model.end_datetime >= ws, model.end_datetime < we),
            ),
        )
        return self._events(stmt)

    def _overlapping(self, model, statuses, start_utc: datetime, end_utc: datetime):
        stmt = select(model.start_datetime, model.end_datetime).where(
            model.status.in_(statuses),
            model.start_datetime < to_utc_naive(end_utc),
            model.end_datetime > to_utc_naive(start_utc),
        )
        return self._events(stmt)

    def _events(self, stmt) -> list[BookingEvent]:
        return [
            BookingEvent(start_utc=ensure_utc(start), end_utc=ensure_utc(end))
            for start, end in self.db.execute(stmt).all()
        ]

    def get_active_reservations_in_window(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]:
        return self._boundary_in_window(Reservation, RESERVATION_ACTIVE_STATUSES, start_utc, end_utc)

    def get_active_checkouts_in_window(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]:
        return self._boundary_in_window(Checkout, CHECKOUT_ACTIVE_STATUSES, start_utc, end_utc)

    def get_active_reservations_overlapping(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]:
        return self._overlapping(Reservation, RESERVATION_ACTIVE_STATUSES, start_utc, end_utc)

    def get_active_checkouts_overlapping(self, start_utc: datetime, end_utc: datetime) -> list[BookingEvent]:
        return self._overlapping(Checkout, CHECKOUT_ACTIVE_STATUSES, start_utc, end_utc)

    def count_active_checkouts_for_user(self, user_id: int) -> int:
        stmt = select(func.count(Checkout.id)).where(
            Checkout.user_id == int(user_id),
            Checkout.status.in_(CHECKOUT_ACTIVE_STATUSES),
        )
        return int(self.db.execute(stmt).scalar_one() or 0)


class SettingsGroupProvider:
    """Group memberships read from the USER_GROUPS mapping.

    Stands in for the external inventory system, which owns the real
    user/group directory.
    """

    def __init__(self, memberships: dict[int, list[dict]]):
        self.memberships = memberships

    def get_groups(self, user_id: int) -> list[UserGroup]:
        return [UserGroup(**g) for g in self.memberships.get(int(user_id), [])]


class CachedGroupProvider:
    def __init__(self, provider: UserGroupProvider, cache: TTLCache):
        self.provider = provider
        self.cache = cache

    def get_groups(self, user_id: int) -> list[UserGroup]:
        key = f"user_groups:{int(user_id)}"
        cached = self.cache.get(key)
        if cached is not None:
            return [UserGroup(**g) for g in cached]

        groups = self.provider.get_groups(user_id)
        self.cache.set(key, [g.model_dump() for g in groups])
        logger.debug("user_groups_cached", user_id=user_id, groups=len(groups))
        return groups

    def invalidate(self, user_id: int | None = None) -> None:
        if user_id is None:
            self.cache.clear()
        else:
            self.cache.delete(f"user_groups:{int(user_id)}")
