from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .core.timezones import ensure_utc


class HoursSource(str, Enum):
    OVERRIDE = "override"
    SCHEDULE = "schedule"
    DEFAULT = "default"
    NONE = "none"


class OverrideType(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


RESERVATION_ACTIVE_STATUSES = ("pending", "confirmed")
CHECKOUT_ACTIVE_STATUSES = ("open", "partial")


class DayHours(BaseModel):
    is_closed: bool
    open_time: time | None = None
    close_time: time | None = None
    source: HoursSource = HoursSource.NONE
    label: str | None = None

    @model_validator(mode="after")
    def check_open_window(self) -> "DayHours":
        if not self.is_closed:
            if self.open_time is None or self.close_time is None:
                raise ValueError("An open day needs both open_time and close_time")
            if self.open_time > self.close_time:
                raise ValueError("open_time must not be after close_time")
        return self

    @classmethod
    def closed(cls, source: HoursSource = HoursSource.NONE, label: str | None = None) -> "DayHours":
        return cls(is_closed=True, source=source, label=label)


class DefaultScheduleEntry(BaseModel):
    day_of_week: int = Field(ge=1, le=7)
    is_closed: bool = False
    open_time: time | None = None
    close_time: time | None = None


class RecurringSchedule(BaseModel):
    id: int = Field(gt=0)
    name: str
    start_date: date
    end_date: date
    days: dict[int, DefaultScheduleEntry] = {}

    def entry_for(self, day_of_week: int) -> DefaultScheduleEntry | None:
        return self.days.get(day_of_week)


class OneOffOverride(BaseModel):
    id: int = Field(gt=0)
    label: str = ""
    start_utc: datetime
    end_utc: datetime
    override_type: OverrideType

    @property
    def display_label(self) -> str:
        return self.label.strip() or f"One-off #{self.id}"


class BookingEvent(BaseModel):
    start_utc: datetime
    end_utc: datetime


class EffectiveLimits(BaseModel):
    max_checkout_hours: int = Field(default=0, ge=0)
    max_renewal_hours: int = Field(default=0, ge=0)
    max_total_hours: int = Field(default=0, ge=0)
    max_advance_days: int = Field(default=0, ge=0)


LIMIT_FIELDS = tuple(EffectiveLimits.model_fields)


class LimitsOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_checkout_hours: int | None = Field(default=None, ge=0)
    max_renewal_hours: int | None = Field(default=None, ge=0)
    max_total_hours: int | None = Field(default=None, ge=0)
    max_advance_days: int | None = Field(default=None, ge=0)


class UserGroup(BaseModel):
    id: int
    name: str = ""


class SlotInfo(BaseModel):
    time: str
    capacity: int
    booked: int
    remaining: int | None = None


class DaySlots(BaseModel):
    day: date
    is_closed: bool
    slots: list[SlotInfo] = []


class DayHoursOut(BaseModel):
    day: date
    is_closed: bool
    open_time: str | None = None
    close_time: str | None = None
    source: HoursSource
    label: str | None = None


class MonthHoursOut(BaseModel):
    month: str
    days: list[DayHoursOut]


class OpenAtOut(BaseModel):
    at: datetime
    open: bool


class WindowValidationRequest(BaseModel):
    start: datetime
    end: datetime
    user_id: int | None = Field(default=None, gt=0)
    required_certifications: list[str] = []

    @field_validator("end")
    @classmethod
    def validate_end_after_start(cls, value: datetime, info) -> datetime:
        start = info.data.get("start")
        if start is not None and ensure_utc(value) <= ensure_utc(start):
            raise ValueError("end must be after start")
        return value


class ValidationOut(BaseModel):
    valid: bool
    violations: list[str]


class NextSlotOut(BaseModel):
    from_dt: datetime
    interval_minutes: int
    slot: datetime | None = None


class CheckoutLimitRequest(BaseModel):
    user_id: int = Field(gt=0)
    start: datetime
    end: datetime | None = None


class RenewalLimitRequest(BaseModel):
    user_id: int = Field(gt=0)
    current_expected: datetime | None = None
    last_checkout_start: datetime | None = None
    new_expected: datetime | None = None


class CeilingOut(BaseModel):
    unlimited: bool
    max_end: datetime | None = None
    violation: str | None = None
