from datetime import date, datetime, time, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OpeningHoursDefault(Base):
    __tablename__ = "opening_hours_default"

    day_of_week: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    open_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    close_time: Mapped[time | None] = mapped_column(Time, nullable=True)


class OpeningHoursSchedule(Base):
    __tablename__ = "opening_hours_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)

    days = relationship(
        "OpeningHoursScheduleDay",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="OpeningHoursScheduleDay.day_of_week",
    )


class OpeningHoursScheduleDay(Base):
    __tablename__ = "opening_hours_schedule_days"
    __table_args__ = (
        UniqueConstraint("schedule_id", "day_of_week", name="uq_schedule_days_schedule_dow"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("opening_hours_schedules.id", ondelete="CASCADE"), index=True
    )
    day_of_week: Mapped[int] = mapped_column(Integer)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    open_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    close_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    schedule = relationship("OpeningHoursSchedule", back_populates="days")


class OpeningHoursOverride(Base):
    __tablename__ = "opening_hours_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    label: Mapped[str] = mapped_column(String(200), default="")
    start_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    override_type: Mapped[str] = mapped_column(String(16), default="closed")


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    start_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Checkout(Base):
    __tablename__ = "checkouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    reservation_id: Mapped[int | None] = mapped_column(
        ForeignKey("reservations.id"), nullable=True, index=True
    )
    start_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_datetime: Mapped[datetime] = mapped_column(DateTime, index=True)
    status: Mapped[str] = mapped_column(String(32), default="open", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
