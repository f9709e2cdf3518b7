from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .config import EngineConfig, load_engine_config
from .core.timezones import ensure_utc, parse_local_date, parse_utc_datetime
from .db import get_db
from .schemas import (
    CeilingOut,
    CheckoutLimitRequest,
    DayHoursOut,
    DaySlots,
    EffectiveLimits,
    MonthHoursOut,
    NextSlotOut,
    OpenAtOut,
    RenewalLimitRequest,
    ValidationOut,
    WindowValidationRequest,
)
from .services import (
    FacilityEngine,
    build_engine,
    build_group_provider,
    checkout_ceiling,
    day_hours_out,
    month_hours,
    renewal_ceiling,
    validate_reservation,
)
from .stores import SystemClock

router = APIRouter(prefix="/api")

CAPACITY_BYPASS_ROLES = {"staff", "admin"}
CLOSED_BYPASS_ROLES = {"admin"}


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    return load_engine_config()


@lru_cache(maxsize=1)
def get_group_provider():
    return build_group_provider()


def get_clock():
    return SystemClock()


def get_engine(
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    groups=Depends(get_group_provider),
    clock=Depends(get_clock),
) -> FacilityEngine:
    return build_engine(db, config, clock=clock, groups=groups)


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/hours", response_model=DayHoursOut)
def get_day_hours(
    day: str = Query(...),
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        local_day = parse_local_date(day)
    except ValueError as exc:
        raise _bad_request(exc)
    return day_hours_out(local_day, engine.resolver.resolve_day(local_day))


@router.get("/hours/month", response_model=MonthHoursOut)
def get_month_hours(
    month: str = Query(...),
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        return month_hours(engine, month)
    except ValueError as exc:
        raise _bad_request(exc)


@router.get("/open", response_model=OpenAtOut)
def get_open_at(
    at: str = Query(...),
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        instant = parse_utc_datetime(at)
    except ValueError as exc:
        raise _bad_request(exc)
    return OpenAtOut(at=instant, open=engine.availability.is_open_at(instant))


@router.post("/reservations/validate", response_model=ValidationOut)
def post_validate_reservation(
    payload: WindowValidationRequest,
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        violations = validate_reservation(
            engine,
            payload.start,
            payload.end,
            payload.user_id,
            payload.required_certifications,
        )
    except ValueError as exc:
        raise _bad_request(exc)
    return ValidationOut(valid=not violations, violations=violations)


@router.get("/slots/next", response_model=NextSlotOut)
def get_next_slot(
    from_dt: str = Query(...),
    interval: Optional[int] = Query(None),
    engine: FacilityEngine = Depends(get_engine),
):
    resolved_interval = interval if interval is not None else engine.config.slot_interval_minutes
    try:
        instant = parse_utc_datetime(from_dt)
        slot = engine.slots.first_available_slot(instant, resolved_interval)
    except ValueError as exc:
        raise _bad_request(exc)
    return NextSlotOut(from_dt=instant, interval_minutes=resolved_interval, slot=slot)


@router.get("/slots/day", response_model=DaySlots)
def get_day_slots(
    day: str = Query(...),
    interval: Optional[int] = Query(None),
    x_actor_role: Optional[str] = Header(default=None),
    engine: FacilityEngine = Depends(get_engine),
):
    role = (x_actor_role or "").strip().lower()
    try:
        local_day = parse_local_date(day)
        return engine.slots.day_slots(
            local_day,
            interval_minutes=interval,
            bypass_capacity=role in CAPACITY_BYPASS_ROLES,
            bypass_closed=role in CLOSED_BYPASS_ROLES,
        )
    except ValueError as exc:
        raise _bad_request(exc)


@router.get("/limits/{user_id}", response_model=EffectiveLimits)
def get_effective_limits(
    user_id: int,
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        return engine.limits.effective_limits(user_id)
    except ValueError as exc:
        raise _bad_request(exc)


@router.post("/checkouts/limit", response_model=CeilingOut)
def post_checkout_limit(
    payload: CheckoutLimitRequest,
    engine: FacilityEngine = Depends(get_engine),
):
    if payload.end is not None and ensure_utc(payload.end) <= ensure_utc(payload.start):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must be after start")
    try:
        return checkout_ceiling(engine, payload.user_id, payload.start, payload.end)
    except ValueError as exc:
        raise _bad_request(exc)


@router.post("/renewals/limit", response_model=CeilingOut)
def post_renewal_limit(
    payload: RenewalLimitRequest,
    engine: FacilityEngine = Depends(get_engine),
):
    try:
        return renewal_ceiling(
            engine,
            payload.user_id,
            payload.current_expected,
            payload.last_checkout_start,
            payload.new_expected,
        )
    except ValueError as exc:
        raise _bad_request(exc)
