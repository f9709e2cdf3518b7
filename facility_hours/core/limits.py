from collections.abc import Iterable
from datetime import datetime, timedelta

import structlog

from ..schemas import LIMIT_FIELDS, EffectiveLimits, LimitsOverride
from ..stores import group_ids
from .formatting import hours_as_days
from .slots import CapacitySlotFinder
from .timezones import ensure_utc, parse_utc_datetime

logger = structlog.get_logger(__name__)

UNLIMITED = EffectiveLimits()


def merge_limits(defaults: EffectiveLimits, overrides: Iterable[LimitsOverride]) -> EffectiveLimits:
    """
    Most permissive wins, field by field. 0 means unlimited and beats any
    finite value; fields an override leaves unset are not touched.
    """
    merged = defaults.model_dump()
    for override in overrides:
        for field in LIMIT_FIELDS:
            value = getattr(override, field)
            if value is None:
                continue
            if value == 0:
                merged[field] = 0
            elif merged[field] != 0:
                merged[field] = max(merged[field], value)
    return EffectiveLimits(**merged)


def _require_user_id(user_id: int) -> int:
    if user_id is None or int(user_id) <= 0:
        raise ValueError("user_id must be a positive integer")
    return int(user_id)


def _optional_instant(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return parse_utc_datetime(value)


def _limit_label(hours: int) -> str:
    return f"{hours} hours / {hours_as_days(hours)} days"


class DurationLimitPolicy:
    def __init__(self, config, groups, finder: CapacitySlotFinder, clock, events=None):
        self.config = config
        self.groups = groups
        self.finder = finder
        self.clock = clock
        self.events = events

    @property
    def enabled(self) -> bool:
        return bool(self.config.limits_enabled)

    def effective_limits(self, user_id: int) -> EffectiveLimits:
        user_id = _require_user_id(user_id)
        if not self.enabled:
            return UNLIMITED

        overrides_table = self.config.group_overrides
        if not overrides_table:
            return self.config.default_limits

        matched = []
        for group_id in group_ids(self.groups, user_id):
            override = overrides_table.get(group_id)
            if override is None:
                continue
            matched.append(override)
            logger.debug("group_override_applied", user_id=user_id, group_id=group_id)
        return merge_limits(self.config.default_limits, matched)

    def _snap(self, deadline: datetime) -> datetime:
        slot = self.finder.first_available_slot(deadline, self.config.slot_interval_minutes)
        if slot is None:
            logger.info("deadline_not_snapped", deadline=deadline.isoformat())
            return deadline
        return slot

    def max_checkout_end(self, user_id: int, start: datetime) -> datetime | None:
        """Latest permitted end for a checkout starting at `start`; None means unlimited."""
        limits = self.effective_limits(user_id)
        if limits.max_checkout_hours <= 0:
            return None
        raw = ensure_utc(start) + timedelta(hours=limits.max_checkout_hours)
        return self._snap(raw)

    def _renewal_candidates(
        self,
        limits: EffectiveLimits,
        current_expected: datetime | str | None,
        last_checkout_start: datetime | str | None,
    ) -> tuple[datetime | None, datetime | None]:
        renewal = total = None
        current = _optional_instant(current_expected)
        if limits.max_renewal_hours > 0 and current is not None:
            renewal = self._snap(current + timedelta(hours=limits.max_renewal_hours))
        started = _optional_instant(last_checkout_start)
        if limits.max_total_hours > 0 and started is not None:
            total = self._snap(started + timedelta(hours=limits.max_total_hours))
        return renewal, total

    def max_renewal_end(
        self,
        user_id: int,
        current_expected: datetime | str | None,
        last_checkout_start: datetime | str | None,
    ) -> datetime | None:
        limits = self.effective_limits(user_id)
        candidates = [
            c for c in self._renewal_candidates(limits, current_expected, last_checkout_start)
            if c is not None
        ]
        if not candidates:
            return None
        return min(candidates)

    def validate_checkout_duration(self, user_id: int, start: datetime, end: datetime) -> str | None:
        if not self.enabled:
            return None
        ceiling = self.max_checkout_end(user_id, start)
        if ceiling is None or ensure_utc(end) <= ceiling:
            return None
        hours = self.effective_limits(user_id).max_checkout_hours
        return (
            f"Checkout duration exceeds the maximum allowed ({_limit_label(hours)}). "
            "Please select a shorter period."
        )

    def validate_renewal_duration(
        self,
        user_id: int,
        current_expected: datetime | str | None,
        new_expected: datetime,
        last_checkout_start: datetime | str | None = None,
    ) -> str | None:
        if not self.enabled:
            return None
        limits = self.effective_limits(user_id)
        renewal, total = self._renewal_candidates(limits, current_expected, last_checkout_start)
        proposed = ensure_utc(new_expected)

        # The earlier ceiling is the one that binds; ties report the extension limit.
        if renewal is not None and proposed > renewal and (total is None or renewal <= total):
            return f"Renewal extension exceeds the maximum allowed ({_limit_label(limits.max_renewal_hours)})."
        if total is not None and proposed > total:
            return (
                "Total checkout duration (including renewals) exceeds the maximum allowed "
                f"({_limit_label(limits.max_total_hours)})."
            )
        return None

    def validate_advance_reservation(self, user_id: int, start: datetime) -> str | None:
        limits = self.effective_limits(user_id)
        if limits.max_advance_days <= 0:
            return None
        latest = self.clock.now() + timedelta(days=limits.max_advance_days)
        if ensure_utc(start) > latest:
            days = limits.max_advance_days
            return f"Reservations can only be made up to {days} day{'s' if days != 1 else ''} in advance."
        return None

    def missing_certifications(self, user_id: int, required_names: Iterable[str]) -> list[str]:
        required = [name for name in required_names if (name or "").strip()]
        if not required:
            return []
        user_id = _require_user_id(user_id)
        held = {(g.name or "").strip().lower() for g in self.groups.get_groups(user_id)}
        return [name for name in required if name.strip().lower() not in held]

    def validate_single_active_checkout(self, user_id: int) -> str | None:
        user_id = _require_user_id(user_id)
        if not self.config.single_active_checkout or self.events is None:
            return None
        if self.events.count_active_checkouts_for_user(user_id) > 0:
            return "You already have an active checkout. Please return it before starting a new one."
        return None
