from datetime import datetime, time, timedelta, timezone
from itertools import permutations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from facility_hours.config import EngineConfig
from facility_hours.core.cache import TTLCache
from facility_hours.core.limits import DurationLimitPolicy, merge_limits
from facility_hours.core.overrides import OverrideResolver
from facility_hours.core.slots import CapacitySlotFinder
from facility_hours.core.timezones import TimeZoneContext
from facility_hours.db import Base
from facility_hours.models import OpeningHoursDefault
from facility_hours.schemas import EffectiveLimits, LimitsOverride, UserGroup
from facility_hours.stores import CachedGroupProvider, FixedClock, SettingsGroupProvider, SqlEventStore, SqlScheduleStore

TZ = TimeZoneContext.from_names("America/New_York")
UTC = timezone.utc
NOW = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)


class PassThroughFinder:
    def first_available_slot(self, from_utc, interval_minutes=None, horizon_days=None):
        return from_utc


class ExhaustedFinder:
    def first_available_slot(self, from_utc, interval_minutes=None, horizon_days=None):
        return None


class CountingEvents:
    def __init__(self, active=0):
        self.active = active

    def count_active_checkouts_for_user(self, user_id):
        return self.active


class CountingProvider:
    def __init__(self, groups):
        self.groups = groups
        self.calls = 0

    def get_groups(self, user_id):
        self.calls += 1
        return [UserGroup(**g) for g in self.groups.get(user_id, [])]


def make_config(defaults=None, overrides=None, **kwargs):
    return EngineConfig(
        timezones=TZ,
        default_limits=defaults or EffectiveLimits(),
        group_overrides=overrides or {},
        **kwargs,
    )


def make_policy(config, memberships=None, finder=None, events=None):
    groups = SettingsGroupProvider(memberships or {})
    return DurationLimitPolicy(config, groups, finder or PassThroughFinder(), FixedClock(NOW), events)


def test_zero_override_always_wins():
    defaults = EffectiveLimits(max_checkout_hours=48, max_renewal_hours=24)
    merged = merge_limits(
        defaults,
        [LimitsOverride(max_checkout_hours=168), LimitsOverride(max_checkout_hours=0, max_renewal_hours=12)],
    )
    assert merged.max_checkout_hours == 0
    assert merged.max_renewal_hours == 24


def test_merge_is_order_independent():
    defaults = EffectiveLimits(max_checkout_hours=48, max_renewal_hours=24, max_total_hours=96, max_advance_days=7)
    overrides = [
        LimitsOverride(max_checkout_hours=72, max_total_hours=0),
        LimitsOverride(max_checkout_hours=120, max_advance_days=30),
        LimitsOverride(max_renewal_hours=0, max_checkout_hours=24),
    ]
    results = {merge_limits(defaults, list(order)).model_dump_json() for order in permutations(overrides)}
    assert len(results) == 1
    merged = merge_limits(defaults, overrides)
    assert merged == EffectiveLimits(max_checkout_hours=120, max_renewal_hours=0, max_total_hours=0, max_advance_days=30)


def test_merge_keeps_unlimited_default_and_unset_fields():
    defaults = EffectiveLimits(max_checkout_hours=0, max_renewal_hours=24)
    merged = merge_limits(defaults, [LimitsOverride(max_checkout_hours=12)])
    assert merged.max_checkout_hours == 0
    assert merged.max_renewal_hours == 24
    assert merge_limits(merged, [LimitsOverride(max_checkout_hours=12)]) == merged


def test_group_override_of_zero_lifts_default_limit():
    config = make_config(
        defaults=EffectiveLimits(max_checkout_hours=48),
        overrides={5: LimitsOverride(max_checkout_hours=0)},
    )
    policy = make_policy(config, {7: [{"id": 5, "name": "Staff"}], 8: [{"id": 6, "name": "Students"}]})

    assert policy.effective_limits(7).max_checkout_hours == 0
    assert policy.effective_limits(8).max_checkout_hours == 48


def test_master_switch_disables_every_limit():
    config = make_config(defaults=EffectiveLimits(max_checkout_hours=4, max_advance_days=1), limits_enabled=False)
    policy = make_policy(config)

    assert policy.effective_limits(1) == EffectiveLimits()
    start = datetime(2026, 1, 12, 14, 0, tzinfo=UTC)
    assert policy.max_checkout_end(1, start) is None
    assert policy.validate_checkout_duration(1, start, start + timedelta(days=30)) is None
    assert policy.validate_advance_reservation(1, start + timedelta(days=365)) is None


def test_rejects_non_positive_user_id():
    policy = make_policy(make_config())
    with pytest.raises(ValueError):
        policy.effective_limits(0)
    with pytest.raises(ValueError):
        policy.max_checkout_end(-3, NOW)


def test_max_checkout_end_adds_hours():
    policy = make_policy(make_config(defaults=EffectiveLimits(max_checkout_hours=48)))
    start = datetime(2026, 1, 12, 14, 0, tzinfo=UTC)

    assert policy.max_checkout_end(1, start) == start + timedelta(hours=48)
    assert make_policy(make_config()).max_checkout_end(1, start) is None


def test_max_checkout_end_falls_back_to_raw_deadline_when_search_exhausted():
    policy = make_policy(make_config(defaults=EffectiveLimits(max_checkout_hours=6)), finder=ExhaustedFinder())
    start = datetime(2026, 1, 12, 14, 0, tzinfo=UTC)

    assert policy.max_checkout_end(1, start) == start + timedelta(hours=6)


def test_max_checkout_end_snaps_past_weekend(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test_limits.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    for dow in range(1, 8):
        if dow <= 5:
            db.add(OpeningHoursDefault(day_of_week=dow, is_closed=False, open_time=time(9, 0), close_time=time(17, 0)))
        else:
            db.add(OpeningHoursDefault(day_of_week=dow, is_closed=True))
    db.commit()

    finder = CapacitySlotFinder(OverrideResolver(SqlScheduleStore(db), TZ), SqlEventStore(db), TZ)
    policy = make_policy(make_config(defaults=EffectiveLimits(max_checkout_hours=24)), finder=finder)

    # Friday 10:00 local + 24h is Saturday; the ceiling moves to Monday opening.
    ceiling = policy.max_checkout_end(1, datetime(2026, 1, 9, 15, 0, tzinfo=UTC))
    assert ceiling == datetime(2026, 1, 12, 14, 0, tzinfo=UTC)
    assert policy.validate_checkout_duration(
        1, datetime(2026, 1, 9, 15, 0, tzinfo=UTC), datetime(2026, 1, 12, 14, 0, tzinfo=UTC)
    ) is None


def test_validate_checkout_duration_message():
    policy = make_policy(make_config(defaults=EffectiveLimits(max_checkout_hours=48)))
    start = datetime(2026, 1, 12, 14, 0, tzinfo=UTC)

    assert policy.validate_checkout_duration(1, start, start + timedelta(hours=48)) is None
    assert policy.validate_checkout_duration(1, start, start + timedelta(hours=49)) == (
        "Checkout duration exceeds the maximum allowed (48 hours / 2 days). Please select a shorter period."
    )


def test_max_renewal_end_picks_earlier_candidate():
    config = make_config(defaults=EffectiveLimits(max_renewal_hours=24, max_total_hours=72))
    policy = make_policy(config)

    current = datetime(2026, 1, 12, 14, 0, tzinfo=UTC)
    started = datetime(2026, 1, 10, 14, 0, tzinfo=UTC)
    assert policy.max_renewal_end(1, current, started) == datetime(2026, 1, 13, 14, 0, tzinfo=UTC)

    started_early = datetime(2026, 1, 10, 0, 0, tzinfo=UTC)
    assert policy.max_renewal_end(1, current, started_early) == datetime(2026, 1, 13, 0, 0, tzinfo=UTC)

    started_recently = datetime(2026, 1, 12, 0, 0, tzinfo=UTC)
    assert policy.max_renewal_end(1, current, started_recently) == datetime(2026, 1, 13, 14, 0, tzinfo=UTC)


def test_max_renewal_end_accepts_text_and_missing_inputs():
    config = make_config(defaults=EffectiveLimits(max_renewal_hours=24, max_total_hours=72))
    policy = make_policy(config)

    assert policy.max_renewal_end(1, "2026-01-12T14:00:00Z", "") == datetime(2026, 1, 13, 14, 0, tzinfo=UTC)
    assert policy.max_renewal_end(1, None, "2026-01-10T14:00:00") == datetime(2026, 1, 13, 14, 0, tzinfo=UTC)
    assert make_policy(make_config()).max_renewal_end(1, "2026-01-12T14:00:00Z", None) is None
    with pytest.raises(ValueError):
        policy.max_renewal_end(1, "next tuesday", None)


def test_renewal_extension_message_when_extension_binds():
    config = make_config(defaults=EffectiveLimits(max_renewal_hours=24, max_total_hours=240))
    policy = make_policy(config)

    message = policy.validate_renewal_duration(
        1,
        datetime(2026, 1, 12, 14, 0, tzinfo=UTC),
        datetime(2026, 1, 13, 15, 0, tzinfo=UTC),
        datetime(2026, 1, 10, 14, 0, tzinfo=UTC),
    )
    assert message == "Renewal extension exceeds the maximum allowed (24 hours / 1 days)."


def test_total_duration_message_when_lifetime_cap_binds():
    config = make_config(defaults=EffectiveLimits(max_renewal_hours=72, max_total_hours=36))
    policy = make_policy(config)

    message = policy.validate_renewal_duration(
        1,
        datetime(2026, 1, 12, 14, 0, tzinfo=UTC),
        datetime(2026, 1, 13, 1, 0, tzinfo=UTC),
        datetime(2026, 1, 11, 12, 0, tzinfo=UTC),
    )
    assert message == (
        "Total checkout duration (including renewals) exceeds the maximum allowed (36 hours / 1.5 days)."
    )
    assert policy.validate_renewal_duration(
        1,
        datetime(2026, 1, 12, 14, 0, tzinfo=UTC),
        datetime(2026, 1, 12, 23, 0, tzinfo=UTC),
        datetime(2026, 1, 11, 12, 0, tzinfo=UTC),
    ) is None


def test_advance_reservation_limit():
    policy = make_policy(make_config(defaults=EffectiveLimits(max_advance_days=7)))

    assert policy.validate_advance_reservation(1, NOW + timedelta(days=7)) is None
    assert policy.validate_advance_reservation(1, NOW + timedelta(days=7, minutes=1)) == (
        "Reservations can only be made up to 7 days in advance."
    )
    assert make_policy(make_config()).validate_advance_reservation(1, NOW + timedelta(days=900)) is None


def test_missing_certifications_matches_group_names_loosely():
    policy = make_policy(make_config(), {3: [{"id": 9, "name": " Photography "}]})

    assert policy.missing_certifications(3, ["photography", "Drone Pilot"]) == ["Drone Pilot"]
    assert policy.missing_certifications(3, []) == []


def test_single_active_checkout_rule():
    enforced = make_config(single_active_checkout=True)

    assert make_policy(enforced, events=CountingEvents(active=1)).validate_single_active_checkout(4) == (
        "You already have an active checkout. Please return it before starting a new one."
    )
    assert make_policy(enforced, events=CountingEvents(active=0)).validate_single_active_checkout(4) is None
    assert make_policy(make_config(), events=CountingEvents(active=3)).validate_single_active_checkout(4) is None


def test_group_cache_serves_repeat_lookups_until_invalidated(tmp_path):
    provider = CountingProvider({4: [{"id": 5, "name": "Staff"}]})
    cached = CachedGroupProvider(provider, TTLCache(ttl_seconds=300, directory=str(tmp_path / "cache")))

    assert [g.id for g in cached.get_groups(4)] == [5]
    assert [g.id for g in cached.get_groups(4)] == [5]
    assert provider.calls == 1

    cached.invalidate(4)
    cached.get_groups(4)
    assert provider.calls == 2


def test_group_cache_disabled_with_zero_ttl(tmp_path):
    provider = CountingProvider({4: [{"id": 5, "name": "Staff"}]})
    cached = CachedGroupProvider(provider, TTLCache(ttl_seconds=0, directory=str(tmp_path / "cache")))

    cached.get_groups(4)
    cached.get_groups(4)
    assert provider.calls == 2
