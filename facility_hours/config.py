import json
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError

from .core.timezones import TimeZoneContext
from .schemas import EffectiveLimits, LimitsOverride

load_dotenv()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    pass


def _get_raw(name: str, default) -> str:
    return os.getenv(name, str(default)).strip()


def parse_int_setting(name: str, value, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip())
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if parsed < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def parse_bool_setting(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got {value!r}")


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./facility_hours.db")

    FACILITY_TIMEZONE = os.getenv("FACILITY_TIMEZONE", "Europe/Jersey").strip()
    EXTERNAL_TIMEZONE = os.getenv("EXTERNAL_TIMEZONE", "").strip()
    DATE_FORMAT = os.getenv("DATE_FORMAT", "%d/%m/%Y").strip()
    TIME_FORMAT = os.getenv("TIME_FORMAT", "%H:%M").strip()

    # Numeric and boolean values stay raw here; load_engine_config validates them.
    SLOT_INTERVAL_MINUTES = _get_raw("SLOT_INTERVAL_MINUTES", 15)
    SLOT_CAPACITY = _get_raw("SLOT_CAPACITY", 0)
    SLOT_SEARCH_HORIZON_DAYS = _get_raw("SLOT_SEARCH_HORIZON_DAYS", 14)

    CHECKOUT_LIMITS_ENABLED = _get_raw("CHECKOUT_LIMITS_ENABLED", "true")
    DEFAULT_MAX_CHECKOUT_HOURS = _get_raw("DEFAULT_MAX_CHECKOUT_HOURS", 0)
    DEFAULT_MAX_RENEWAL_HOURS = _get_raw("DEFAULT_MAX_RENEWAL_HOURS", 0)
    DEFAULT_MAX_TOTAL_HOURS = _get_raw("DEFAULT_MAX_TOTAL_HOURS", 0)
    DEFAULT_MAX_ADVANCE_DAYS = _get_raw("DEFAULT_MAX_ADVANCE_DAYS", 0)
    CHECKOUT_GROUP_OVERRIDES = os.getenv("CHECKOUT_GROUP_OVERRIDES", "{}").strip()
    SINGLE_ACTIVE_CHECKOUT = _get_raw("SINGLE_ACTIVE_CHECKOUT", "false")

    USER_GROUPS = os.getenv("USER_GROUPS", "{}").strip()
    GROUP_CACHE_TTL_SECONDS = _get_raw("GROUP_CACHE_TTL_SECONDS", 300)
    CACHE_DIR = os.getenv("CACHE_DIR", "").strip()

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()


class EngineConfig(BaseModel):
    """Validated, immutable view of everything the engine reads from configuration."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    timezones: TimeZoneContext
    date_format: str = "%d/%m/%Y"
    time_format: str = "%H:%M"
    slot_interval_minutes: int = 15
    slot_capacity: int = 0
    horizon_days: int = 14
    limits_enabled: bool = True
    default_limits: EffectiveLimits = EffectiveLimits()
    group_overrides: dict[int, LimitsOverride] = {}
    single_active_checkout: bool = False


def parse_group_overrides(raw: str) -> dict[int, LimitsOverride]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"CHECKOUT_GROUP_OVERRIDES is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("CHECKOUT_GROUP_OVERRIDES must be a JSON object keyed by group id")

    out: dict[int, LimitsOverride] = {}
    for key, value in payload.items():
        try:
            group_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid group id in CHECKOUT_GROUP_OVERRIDES: {key!r}") from exc
        if not isinstance(value, dict):
            raise ConfigError(f"Override for group {group_id} must be a JSON object")
        try:
            out[group_id] = LimitsOverride(**value)
        except ValidationError as exc:
            raise ConfigError(f"Invalid limits for group {group_id}: {exc}") from exc
    return out


def parse_user_groups(raw: str) -> dict[int, list[dict]]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"USER_GROUPS is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("USER_GROUPS must be a JSON object keyed by user id")
    out: dict[int, list[dict]] = {}
    for key, groups in payload.items():
        try:
            user_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid user id in USER_GROUPS: {key!r}") from exc
        try:
            out[user_id] = [
                {"id": int(g["id"]), "name": str(g.get("name") or "")}
                for g in (groups or [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigError(f"Invalid groups for user {user_id} in USER_GROUPS") from exc
    return out


def load_engine_config(source: Settings | None = None) -> EngineConfig:
    cfg = source or settings
    try:
        timezones = TimeZoneContext.from_names(cfg.FACILITY_TIMEZONE, cfg.EXTERNAL_TIMEZONE)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    return EngineConfig(
        timezones=timezones,
        date_format=cfg.DATE_FORMAT,
        time_format=cfg.TIME_FORMAT,
        slot_interval_minutes=parse_int_setting("SLOT_INTERVAL_MINUTES", cfg.SLOT_INTERVAL_MINUTES, minimum=1),
        slot_capacity=parse_int_setting("SLOT_CAPACITY", cfg.SLOT_CAPACITY),
        horizon_days=parse_int_setting("SLOT_SEARCH_HORIZON_DAYS", cfg.SLOT_SEARCH_HORIZON_DAYS),
        limits_enabled=parse_bool_setting("CHECKOUT_LIMITS_ENABLED", cfg.CHECKOUT_LIMITS_ENABLED),
        default_limits=EffectiveLimits(
            max_checkout_hours=parse_int_setting("DEFAULT_MAX_CHECKOUT_HOURS", cfg.DEFAULT_MAX_CHECKOUT_HOURS),
            max_renewal_hours=parse_int_setting("DEFAULT_MAX_RENEWAL_HOURS", cfg.DEFAULT_MAX_RENEWAL_HOURS),
            max_total_hours=parse_int_setting("DEFAULT_MAX_TOTAL_HOURS", cfg.DEFAULT_MAX_TOTAL_HOURS),
            max_advance_days=parse_int_setting("DEFAULT_MAX_ADVANCE_DAYS", cfg.DEFAULT_MAX_ADVANCE_DAYS),
        ),
        group_overrides=parse_group_overrides(cfg.CHECKOUT_GROUP_OVERRIDES),
        single_active_checkout=parse_bool_setting("SINGLE_ACTIVE_CHECKOUT", cfg.SINGLE_ACTIVE_CHECKOUT),
    )
