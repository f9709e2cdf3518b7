from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC = timezone.utc
DAY_START = time(0, 0, 0)
DAY_END = time(23, 59, 59)


def load_zone(name: str | None) -> ZoneInfo | None:
    """Return the zone for an IANA name, or None when the name is empty or unknown."""
    key = (name or "").strip()
    if not key:
        return None
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def ensure_utc(value: datetime) -> datetime:
    # Naive values are stored UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_utc_naive(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


def parse_local_date(text: str) -> date:
    raw = (text or "").strip()
    if not raw:
        raise ValueError("Date is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid date {raw!r}, expected YYYY-MM-DD") from exc


def parse_utc_datetime(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = (value or "").strip()
    if not raw:
        raise ValueError("Datetime is required (ISO 8601)")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime {raw!r}, expected ISO 8601") from exc
    return ensure_utc(parsed)


@dataclass(frozen=True)
class TimeZoneContext:
    business: ZoneInfo
    external: ZoneInfo
    storage: timezone = UTC

    @classmethod
    def from_names(cls, business_name: str, external_name: str | None = None) -> "TimeZoneContext":
        business = load_zone(business_name)
        if business is None:
            raise ValueError(f"Invalid business timezone: {business_name!r}")

        if not (external_name or "").strip():
            external = business
        else:
            external = load_zone(external_name)
            if external is None:
                raise ValueError(f"Invalid external-system timezone: {external_name!r}")
        return cls(business=business, external=external)

    def to_local(self, value: datetime) -> datetime:
        return ensure_utc(value).astimezone(self.business)

    def to_utc(self, value: datetime) -> datetime:
        return ensure_utc(value)

    def local_datetime(self, day: date, at: time) -> datetime:
        return datetime.combine(day, at.replace(tzinfo=None), tzinfo=self.business)

    def local_to_utc(self, day: date, at: time) -> datetime:
        return self.local_datetime(day, at).astimezone(UTC)

    def local_day_bounds_utc(self, day: date) -> tuple[datetime, datetime]:
        return self.local_to_utc(day, DAY_START), self.local_to_utc(day, DAY_END)

    def local_date(self, value: datetime) -> date:
        return self.to_local(value).date()

    def external_to_local(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.external)
        return value.astimezone(self.business)

    def local_to_external(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.business)
        return value.astimezone(self.external)
