from datetime import date, datetime, time

DATE_FORMAT_OPTIONS = {
    "%d/%m/%Y": "31/12/2026 (DD/MM/YYYY)",
    "%m/%d/%Y": "12/31/2026 (MM/DD/YYYY)",
    "%Y-%m-%d": "2026-12-31 (YYYY-MM-DD, ISO)",
    "%Y.%m.%d": "2026.12.31 (YYYY.MM.DD)",
    "%d.%m.%Y": "31.12.2026 (DD.MM.YYYY)",
    "%d-%m-%Y": "31-12-2026 (DD-MM-YYYY)",
    "%Y/%m/%d": "2026/12/31 (YYYY/MM/DD)",
    "%d %b %Y": "31 Dec 2026 (D Mon YYYY)",
    "%b %d, %Y": "Dec 31, 2026 (Mon D, YYYY)",
}
TIME_FORMAT_OPTIONS = {
    "%H:%M": "23:59 (24-hour)",
    "%H:%M:%S": "23:59:59 (24-hour with seconds)",
    "%I:%M %p": "11:59 PM (12-hour)",
    "%I:%M:%S %p": "11:59:59 PM (12-hour with seconds)",
}
DEFAULT_DATE_FORMAT = "%d/%m/%Y"
DEFAULT_TIME_FORMAT = "%H:%M"

WEEKDAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}


def resolve_date_format(fmt: str | None) -> str:
    return fmt if fmt in DATE_FORMAT_OPTIONS else DEFAULT_DATE_FORMAT


def resolve_time_format(fmt: str | None) -> str:
    return fmt if fmt in TIME_FORMAT_OPTIONS else DEFAULT_TIME_FORMAT


def format_date(value: date, fmt: str | None = None) -> str:
    return value.strftime(resolve_date_format(fmt))


def format_time(value: datetime | time, fmt: str | None = None) -> str:
    return value.strftime(resolve_time_format(fmt))


def hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def weekday_name(value: date) -> str:
    return WEEKDAY_NAMES[value.isoweekday()]


def hours_as_days(hours: int) -> str:
    days = round(hours / 24, 1)
    return f"{days:g}"
