import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


@dataclass(frozen=True, order=True)
class MonthKey:
    """Calendar month identifier, rendered as ``YYYY-MM``.

    Instances order chronologically, so ``MonthKey`` comparisons can be used
    directly for "before/after the origin month" checks.
    """

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Invalid year: {self.year}")

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        match = _MONTH_KEY_RE.match(value.strip())
        if not match:
            raise ValueError(f"Month key must look like YYYY-MM, got {value!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def of(cls, day: date) -> "MonthKey":
        return cls(day.year, day.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days)

    @property
    def days(self) -> int:
        return days_in_month(self.year, self.month)

    def shift(self, months: int) -> "MonthKey":
        total_months = self.month - 1 + months
        return MonthKey(self.year + total_months // 12, total_months % 12 + 1)

    def clamp(self, day: int) -> date:
        """Return ``day`` of this month, snapped to the last valid day."""
        if day < 1:
            raise ValueError(f"Invalid day of month: {day}")
        return date(self.year, self.month, min(day, self.days))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month


MonthLike = Union[MonthKey, str]


def coerce_month_key(value: MonthLike) -> MonthKey:
    if isinstance(value, MonthKey):
        return value
    return MonthKey.parse(value)


def parse_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = value.strip()
    # Full ISO timestamps ("2024-01-31T10:00:00.000Z") carry the date up front.
    if "T" in raw:
        raw = raw.split("T", 1)[0]
    return date.fromisoformat(raw)


def month_key_for(value: Union[date, str]) -> MonthKey:
    return MonthKey.of(parse_date(value))


def clamp_to_month(anchor: date, month: MonthLike) -> date:
    return coerce_month_key(month).clamp(anchor.day)


def is_date_in_month(date_string: Optional[str], month: MonthLike) -> bool:
    if not date_string:
        return False
    try:
        parsed = parse_date(date_string)
    except ValueError:
        return False
    return coerce_month_key(month).contains(parsed)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def current_month_key(today: Optional[date] = None) -> MonthKey:
    return MonthKey.of(today or local_today())
