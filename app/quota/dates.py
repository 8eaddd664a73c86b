"""
Calendar helpers shared by the quota aggregator, the evaluator and the
advisory HTTP client.

day_count() is the only place an inclusive leave-day count is computed, so
server-side verdicts and client-side estimates cannot drift apart.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable

from app.quota.errors import QuotaErrorCode, QuotaValidationError

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True, order=True)
class MonthKey:
    """A Gregorian calendar month (year + month number)."""

    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_date(cls, value: date | datetime) -> "MonthKey":
        return cls(value.year, value.month)

    @classmethod
    def current(cls) -> "MonthKey":
        return cls.from_date(datetime.now(timezone.utc))

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        """Parse a "YYYY-MM" string."""
        try:
            year_str, month_str = value.strip().split("-")
            return cls(int(year_str), int(month_str))
        except (AttributeError, ValueError):
            raise QuotaValidationError(
                QuotaErrorCode.INVALID_DATE,
                f"Invalid month '{value}'. Use YYYY-MM format",
            )

    @property
    def label(self) -> str:
        """Human-readable label, e.g. "January 2025"."""
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def parse_calendar_date(value: str | date | datetime) -> date:
    """
    Parse a calendar date.

    Accepts date and datetime objects, "YYYY-MM-DD" strings and full ISO
    timestamps (the date part is kept).

    Raises:
        QuotaValidationError: INVALID_DATE if the value is not a calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise QuotaValidationError(
        QuotaErrorCode.INVALID_DATE,
        f"Invalid date '{value}'. Use YYYY-MM-DD format",
    )


def day_count(start: date, end: date) -> int:
    """Inclusive number of calendar days from start to end."""
    return (end - start).days + 1


def distinct_dates(values: Iterable[str | date | datetime]) -> list[date]:
    """Parse values into a sorted list of distinct calendar dates."""
    return sorted({parse_calendar_date(value) for value in values})


def format_day_word(count: int) -> str:
    return "day" if count == 1 else "days"
