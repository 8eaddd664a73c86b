"""
Monthly usage aggregation.

Reduces a user's leave records to the number of approved leave-days that
count against a given calendar month. A record counts in the month it was
approved (decided_at), not in the months its dates fall in; this holds for
calendar requests as well.
"""

from datetime import date, datetime
from typing import Any, Iterable

from app.models.leave import LeaveStatus, RequestKind
from app.quota.dates import MonthKey, day_count

FALLBACK_DAYS = 1


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _status_of(record: Any) -> str:
    status = getattr(record, "status", None)
    return status.value if isinstance(status, LeaveStatus) else str(status)


def approval_month(record: Any) -> MonthKey | None:
    """Month a record counts in; legacy rows without decided_at use updated_at."""
    stamp = getattr(record, "decided_at", None) or getattr(record, "updated_at", None)
    if isinstance(stamp, str):
        try:
            stamp = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(stamp, (date, datetime)):
        return MonthKey.from_date(stamp)
    return None


def record_day_count(record: Any) -> int:
    """
    Leave-days a single record represents.

    Calendar records count their selected dates, range records their
    inclusive span. Anything else counts as one day.
    """
    selected = getattr(record, "selected_dates", None)
    if getattr(record, "request_type", None) == RequestKind.CALENDAR and isinstance(
        selected, (list, tuple)
    ):
        return len(selected)

    start = _as_date(getattr(record, "start_date", None))
    end = _as_date(getattr(record, "end_date", None))
    if start is not None and end is not None and end >= start:
        return day_count(start, end)

    return FALLBACK_DAYS


def approved_in_month(
    records: Iterable[Any], target_month: MonthKey | None = None
) -> list[Any]:
    """Approved records that count against target_month (default: current month)."""
    month = target_month or MonthKey.current()
    return [
        record
        for record in records
        if _status_of(record) == LeaveStatus.APPROVED.value and approval_month(record) == month
    ]


def count_approved_days(
    records: Iterable[Any], target_month: MonthKey | None = None
) -> int:
    """
    Total approved leave-days for target_month (default: current month).

    Pending and rejected records contribute nothing. Never raises for a
    single bad record and never mutates its input.
    """
    return sum(record_day_count(record) for record in approved_in_month(records, target_month))
