"""
Quota evaluation.

Given the usage already counted for a month and a candidate request,
computes the projected usage and classifies it against the monthly limit.
Evaluation is a pure classification: deciding whether to block, warn or
allow is left to the caller.
"""

from datetime import date
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.quota.dates import day_count, distinct_dates, format_day_word, parse_calendar_date
from app.quota.errors import QuotaErrorCode, QuotaValidationError

DEFAULT_MONTHLY_LIMIT = 3


class CandidateRequest(BaseModel):
    """
    A normalised candidate: either a date range or a set of distinct dates.

    Building one validates it, so a hand-made CandidateRequest is as safe
    to evaluate as one parsed from a request body.

    Raises:
        QuotaValidationError: NO_DATES or INVALID_DATE_RANGE
    """

    model_config = ConfigDict(frozen=True)

    start_date: date | None = None
    end_date: date | None = None
    selected_dates: tuple[date, ...] = ()

    @field_validator("selected_dates")
    @classmethod
    def _distinct_sorted(cls, value: tuple[date, ...]) -> tuple[date, ...]:
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def _check_dates(self) -> "CandidateRequest":
        if self.selected_dates:
            return self
        if self.start_date is None or self.end_date is None:
            raise QuotaValidationError(
                QuotaErrorCode.NO_DATES,
                "Either start_date and end_date, or a non-empty selected_dates list, is required",
            )
        if self.end_date < self.start_date:
            raise QuotaValidationError(
                QuotaErrorCode.INVALID_DATE_RANGE,
                "End date must be after or equal to start date",
            )
        return self

    @property
    def is_calendar(self) -> bool:
        return bool(self.selected_dates)

    @property
    def requested_days(self) -> int:
        if self.is_calendar:
            return len(self.selected_dates)
        return day_count(self.start_date, self.end_date)

    @property
    def cache_key(self) -> str:
        if self.is_calendar:
            return "dates:" + ",".join(d.isoformat() for d in self.selected_dates)
        return f"range:{self.start_date.isoformat()}:{self.end_date.isoformat()}"


class QuotaVerdict(BaseModel):
    """Outcome of evaluating a candidate request against the monthly limit."""

    model_config = ConfigDict(frozen=True)

    current_usage: int = Field(ge=0)
    requested_days: int = Field(ge=0)
    projected_usage: int = Field(ge=0)
    monthly_limit: int = Field(ge=0)
    remaining_leaves: int = Field(ge=0)
    exceeds_limit: bool
    limit_reached: bool
    message: str

    @property
    def exceeds_by(self) -> int:
        return max(0, self.projected_usage - self.monthly_limit)


def parse_candidate(candidate: CandidateRequest | Mapping[str, Any]) -> CandidateRequest:
    """
    Validate and normalise a raw candidate request.

    A non-empty selected_dates list makes it a calendar request; otherwise
    both start_date and end_date are required. Date strings are parsed here,
    the remaining checks run when the CandidateRequest is built.

    Raises:
        QuotaValidationError: NO_DATES, INVALID_DATE or INVALID_DATE_RANGE
    """
    if isinstance(candidate, CandidateRequest):
        return candidate

    selected = candidate.get("selected_dates") or []
    start_raw = candidate.get("start_date")
    end_raw = candidate.get("end_date")

    if selected:
        return CandidateRequest(selected_dates=tuple(distinct_dates(selected)))

    if not start_raw or not end_raw:
        return CandidateRequest()

    return CandidateRequest(
        start_date=parse_calendar_date(start_raw),
        end_date=parse_calendar_date(end_raw),
    )


def build_message(
    current_usage: int, requested_days: int, monthly_limit: int
) -> str:
    projected = current_usage + requested_days
    remaining = max(0, monthly_limit - current_usage)

    if current_usage >= monthly_limit:
        return f"You have already reached your monthly leave limit of {monthly_limit} {format_day_word(monthly_limit)}."
    if projected > monthly_limit:
        exceeds_by = projected - monthly_limit
        return f"This request would exceed your monthly limit by {exceeds_by} {format_day_word(exceeds_by)}."
    left = remaining - requested_days
    return f"This request is within your monthly limit. You will have {left} {format_day_word(left)} remaining."


def evaluate(
    current_usage: int,
    candidate: CandidateRequest | Mapping[str, Any],
    monthly_limit: int = DEFAULT_MONTHLY_LIMIT,
) -> QuotaVerdict:
    """Classify a candidate request against the monthly limit."""
    if current_usage < 0:
        raise ValueError("current_usage must be non-negative")
    if monthly_limit < 0:
        raise ValueError("monthly_limit must be non-negative")

    request = parse_candidate(candidate)
    requested_days = request.requested_days
    projected = current_usage + requested_days

    return QuotaVerdict(
        current_usage=current_usage,
        requested_days=requested_days,
        projected_usage=projected,
        monthly_limit=monthly_limit,
        remaining_leaves=max(0, monthly_limit - current_usage),
        exceeds_limit=projected > monthly_limit,
        limit_reached=current_usage >= monthly_limit,
        message=build_message(current_usage, requested_days, monthly_limit),
    )
