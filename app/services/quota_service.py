"""
Student Leave Service - Monthly Quota Service.

Connects the pure quota engine to its collaborators:
- Loads a user's leave records from the database, retrying transient
  database failures with exponential backoff
- Computes monthly usage and quota verdicts
- Serves pre-submission verdicts from the quota cache when possible
- Falls back to a degraded (fail-open) result when usage data is unavailable
"""

import time
from typing import Any, Mapping

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.logging import get_logger
from app.models.leave import Leave
from app.quota.aggregator import approved_in_month, count_approved_days, record_day_count
from app.quota.dates import MonthKey
from app.quota.errors import DataUnavailable
from app.quota.evaluator import CandidateRequest, QuotaVerdict, evaluate, parse_candidate
from app.quota.results import ConfidentResult, QuotaCheckResult, degraded
from app.schemas.leave import ApprovedLeaveSummary, MonthlyUsagePublic
from app.services.quota_cache import (
    cache_usage,
    cache_verdict,
    get_cached_usage,
    get_cached_verdict,
    usage_generation,
)

logger = get_logger(__name__)

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)


def fetch_leave_records(session: Session, user_id: str) -> list[Leave]:
    """
    Load every leave record owned by a user.

    Transient database errors are retried up to USAGE_FETCH_MAX_RETRIES times,
    doubling the delay after each attempt.

    Raises:
        DataUnavailable: if the records still cannot be loaded
    """
    attempts = settings.USAGE_FETCH_MAX_RETRIES + 1
    for attempt in range(attempts):
        try:
            return list(session.exec(select(Leave).where(Leave.user_id == user_id)).all())
        except TRANSIENT_DB_ERRORS as e:
            session.rollback()
            if attempt + 1 >= attempts:
                logger.error(
                    f"Giving up loading leave records for user {user_id} "
                    f"after {attempts} attempt(s): {e}"
                )
                raise DataUnavailable(
                    f"Leave records for user {user_id} are unavailable"
                ) from e
            delay = settings.USAGE_FETCH_RETRY_DELAY * (2**attempt)
            logger.warning(
                f"Loading leave records for user {user_id} failed "
                f"(attempt {attempt + 1}/{attempts}), retrying in {delay:.1f}s: {e}"
            )
            time.sleep(delay)
    raise DataUnavailable(f"Leave records for user {user_id} are unavailable")


def compute_usage(
    session: Session, user_id: str, month: MonthKey | None = None, use_cache: bool = True
) -> int:
    """Approved leave-days counted against a user's month."""
    month = month or MonthKey.current()
    if use_cache:
        cached = get_cached_usage(user_id, month)
        if cached is not None:
            logger.debug(f"Usage for user {user_id} in {month} served from cache")
            return cached

    generation = usage_generation(user_id)
    records = fetch_leave_records(session, user_id)
    usage = count_approved_days(records, month)
    if generation is not None:
        cache_usage(user_id, month, usage, generation)
    return usage


def _approved_summary(record: Leave) -> ApprovedLeaveSummary:
    return ApprovedLeaveSummary(
        id=record.id,
        leave_type=record.leave_type,
        request_type=record.request_type,
        start_date=record.start_date,
        end_date=record.end_date,
        selected_dates=record.selected_dates,
        days_count=record_day_count(record),
        decided_at=record.decided_at or record.updated_at,
    )


def get_monthly_usage(
    session: Session, user_id: str, month: MonthKey | None = None
) -> MonthlyUsagePublic:
    """
    Monthly usage summary for a user, listing the approved leaves that
    count against the month.

    Raises:
        DataUnavailable: if the user's records cannot be loaded
    """
    month = month or MonthKey.current()
    limit = settings.MONTHLY_LEAVE_LIMIT

    generation = usage_generation(user_id)
    records = fetch_leave_records(session, user_id)
    approved = approved_in_month(records, month)
    usage = sum(record_day_count(record) for record in approved)
    if generation is not None:
        cache_usage(user_id, month, usage, generation)

    return MonthlyUsagePublic(
        user_id=user_id,
        month=str(month),
        month_label=month.label,
        current_usage=usage,
        monthly_limit=limit,
        remaining_leaves=max(0, limit - usage),
        approved_leaves=[_approved_summary(record) for record in approved],
    )


def evaluate_for_user(
    session: Session,
    user_id: str,
    candidate: CandidateRequest | Mapping[str, Any],
    monthly_limit: int | None = None,
    use_cache: bool = False,
) -> QuotaVerdict:
    """
    Authoritative verdict for a candidate request.

    Raises:
        QuotaValidationError: if the candidate is malformed
        DataUnavailable: if the user's records cannot be loaded
    """
    request = parse_candidate(candidate)
    limit = settings.MONTHLY_LEAVE_LIMIT if monthly_limit is None else monthly_limit
    month = MonthKey.current()

    if use_cache and limit == settings.MONTHLY_LEAVE_LIMIT:
        cached = get_cached_verdict(user_id, month, request)
        if cached is not None:
            logger.debug(f"Quota verdict for user {user_id} served from cache")
            return cached

    generation = usage_generation(user_id)
    usage = compute_usage(session, user_id, month, use_cache=use_cache)
    verdict = evaluate(usage, request, limit)

    if generation is not None and limit == settings.MONTHLY_LEAVE_LIMIT:
        cache_verdict(user_id, month, request, verdict, generation)
    return verdict


def check_quota(
    session: Session,
    user_id: str,
    candidate: CandidateRequest | Mapping[str, Any],
    monthly_limit: int | None = None,
) -> QuotaCheckResult:
    """
    Pre-submission quota check.

    Returns a ConfidentResult when usage could be computed, otherwise a
    DegradedResult that lets the request through.

    Raises:
        QuotaValidationError: if the candidate is malformed
    """
    request = parse_candidate(candidate)
    limit = settings.MONTHLY_LEAVE_LIMIT if monthly_limit is None else monthly_limit
    try:
        verdict = evaluate_for_user(session, user_id, request, limit, use_cache=True)
    except DataUnavailable as e:
        logger.warning(f"Quota check degraded for user {user_id}: {e.reason}")
        return degraded(e.reason, e.error_type, request.requested_days, limit)

    return ConfidentResult(verdict=verdict)
