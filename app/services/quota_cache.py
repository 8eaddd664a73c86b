"""
Quota cache.

Short-lived cache of monthly usage and quota verdicts, keyed by user. Entries
expire after QUOTA_CACHE_TTL and are dropped for a user whenever one of that
user's leave records is created, decided or deleted. The cache only speeds up
pre-submission checks; submissions always recompute usage from the database.

Every invalidation also bumps a per-user generation counter. Writers read the
generation before loading records and pass it back when caching, so a figure
computed from records that changed mid-flight is never stored.
"""

from typing import Any, Optional

from app.core.cache import (
    bump_counter,
    cache_key,
    delete_matching,
    get_counter,
    get_json,
    set_json,
    set_json_if_unchanged,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.quota.dates import MonthKey
from app.quota.evaluator import CandidateRequest, QuotaVerdict

logger = get_logger(__name__)

VERDICT_PREFIX = "quota"
USAGE_PREFIX = "usage"
GENERATION_PREFIX = "generation"


def _verdict_key(user_id: str, month: MonthKey, candidate: CandidateRequest) -> str:
    return cache_key(
        VERDICT_PREFIX,
        user_id,
        str(month),
        f"{candidate.cache_key}:{settings.MONTHLY_LEAVE_LIMIT}",
    )


def _usage_key(user_id: str, month: MonthKey) -> str:
    return cache_key(USAGE_PREFIX, user_id, str(month))


def _generation_key(user_id: str) -> str:
    return cache_key(GENERATION_PREFIX, user_id)


def _store(key: str, value: Any, user_id: str, generation: Optional[int]) -> bool:
    if generation is None:
        return set_json(key, value, ttl=settings.QUOTA_CACHE_TTL)
    return set_json_if_unchanged(
        key, value, settings.QUOTA_CACHE_TTL, _generation_key(user_id), generation
    )


def usage_generation(user_id: str) -> Optional[int]:
    """Current invalidation generation for a user, None when the cache is unavailable."""
    return get_counter(_generation_key(user_id))


def get_cached_verdict(
    user_id: str, month: MonthKey, candidate: CandidateRequest
) -> Optional[QuotaVerdict]:
    data = get_json(_verdict_key(user_id, month, candidate))
    if data is None:
        return None
    try:
        return QuotaVerdict.model_validate(data)
    except ValueError as e:
        logger.warning(f"Discarding malformed cached verdict for user {user_id}: {e}")
        return None


def cache_verdict(
    user_id: str,
    month: MonthKey,
    candidate: CandidateRequest,
    verdict: QuotaVerdict,
    generation: Optional[int] = None,
) -> bool:
    return _store(
        _verdict_key(user_id, month, candidate), verdict.model_dump(), user_id, generation
    )


def get_cached_usage(user_id: str, month: MonthKey) -> Optional[int]:
    data = get_json(_usage_key(user_id, month))
    return data if isinstance(data, int) else None


def cache_usage(
    user_id: str, month: MonthKey, usage: int, generation: Optional[int] = None
) -> bool:
    """
    Cache a usage figure. With a generation, the write is skipped when the
    user's entries were invalidated after that generation was read.
    """
    return _store(_usage_key(user_id, month), usage, user_id, generation)


def invalidate_user_quota(user_id: str) -> bool:
    """Drop every cached usage figure and verdict for a user."""
    logger.debug(f"Invalidating quota cache for user {user_id}")
    # Bump first so in-flight writers holding the old generation give up
    bumped = bump_counter(_generation_key(user_id))
    verdicts_cleared = delete_matching(cache_key(VERDICT_PREFIX, user_id, "*"))
    usage_cleared = delete_matching(cache_key(USAGE_PREFIX, user_id, "*"))
    return bumped and verdicts_cleared and usage_cleared


def handle_leave_event(message: dict) -> None:
    """Kafka handler: invalidate the quota cache of the user an event concerns."""
    user_id = (message.get("data") or {}).get("user_id")
    if not user_id:
        logger.warning(f"Leave event without user_id: {message.get('event_id')}")
        return
    invalidate_user_quota(str(user_id))
