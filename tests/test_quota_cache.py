from app.core.config import settings
from app.quota.dates import MonthKey
from app.quota.evaluator import evaluate, parse_candidate
from app.services import quota_cache

MARCH = MonthKey(2025, 3)


def candidate():
    return parse_candidate({"start_date": "2025-03-10", "end_date": "2025-03-11"})


def test_usage_round_trip_uses_expected_key(redis):
    assert quota_cache.cache_usage("stu-1", MARCH, 2) is True

    assert "leave:usage:stu-1:2025-03" in redis.store
    assert redis.ttls["leave:usage:stu-1:2025-03"] == settings.QUOTA_CACHE_TTL
    assert quota_cache.get_cached_usage("stu-1", MARCH) == 2


def test_verdict_round_trip(redis):
    verdict = evaluate(1, candidate())
    quota_cache.cache_verdict("stu-1", MARCH, candidate(), verdict)

    assert all(key.startswith("leave:quota:stu-1:2025-03:") for key in redis.store)
    assert quota_cache.get_cached_verdict("stu-1", MARCH, candidate()) == verdict


def test_invalidate_drops_only_that_users_entries(redis):
    quota_cache.cache_usage("stu-1", MARCH, 2)
    quota_cache.cache_usage("stu-2", MARCH, 1)
    quota_cache.cache_verdict("stu-1", MARCH, candidate(), evaluate(2, candidate()))

    assert quota_cache.invalidate_user_quota("stu-1") is True

    assert quota_cache.get_cached_usage("stu-1", MARCH) is None
    assert quota_cache.get_cached_verdict("stu-1", MARCH, candidate()) is None
    assert quota_cache.get_cached_usage("stu-2", MARCH) == 1


def test_malformed_cached_verdict_is_a_miss(redis):
    quota_cache.cache_verdict("stu-1", MARCH, candidate(), evaluate(0, candidate()))
    key = next(iter(redis.store))
    redis.store[key] = '{"current_usage": "lots"}'

    assert quota_cache.get_cached_verdict("stu-1", MARCH, candidate()) is None


def test_leave_event_invalidates_the_affected_user(redis):
    quota_cache.cache_usage("stu-1", MARCH, 3)

    quota_cache.handle_leave_event({"event_id": "e-1", "data": {"user_id": "stu-1"}})

    assert quota_cache.get_cached_usage("stu-1", MARCH) is None


def test_leave_event_without_user_is_ignored(redis):
    quota_cache.cache_usage("stu-1", MARCH, 3)

    quota_cache.handle_leave_event({"event_id": "e-2", "data": {}})

    assert quota_cache.get_cached_usage("stu-1", MARCH) == 3


def test_disabled_cache_always_misses():
    assert settings.CACHE_ENABLED is False
    assert quota_cache.cache_usage("stu-1", MARCH, 2) is False
    assert quota_cache.get_cached_usage("stu-1", MARCH) is None


def test_invalidation_advances_the_generation(redis):
    assert quota_cache.usage_generation("stu-1") == 0

    quota_cache.invalidate_user_quota("stu-1")
    quota_cache.invalidate_user_quota("stu-1")

    assert quota_cache.usage_generation("stu-1") == 2
    assert quota_cache.usage_generation("stu-2") == 0


def test_usage_from_before_an_invalidation_is_not_cached(redis):
    generation = quota_cache.usage_generation("stu-1")
    quota_cache.invalidate_user_quota("stu-1")

    assert quota_cache.cache_usage("stu-1", MARCH, 2, generation) is False
    assert quota_cache.get_cached_usage("stu-1", MARCH) is None

    fresh = quota_cache.usage_generation("stu-1")
    assert quota_cache.cache_usage("stu-1", MARCH, 0, fresh) is True
    assert quota_cache.get_cached_usage("stu-1", MARCH) == 0


def test_invalidation_racing_the_write_cancels_it(redis):
    generation = quota_cache.usage_generation("stu-1")
    redis.before_execute = lambda: redis.incr("leave:generation:stu-1")

    verdict = evaluate(1, candidate())
    assert quota_cache.cache_verdict("stu-1", MARCH, candidate(), verdict, generation) is False
    assert quota_cache.get_cached_verdict("stu-1", MARCH, candidate()) is None
