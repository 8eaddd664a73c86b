import httpx
import pytest

from app.core.security import create_access_token
from app.models.leave import LeaveStatus
from app.quota.dates import MonthKey
from app.quota.errors import DataUnavailable, QuotaErrorCode, QuotaValidationError
from app.services.quota_client import QuotaClient
from app.services.quota_service import evaluate_for_user
from tests.conftest import STUDENT_ID, STUDENT_ROLL, make_leave

RANGE = {"start_date": "2025-03-10", "end_date": "2025-03-12"}

VERDICT_BODY = {
    "is_valid": True,
    "current_usage": 0,
    "requested_days": 3,
    "projected_usage": 3,
    "remaining_leaves": 3,
    "exceeds_limit": False,
    "limit_reached": False,
    "monthly_limit": 3,
    "message": "This request is within your monthly limit. You will have 0 days remaining.",
}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_client(handler, **kwargs):
    kwargs.setdefault("sleep", lambda _: None)
    return QuotaClient(
        base_url="http://quota.test",
        token="token",
        transport=httpx.MockTransport(handler),
        retry_delay=0.5,
        **kwargs,
    )


def test_successful_check_is_cached_per_user_and_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VERDICT_BODY)

    client = make_client(handler)
    first = client.check(STUDENT_ID, RANGE)
    second = client.check(STUDENT_ID, RANGE)

    assert first == second
    assert first.requested_days == 3
    assert len(calls) == 1
    assert calls[0].url.path == "/api/v1/leaves/validate"
    assert calls[0].headers["Authorization"] == "Bearer token"

    client.check("someone-else", RANGE)
    assert len(calls) == 2


def test_cache_entries_expire():
    calls = []
    clock = FakeClock()

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VERDICT_BODY)

    client = make_client(handler, cache_ttl=300, clock=clock)
    client.check(STUDENT_ID, RANGE)
    clock.now += 299
    client.check(STUDENT_ID, RANGE)
    assert len(calls) == 1

    clock.now += 2
    client.check(STUDENT_ID, RANGE)
    assert len(calls) == 2


def test_clear_user_cache_forces_a_fresh_check():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VERDICT_BODY)

    client = make_client(handler)
    client.check(STUDENT_ID, RANGE)
    client.clear_user_cache(STUDENT_ID)
    client.check(STUDENT_ID, RANGE)

    assert len(calls) == 2


def test_closing_the_client_drops_cached_verdicts():
    client = make_client(lambda request: httpx.Response(200, json=VERDICT_BODY))

    with client:
        client.check(STUDENT_ID, RANGE)
        assert client._cache

    assert client._cache == {}


def test_server_errors_are_retried_with_backoff():
    sleeps = []
    responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json=VERDICT_BODY)])

    client = make_client(lambda request: next(responses), sleep=sleeps.append)
    result = client.check(STUDENT_ID, RANGE)

    assert result.validation_failed is False
    assert sleeps == [0.5, 1.0]


def test_network_failure_degrades_after_retries():
    sleeps = []
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, sleep=sleeps.append)
    result = client.check(STUDENT_ID, {"selected_dates": ["2025-03-10", "2025-03-11"]})

    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]
    assert result.is_valid is True
    assert result.validation_failed is True
    assert result.error_type == "NETWORK_ERROR"
    assert result.requested_days == 2
    assert result.current_usage is None
    assert "internet connection" in result.message


def test_degraded_results_are_not_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    client = make_client(handler, max_retries=0)
    client.check(STUDENT_ID, RANGE)
    client.check(STUDENT_ID, RANGE)

    assert len(calls) == 2


@pytest.mark.parametrize(
    "status_code,error_type",
    [(401, "UNAUTHORIZED"), (403, "FORBIDDEN"), (404, "NOT_FOUND"), (409, "UNKNOWN_ERROR")],
)
def test_client_errors_are_not_retried(status_code, error_type):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status_code, json={"detail": "nope"})

    client = make_client(handler)
    result = client.check(STUDENT_ID, RANGE)

    assert len(calls) == 1
    assert result.validation_failed is True
    assert result.error_type == error_type


def test_validation_errors_from_the_service_are_raised():
    def handler(request):
        return httpx.Response(
            400, json={"detail": {"code": "INVALID_DATE_RANGE", "message": "bad range"}}
        )

    client = make_client(handler)
    with pytest.raises(QuotaValidationError) as exc_info:
        client.check(STUDENT_ID, RANGE)
    assert exc_info.value.code == QuotaErrorCode.INVALID_DATE_RANGE


def test_malformed_candidate_is_rejected_locally():
    calls = []
    client = make_client(lambda request: calls.append(request))

    with pytest.raises(QuotaValidationError) as exc_info:
        client.check(STUDENT_ID, {"start_date": "2025-03-12", "end_date": "2025-03-10"})
    assert exc_info.value.code == QuotaErrorCode.INVALID_DATE_RANGE
    assert calls == []


def test_monthly_usage_passes_month_and_raises_when_unavailable():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "user_id": STUDENT_ID,
                "month": "2025-03",
                "month_label": "March 2025",
                "current_usage": 1,
                "monthly_limit": 3,
                "remaining_leaves": 2,
            },
        )

    usage = make_client(handler).get_monthly_usage(STUDENT_ID, MonthKey(2025, 3))
    assert usage.remaining_leaves == 2
    assert seen[0].url.params["month"] == "2025-03"

    failing = make_client(lambda request: httpx.Response(503), max_retries=1)
    with pytest.raises(DataUnavailable) as exc_info:
        failing.get_monthly_usage(STUDENT_ID)
    assert exc_info.value.error_type == "SERVER_ERROR"


def test_client_and_service_agree(client, session):
    """The advisory verdict matches the authoritative one for the same data."""
    make_leave(session, status=LeaveStatus.APPROVED)  # 2 approved days this month
    token = create_access_token(STUDENT_ID, "student", roll_number=STUDENT_ROLL)

    def forward(request):
        response = client.request(
            request.method,
            request.url.path,
            params=request.url.params,
            content=request.content,
            headers={
                "Authorization": request.headers["Authorization"],
                "Content-Type": "application/json",
            },
        )
        return httpx.Response(response.status_code, content=response.content)

    quota_client = QuotaClient(
        base_url="http://quota.test", token=token, transport=httpx.MockTransport(forward)
    )
    candidate = {"start_date": "2025-03-20", "end_date": "2025-03-21"}

    advisory = quota_client.check(STUDENT_ID, candidate)
    authoritative = evaluate_for_user(session, STUDENT_ID, candidate)

    assert advisory.validation_failed is False
    assert advisory.current_usage == authoritative.current_usage == 2
    assert advisory.requested_days == authoritative.requested_days == 2
    assert advisory.projected_usage == authoritative.projected_usage == 4
    assert advisory.exceeds_limit is authoritative.exceeds_limit is True
    assert advisory.remaining_leaves == authoritative.remaining_leaves == 1
    assert advisory.message == authoritative.message
