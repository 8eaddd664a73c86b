"""
Student Leave Service - Quota Service Client.

Advisory client for callers that want a quota verdict before submitting a
leave request (frontends, bots, other services). It asks the service's
/validate endpoint and:
- Caches verdicts in-process for QUOTA_CACHE_TTL seconds per (user, request)
- Retries network errors and 5xx responses with exponential backoff
- Never retries 4xx responses
- Falls back to a degraded, non-blocking result when no verdict can be had

The verdict is advisory only: the service recomputes usage on submission.
"""

import time
from typing import Any, Callable, Dict, Mapping, Tuple

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.quota.dates import MonthKey
from app.quota.errors import DataUnavailable, QuotaErrorCode, QuotaValidationError
from app.quota.evaluator import parse_candidate
from app.quota.results import fallback_message
from app.schemas.leave import MonthlyUsagePublic, QuotaCheckResponse

logger = get_logger(__name__)

API_PREFIX = "/api/v1/leaves"

STATUS_ERROR_TYPES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
}


class _RequestFailed(Exception):
    def __init__(self, error_type: str, detail: Any = None):
        super().__init__(error_type)
        self.error_type = error_type
        self.detail = detail


class QuotaClient:
    """HTTP client for the monthly leave quota endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url or settings.QUOTA_SERVICE_URL,
            headers=headers,
            timeout=timeout if timeout is not None else settings.QUOTA_SERVICE_TIMEOUT,
            transport=transport,
        )
        self.cache_ttl = settings.QUOTA_CACHE_TTL if cache_ttl is None else cache_ttl
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, QuotaCheckResponse]] = {}

    def __enter__(self) -> "QuotaClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.clear_cache()
        self._client.close()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_user_cache(self, user_id: str) -> None:
        """Forget cached verdicts for one user, e.g. after they submit a leave."""
        for key in [key for key in self._cache if key[0] == user_id]:
            del self._cache[key]

    def _cached(self, key: Tuple[str, str]) -> QuotaCheckResponse | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, response = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            return None
        return response

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying network errors and 5xx responses.

        Raises:
            _RequestFailed: with the error type once retries are exhausted,
                or immediately on a 4xx response
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                error_type = "NETWORK_ERROR"
                logger.warning(
                    f"Quota service request {method} {url} failed "
                    f"(attempt {attempt + 1}/{attempts}): {e}"
                )
            else:
                if response.status_code < 400:
                    return response
                if response.status_code < 500:
                    raise _RequestFailed(
                        STATUS_ERROR_TYPES.get(response.status_code, "UNKNOWN_ERROR"),
                        _error_detail(response),
                    )
                error_type = "SERVER_ERROR"
                logger.warning(
                    f"Quota service returned {response.status_code} for {method} {url} "
                    f"(attempt {attempt + 1}/{attempts})"
                )

            if attempt + 1 < attempts:
                self._sleep(self.retry_delay * (2**attempt))

        raise _RequestFailed(error_type)

    def check(self, user_id: str, candidate: Mapping[str, Any]) -> QuotaCheckResponse:
        """
        Quota verdict for a candidate request.

        The candidate is validated locally first so the requested day count
        is known even when the service cannot be reached.

        Raises:
            QuotaValidationError: if the candidate is malformed
        """
        request = parse_candidate(candidate)
        key = (user_id, request.cache_key)

        cached = self._cached(key)
        if cached is not None:
            logger.debug(f"Quota verdict for user {user_id} served from client cache")
            return cached

        payload = {
            "user_id": user_id,
            "start_date": request.start_date.isoformat() if request.start_date else None,
            "end_date": request.end_date.isoformat() if request.end_date else None,
            "selected_dates": [d.isoformat() for d in request.selected_dates] or None,
        }
        try:
            response = self._request("POST", f"{API_PREFIX}/validate", json=payload)
        except _RequestFailed as e:
            _raise_validation_error(e.detail)
            logger.warning(f"Quota check for user {user_id} degraded: {e.error_type}")
            return QuotaCheckResponse(
                is_valid=True,
                requested_days=request.requested_days,
                monthly_limit=settings.MONTHLY_LEAVE_LIMIT,
                message=fallback_message(e.error_type),
                validation_failed=True,
                error_type=e.error_type,
            )

        result = QuotaCheckResponse.model_validate(response.json())
        if not result.validation_failed:
            self._cache[key] = (self._clock() + self.cache_ttl, result)
        return result

    def get_monthly_usage(
        self, user_id: str, month: MonthKey | None = None
    ) -> MonthlyUsagePublic:
        """
        Approved usage and remaining quota for a user's month.

        Raises:
            DataUnavailable: if the service cannot provide the figures
        """
        params = {"month": str(month)} if month else None
        try:
            response = self._request(
                "GET", f"{API_PREFIX}/monthly-limit/{user_id}", params=params
            )
        except _RequestFailed as e:
            raise DataUnavailable(
                f"Monthly usage for user {user_id} is unavailable", e.error_type
            ) from e
        return MonthlyUsagePublic.model_validate(response.json())


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("detail") if isinstance(body, dict) else None


def _raise_validation_error(detail: Any) -> None:
    """Re-raise a 400 from the service as the matching QuotaValidationError."""
    if not isinstance(detail, dict):
        return
    try:
        code = QuotaErrorCode(detail.get("code"))
    except ValueError:
        return
    raise QuotaValidationError(code, detail.get("message") or code.value)
