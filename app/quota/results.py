"""
Tagged results for quota checks.

A check either produced a verdict from authoritative usage data
(ConfidentResult) or could not obtain that data and lets the request
through (DegradedResult). Callers branch on `kind`.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.quota.evaluator import QuotaVerdict

FALLBACK_MESSAGES = {
    "DATA_UNAVAILABLE": "Unable to validate against monthly limit. Please check your leave balance manually.",
    "NETWORK_ERROR": "Unable to connect to server. Please check your internet connection.",
    "UNAUTHORIZED": "Session expired. Please log in again.",
    "FORBIDDEN": "You do not have permission to check leave limits.",
    "SERVER_ERROR": "Server is temporarily unavailable. Please try again later.",
}


def fallback_message(error_type: str) -> str:
    return FALLBACK_MESSAGES.get(error_type, FALLBACK_MESSAGES["DATA_UNAVAILABLE"])


class ConfidentResult(BaseModel):
    kind: Literal["confident"] = "confident"
    verdict: QuotaVerdict


class DegradedResult(BaseModel):
    kind: Literal["degraded"] = "degraded"
    reason: str
    error_type: str = "DATA_UNAVAILABLE"
    requested_days: int
    monthly_limit: int
    message: str


QuotaCheckResult = Annotated[
    Union[ConfidentResult, DegradedResult], Field(discriminator="kind")
]


def degraded(
    reason: str, error_type: str, requested_days: int, monthly_limit: int
) -> DegradedResult:
    return DegradedResult(
        reason=reason,
        error_type=error_type,
        requested_days=requested_days,
        monthly_limit=monthly_limit,
        message=fallback_message(error_type),
    )
