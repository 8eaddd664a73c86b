"""
Error types raised by the quota engine and its data collaborators.
"""

from enum import Enum


class QuotaErrorCode(str, Enum):
    NO_DATES = "NO_DATES"
    INVALID_DATE = "INVALID_DATE"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"


class QuotaError(Exception):
    """Base class for quota engine errors."""


class QuotaValidationError(QuotaError):
    """
    A candidate leave request is malformed.

    Always recoverable: callers translate it into a 400 response or an
    inline form error.
    """

    def __init__(self, code: QuotaErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class DataUnavailable(QuotaError):
    """The leave records needed to compute usage could not be obtained."""

    def __init__(self, reason: str, error_type: str = "DATA_UNAVAILABLE"):
        super().__init__(reason)
        self.reason = reason
        self.error_type = error_type
