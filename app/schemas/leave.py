"""
Leave Pydantic schemas.
Defines request/response models for Leave API endpoints.
Separates API contracts from database models for better flexibility.

Dates arrive as strings and are parsed by the quota engine, so malformed
input is reported with the engine's error codes instead of a generic 422.
"""

from datetime import date, datetime

from sqlmodel import Field, SQLModel

from app.models.leave import LeaveStatus, RequestKind


class LeaveBase(SQLModel):
    """
    Base leave schema with shared submitter fields.
    user_id defaults to the authenticated user when omitted.
    """

    user_id: str | None = Field(default=None, max_length=64)
    user_name: str | None = Field(default=None, max_length=255)
    user_email: str | None = Field(default=None, max_length=255)
    roll_number: str | None = Field(default=None, max_length=64)
    stream: str = Field(max_length=32)
    reason: str = Field(min_length=1, max_length=1000)


class LeaveCreate(LeaveBase):
    """Schema for creating a date-range leave request."""

    leave_type: str | None = Field(default=None, max_length=64)
    start_date: str
    end_date: str


class CalendarLeaveCreate(LeaveBase):
    """Schema for creating a calendar leave request (explicit dates)."""

    leave_type: str | None = Field(default=None, max_length=64)
    selected_dates: list[str]


class LeaveStatusUpdate(SQLModel):
    """
    Schema for deciding a leave request.
    Only "approved" and "rejected" are accepted.
    """

    status: str


class LeavePublic(SQLModel):
    """Schema for leave responses."""

    id: int
    user_id: str
    user_name: str
    user_email: str | None = None
    roll_number: str | None = None
    stream: str
    leave_type: str | None = None
    request_type: RequestKind
    start_date: date | None = None
    end_date: date | None = None
    selected_dates: list[str] | None = None
    reason: str
    status: LeaveStatus
    decided_at: datetime | None = None
    decided_by: str | None = None
    submitted_at: datetime
    updated_at: datetime
    days_count: int | None = None


class LeaveStats(SQLModel):
    """Counts of leave requests by status."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0


class AdminLeaveList(SQLModel):
    """All leave requests with their status counts (admin view)."""

    leaves: list[LeavePublic]
    stats: LeaveStats


class LimitInfo(SQLModel):
    current_usage: int
    requested_days: int
    projected_usage: int
    monthly_limit: int
    exceeds_by: int


class LeaveWarning(SQLModel):
    """Non-blocking warning attached to a submission."""

    code: str
    message: str
    limit_info: LimitInfo | None = None


class LeaveCreatedResponse(SQLModel):
    message: str
    leave: LeavePublic
    warning: LeaveWarning | None = None


class LeaveDeletedResponse(SQLModel):
    ok: bool = True
    message: str
    leave_id: int
    status: LeaveStatus


class QuotaCheckRequest(SQLModel):
    """
    Candidate request to check against the monthly quota.
    Either start_date and end_date, or selected_dates.
    """

    user_id: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    selected_dates: list[str] | None = None


class QuotaCheckResponse(SQLModel):
    """
    Quota check outcome.

    validation_failed marks a degraded result: usage could not be loaded,
    the usage fields are null and the request is allowed through.
    """

    is_valid: bool
    current_usage: int | None = None
    requested_days: int
    projected_usage: int | None = None
    remaining_leaves: int | None = None
    exceeds_limit: bool = False
    limit_reached: bool = False
    monthly_limit: int
    message: str
    can_override: bool = False
    validation_failed: bool = False
    error_type: str | None = None


class ApprovedLeaveSummary(SQLModel):
    """An approved leave counted against a month."""

    id: int
    leave_type: str | None = None
    request_type: RequestKind
    start_date: date | None = None
    end_date: date | None = None
    selected_dates: list[str] | None = None
    days_count: int
    decided_at: datetime | None = None


class MonthlyUsagePublic(SQLModel):
    """Approved leave-days used in a month and what remains."""

    user_id: str
    month: str
    month_label: str
    current_usage: int
    monthly_limit: int
    remaining_leaves: int
    approved_leaves: list[ApprovedLeaveSummary] = []
