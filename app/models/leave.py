"""
Leave database model.

A leave request is either a contiguous inclusive date range or an explicit
list of calendar dates. Approval or rejection happens exactly once and is
stamped in decided_at, which is also the timestamp the monthly quota buckets
approved leave by.
"""

from datetime import date, datetime, timezone
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestKind(str, Enum):
    RANGE = "range"
    CALENDAR = "calendar"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Leave(SQLModel, table=True):
    __tablename__ = "leaves"
    __table_args__ = (
        sa.Index("ix_leaves_user_status", "user_id", "status"),
        sa.Index("ix_leaves_user_decided", "user_id", "decided_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    user_name: str = Field(max_length=255)
    user_email: str | None = Field(default=None, max_length=255)
    roll_number: str | None = Field(default=None, max_length=64)
    stream: str = Field(max_length=32, index=True)
    leave_type: str | None = Field(default=None, max_length=64)
    request_type: RequestKind = Field(default=RequestKind.RANGE)

    # Range requests
    start_date: date | None = None
    end_date: date | None = None

    # Calendar requests, stored as ISO date strings
    selected_dates: list[str] | None = Field(default=None, sa_column=sa.Column(sa.JSON))

    reason: str = Field(max_length=1000)
    status: LeaveStatus = Field(default=LeaveStatus.PENDING, index=True)
    decided_at: datetime | None = None
    decided_by: str | None = Field(default=None, max_length=64)
    submitted_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
