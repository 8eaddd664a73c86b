"""
Event definitions for the Student Leave Service.

Defines event types and their data structures for Kafka publishing.
Every event that changes a student's leave records carries the student's
user_id so consumers can invalidate per-user state such as the quota cache.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types produced by the Student Leave Service."""

    # Leave Request Events
    LEAVE_REQUESTED = "leave.requested"
    LEAVE_DELETED = "leave.deleted"

    # Leave Decision Events
    LEAVE_APPROVED = "leave.approved"
    LEAVE_REJECTED = "leave.rejected"

    # Quota Events
    LEAVE_LIMIT_EXCEEDED = "leave.limit_exceeded"


class EventMetadata(BaseModel):
    """Metadata attached to every event for tracing and correlation."""

    source_service: str = "student-leave-service"
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))
    actor_user_id: Optional[str] = None
    actor_role: Optional[str] = None


class EventEnvelope(BaseModel):
    """
    Standard envelope for all events.
    Provides consistent structure for Kafka messages.
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: EventType
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    version: str = "1.0"
    data: dict[str, Any]
    metadata: EventMetadata = Field(default_factory=EventMetadata)


class LeaveRequestedEvent(BaseModel):
    """Data for leave.requested event."""

    leave_id: int
    user_id: str
    user_name: str
    stream: str
    request_type: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    selected_dates: list[str] = []
    requested_days: int


class LeaveDecidedEvent(BaseModel):
    """Data for leave.approved and leave.rejected events."""

    leave_id: int
    user_id: str
    status: str
    decided_by: str
    decided_at: datetime
    days_count: int


class LeaveDeletedEvent(BaseModel):
    """Data for leave.deleted event."""

    leave_id: int
    user_id: str
    status: str
    deleted_by: str


class LeaveLimitExceededEvent(BaseModel):
    """Data for leave.limit_exceeded event, raised on over-quota submissions."""

    leave_id: int
    user_id: str
    current_usage: int
    requested_days: int
    projected_usage: int
    monthly_limit: int
    exceeds_by: int
