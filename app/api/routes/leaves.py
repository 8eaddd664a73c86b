"""
Student Leave Service - Leave Routes with RBAC Integration.

Implements leave management endpoints with role-based access control:
- Monthly quota checks and usage (students for themselves, admins for anyone)
- Range and calendar leave submission with non-blocking quota warnings
- Admin approval workflow and reporting
"""

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session, select

from app.api.dependencies import SessionDep
from app.core.config import settings
from app.core.events import (
    EventEnvelope,
    EventMetadata,
    EventType,
    LeaveDecidedEvent,
    LeaveDeletedEvent,
    LeaveLimitExceededEvent,
    LeaveRequestedEvent,
)
from app.core.kafka import publish_event
from app.core.logging import get_logger
from app.core.permissions import (
    can_delete_leave,
    can_view_leave,
    is_admin,
    is_student,
    log_authorization_check,
    require_admin,
    require_self_or_admin,
)
from app.core.security import TokenData, get_current_user
from app.models.leave import Leave, LeaveStatus, RequestKind
from app.quota.aggregator import record_day_count
from app.quota.dates import MonthKey
from app.quota.errors import DataUnavailable
from app.quota.evaluator import CandidateRequest, QuotaVerdict, parse_candidate
from app.quota.results import ConfidentResult, QuotaCheckResult, fallback_message
from app.schemas.leave import (
    AdminLeaveList,
    CalendarLeaveCreate,
    LeaveBase,
    LeaveCreate,
    LeaveCreatedResponse,
    LeaveDeletedResponse,
    LeavePublic,
    LeaveStats,
    LeaveStatusUpdate,
    LeaveWarning,
    LimitInfo,
    MonthlyUsagePublic,
    QuotaCheckRequest,
    QuotaCheckResponse,
)
from app.services.quota_cache import invalidate_user_quota
from app.services.quota_service import check_quota, evaluate_for_user, get_monthly_usage

logger = get_logger(__name__)

router = APIRouter(
    prefix="/leaves",
    tags=["leaves"],
    responses={404: {"description": "Leave not found"}},
)

DECISION_STATUSES = {LeaveStatus.APPROVED.value, LeaveStatus.REJECTED.value}


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _to_public(leave: Leave) -> LeavePublic:
    leave_dict = leave.model_dump()
    leave_dict["days_count"] = record_day_count(leave)
    return LeavePublic(**leave_dict)


def _parse_status_filter(status_filter: str | None) -> LeaveStatus | None:
    if not status_filter:
        return None
    try:
        return LeaveStatus(status_filter)
    except ValueError:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_STATUS",
            f"Invalid status. Must be one of: {', '.join([s.value for s in LeaveStatus])}",
        )


def _get_leave_or_404(session: Session, leave_id: int) -> Leave:
    leave = session.get(Leave, leave_id)
    if not leave:
        logger.warning(f"Leave {leave_id} not found")
        raise _error(status.HTTP_404_NOT_FOUND, "LEAVE_NOT_FOUND", "Leave request not found")
    return leave


def _quota_response(result: QuotaCheckResult, can_override: bool) -> QuotaCheckResponse:
    if isinstance(result, ConfidentResult):
        verdict = result.verdict
        return QuotaCheckResponse(
            is_valid=not verdict.exceeds_limit,
            current_usage=verdict.current_usage,
            requested_days=verdict.requested_days,
            projected_usage=verdict.projected_usage,
            remaining_leaves=verdict.remaining_leaves,
            exceeds_limit=verdict.exceeds_limit,
            limit_reached=verdict.limit_reached,
            monthly_limit=verdict.monthly_limit,
            message=verdict.message,
            can_override=can_override,
        )

    # Degraded: usage unknown, allow the request through
    return QuotaCheckResponse(
        is_valid=True,
        requested_days=result.requested_days,
        monthly_limit=result.monthly_limit,
        message=result.message,
        validation_failed=True,
        error_type=result.error_type,
    )


def _resolve_submitter(body: LeaveBase, current_user: TokenData) -> dict[str, Any]:
    """
    Work out whose leave is being submitted and validate the profile fields.

    Students submit for themselves and must quote the roll number on their
    profile; admins may submit for any student.
    """
    user_id = body.user_id or current_user.sub
    require_self_or_admin(current_user, user_id, "create_leave")

    user_name = (body.user_name or current_user.name or "").strip()
    if not user_name:
        raise _error(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "user_name is required")

    valid_streams = settings.valid_streams_list
    if body.stream not in valid_streams:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_STREAM",
            f"Stream must be one of: {', '.join(valid_streams)}",
        )

    if is_student(current_user):
        if not body.roll_number:
            raise _error(
                status.HTTP_400_BAD_REQUEST,
                "ROLLNUMBER_REQUIRED",
                "Roll number is required for student leave requests",
            )
        if body.roll_number != current_user.roll_number:
            raise _error(
                status.HTTP_403_FORBIDDEN,
                "ROLLNUMBER_MISMATCH",
                "Roll number does not match your profile",
            )

    return {
        "user_id": user_id,
        "user_name": user_name,
        "user_email": body.user_email
        or current_user.email
        or f"{user_name.lower().replace(' ', '')}@student.edu",
        "roll_number": body.roll_number,
        "stream": body.stream,
        "reason": body.reason.strip(),
    }


def _submission_warning(
    session: Session, user_id: str, request: CandidateRequest
) -> tuple[LeaveWarning | None, QuotaVerdict | None]:
    """
    Quota warning for a submission. Over-quota submissions are allowed; the
    warning tells the student and the reviewing admin.
    """
    try:
        verdict = evaluate_for_user(session, user_id, request)
    except DataUnavailable as e:
        logger.warning(f"Quota check unavailable for submission by {user_id}: {e.reason}")
        return (
            LeaveWarning(
                code="QUOTA_CHECK_UNAVAILABLE",
                message=fallback_message(e.error_type),
            ),
            None,
        )

    if not verdict.exceeds_limit:
        return None, verdict

    logger.warning(
        f"User {user_id} submitting leave that would exceed monthly limit. "
        f"Current: {verdict.current_usage}, Requested: {verdict.requested_days}, "
        f"Projected: {verdict.projected_usage}"
    )
    warning = LeaveWarning(
        code="LEAVE_LIMIT_EXCEEDED",
        message=(
            "This request exceeds your monthly leave limit. "
            f"Current usage: {verdict.current_usage}, Requested: {verdict.requested_days}, "
            f"Total would be: {verdict.projected_usage}/{verdict.monthly_limit}"
        ),
        limit_info=LimitInfo(
            current_usage=verdict.current_usage,
            requested_days=verdict.requested_days,
            projected_usage=verdict.projected_usage,
            monthly_limit=verdict.monthly_limit,
            exceeds_by=verdict.exceeds_by,
        ),
    )
    return warning, verdict


async def _publish(event_type: EventType, data: dict, current_user: TokenData) -> None:
    try:
        event = EventEnvelope(
            event_type=event_type,
            data=data,
            metadata=EventMetadata(actor_user_id=current_user.sub, actor_role=current_user.role),
        )
        await publish_event(event)
    except Exception as e:
        logger.warning(f"Failed to publish {event_type.value} event: {e}")


async def _store_submission(
    session: Session,
    leave: Leave,
    request: CandidateRequest,
    current_user: TokenData,
    success_message: str,
) -> LeaveCreatedResponse:
    # Usage loading retries with blocking sleeps; keep it off the event loop
    warning, verdict = await run_in_threadpool(
        _submission_warning, session, leave.user_id, request
    )

    session.add(leave)
    session.commit()
    session.refresh(leave)
    invalidate_user_quota(leave.user_id)

    await _publish(
        EventType.LEAVE_REQUESTED,
        LeaveRequestedEvent(
            leave_id=leave.id,
            user_id=leave.user_id,
            user_name=leave.user_name,
            stream=leave.stream,
            request_type=leave.request_type.value,
            start_date=leave.start_date,
            end_date=leave.end_date,
            selected_dates=leave.selected_dates or [],
            requested_days=request.requested_days,
        ).model_dump(mode="json"),
        current_user,
    )
    if verdict is not None and verdict.exceeds_limit:
        await _publish(
            EventType.LEAVE_LIMIT_EXCEEDED,
            LeaveLimitExceededEvent(
                leave_id=leave.id,
                user_id=leave.user_id,
                current_usage=verdict.current_usage,
                requested_days=verdict.requested_days,
                projected_usage=verdict.projected_usage,
                monthly_limit=verdict.monthly_limit,
                exceeds_by=verdict.exceeds_by,
            ).model_dump(mode="json"),
            current_user,
        )

    logger.info(
        f"Leave created: ID={leave.id}, user={leave.user_id}, "
        f"type={leave.request_type.value}, days={request.requested_days}"
    )
    return LeaveCreatedResponse(
        message=success_message,
        leave=_to_public(leave),
        warning=warning,
    )


# ============================================================================
# QUOTA ENDPOINTS
# ============================================================================


@router.post("/validate", response_model=QuotaCheckResponse)
def validate_leave_request(
    body: QuotaCheckRequest,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """
    Check a candidate leave request against the monthly limit.

    **Access**: Students (own requests), Admins (any student)

    **Behavior**:
    - Accepts either start_date/end_date or selected_dates
    - Never blocks; returns the verdict with a human-readable message
    - If usage cannot be loaded the result is marked validation_failed and
      the request is reported as valid (fail open)
    """
    user_id = body.user_id or current_user.sub
    require_self_or_admin(current_user, user_id, "validate_leave")

    result = check_quota(session, user_id, body.model_dump())
    can_override = is_admin(current_user) and settings.ADMIN_CAN_OVERRIDE_LIMIT
    return _quota_response(result, can_override)


@router.get("/monthly-limit/{user_id}", response_model=MonthlyUsagePublic)
def get_monthly_limit(
    user_id: str,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
    month: Annotated[str | None, Query(description="Target month, YYYY-MM")] = None,
):
    """
    Get approved leave usage and remaining quota for a month.

    **Access**: Students (own data), Admins (any student)
    """
    require_self_or_admin(current_user, user_id, "view_monthly_limit")

    target_month = MonthKey.parse(month) if month else None
    try:
        return get_monthly_usage(session, user_id, target_month)
    except DataUnavailable as e:
        logger.error(f"Monthly usage unavailable for user {user_id}: {e.reason}")
        raise _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            e.error_type,
            "Failed to retrieve monthly leave limit",
        )


# ============================================================================
# SUBMISSION ENDPOINTS
# ============================================================================


@router.post("/", response_model=LeaveCreatedResponse, status_code=201)
async def create_leave(
    body: LeaveCreate,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """
    Submit a date-range leave request.

    **Access**: Students (for themselves), Admins (on behalf of a student)

    **Business Rules**:
    - end_date must be on or after start_date
    - stream must be one of the configured streams
    - Students must quote the roll number on their profile
    - Requests over the monthly limit are accepted with a warning
    """
    submitter = _resolve_submitter(body, current_user)
    request = parse_candidate({"start_date": body.start_date, "end_date": body.end_date})

    leave = Leave(
        **submitter,
        leave_type=body.leave_type,
        request_type=RequestKind.RANGE,
        start_date=request.start_date,
        end_date=request.end_date,
        status=LeaveStatus.PENDING,
    )
    return await _store_submission(
        session, leave, request, current_user, "Leave request submitted successfully"
    )


@router.post("/calendar", response_model=LeaveCreatedResponse, status_code=201)
async def create_calendar_leave(
    body: CalendarLeaveCreate,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """
    Submit a calendar leave request (an explicit set of dates).

    **Access**: Students (for themselves), Admins (on behalf of a student)

    **Business Rules**:
    - selected_dates must be a non-empty list of valid dates; duplicates are dropped
    - Requests over the monthly limit are accepted with a warning
    """
    submitter = _resolve_submitter(body, current_user)
    request = parse_candidate({"selected_dates": body.selected_dates})

    leave = Leave(
        **submitter,
        leave_type=body.leave_type,
        request_type=RequestKind.CALENDAR,
        selected_dates=[d.isoformat() for d in request.selected_dates],
        status=LeaveStatus.PENDING,
    )
    return await _store_submission(
        session,
        leave,
        request,
        current_user,
        "Calendar leave request submitted successfully",
    )


# ============================================================================
# LISTING & REPORTING ENDPOINTS
# ============================================================================


def _filtered_query(status_filter: LeaveStatus | None, stream: str | None):
    query = select(Leave)
    if status_filter:
        query = query.where(Leave.status == status_filter)
    if stream:
        query = query.where(Leave.stream == stream)
    return query


def _stats_for(leaves: list[Leave]) -> LeaveStats:
    return LeaveStats(
        total=len(leaves),
        pending=sum(1 for leave in leaves if leave.status == LeaveStatus.PENDING),
        approved=sum(1 for leave in leaves if leave.status == LeaveStatus.APPROVED),
        rejected=sum(1 for leave in leaves if leave.status == LeaveStatus.REJECTED),
    )


@router.get("/", response_model=list[LeavePublic])
def list_leaves(
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    stream: str | None = None,
    offset: int = 0,
    limit: Annotated[int, Query(le=200)] = 100,
):
    """
    List leave requests, newest first.

    **Access**: All authenticated users

    **Behavior**:
    - Students: See only their own leaves
    - Admins: See all leaves
    """
    query = _filtered_query(_parse_status_filter(status_filter), stream)
    if not is_admin(current_user):
        query = query.where(Leave.user_id == current_user.sub)

    leaves = session.exec(
        query.order_by(Leave.submitted_at.desc()).offset(offset).limit(limit)
    ).all()
    logger.info(f"Retrieved {len(leaves)} leave(s) for {current_user.sub}")
    return [_to_public(leave) for leave in leaves]


@router.get("/admin", response_model=AdminLeaveList)
def list_all_leaves(
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(require_admin)],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    stream: str | None = None,
):
    """
    List every leave request with status counts.

    **Access**: Admins
    """
    query = _filtered_query(_parse_status_filter(status_filter), stream)
    leaves = list(session.exec(query.order_by(Leave.submitted_at.desc())).all())
    logger.info(f"Admin {current_user.sub} listed {len(leaves)} leave(s)")
    return AdminLeaveList(leaves=[_to_public(leave) for leave in leaves], stats=_stats_for(leaves))


@router.get("/stats", response_model=LeaveStats)
def get_leave_stats(
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
    stream: str | None = None,
):
    """
    Counts of leave requests by status.

    **Access**: All authenticated users (students see counts of their own leaves)
    """
    query = _filtered_query(None, stream)
    if not is_admin(current_user):
        query = query.where(Leave.user_id == current_user.sub)
    return _stats_for(list(session.exec(query).all()))


@router.get("/{leave_id}", response_model=LeavePublic)
def get_leave(
    leave_id: int,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """
    Retrieve a specific leave request.

    **Access**: Owner or Admins
    """
    leave = _get_leave_or_404(session, leave_id)
    allowed = can_view_leave(current_user, leave)
    log_authorization_check(current_user, "view_leave", f"leave:{leave_id}", allowed)
    if not allowed:
        raise _error(
            status.HTTP_403_FORBIDDEN,
            "FORBIDDEN",
            "You are not authorized to view this leave request",
        )
    return _to_public(leave)


# ============================================================================
# DECISION & DELETION ENDPOINTS
# ============================================================================


@router.patch("/{leave_id}/status", response_model=LeavePublic)
async def update_leave_status(
    leave_id: int,
    status_update: LeaveStatusUpdate,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(require_admin)],
):
    """
    Approve or reject a leave request.

    **Access**: Admins

    **Business Rules**:
    - status must be "approved" or "rejected"
    - A request is decided once; only PENDING requests can be decided
    - The decision time is the month the leave counts against
    """
    if status_update.status not in DECISION_STATUSES:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_STATUS",
            'Status must be either "approved" or "rejected"',
        )

    leave = _get_leave_or_404(session, leave_id)
    if leave.status != LeaveStatus.PENDING:
        logger.warning(f"Cannot decide leave {leave_id} with status {leave.status.value}")
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "ALREADY_DECIDED",
            f"Leave request has already been {leave.status.value}",
        )

    now = datetime.now(timezone.utc)
    leave.status = LeaveStatus(status_update.status)
    leave.decided_at = now
    leave.decided_by = current_user.sub
    leave.updated_at = now

    session.add(leave)
    session.commit()
    session.refresh(leave)
    invalidate_user_quota(leave.user_id)

    event_type = (
        EventType.LEAVE_APPROVED
        if leave.status == LeaveStatus.APPROVED
        else EventType.LEAVE_REJECTED
    )
    await _publish(
        event_type,
        LeaveDecidedEvent(
            leave_id=leave.id,
            user_id=leave.user_id,
            status=leave.status.value,
            decided_by=current_user.sub,
            decided_at=now,
            days_count=record_day_count(leave),
        ).model_dump(mode="json"),
        current_user,
    )

    logger.info(f"Leave {leave_id} {leave.status.value} by {current_user.sub}")
    log_authorization_check(current_user, "decide_leave", f"leave:{leave_id}", True)
    return _to_public(leave)


@router.delete("/{leave_id}", response_model=LeaveDeletedResponse)
async def delete_leave(
    leave_id: int,
    session: SessionDep,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """
    Delete a leave request.

    **Access**: Students (own PENDING requests), Admins (any request)
    """
    leave = _get_leave_or_404(session, leave_id)

    allowed, denial_code = can_delete_leave(current_user, leave)
    log_authorization_check(current_user, "delete_leave", f"leave:{leave_id}", allowed)
    if not allowed:
        message = (
            "You can only delete pending leave requests"
            if denial_code == "CANNOT_DELETE"
            else "You can only delete your own leave requests"
        )
        raise _error(status.HTTP_403_FORBIDDEN, denial_code, message)

    user_id, leave_status = leave.user_id, leave.status
    session.delete(leave)
    session.commit()
    invalidate_user_quota(user_id)

    await _publish(
        EventType.LEAVE_DELETED,
        LeaveDeletedEvent(
            leave_id=leave_id,
            user_id=user_id,
            status=leave_status.value,
            deleted_by=current_user.sub,
        ).model_dump(mode="json"),
        current_user,
    )

    logger.info(f"Leave {leave_id} deleted by {current_user.sub}")
    return LeaveDeletedResponse(
        message="Leave request deleted successfully",
        leave_id=leave_id,
        status=leave_status,
    )
