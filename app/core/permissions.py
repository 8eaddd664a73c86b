"""
Student Leave Service - RBAC Permissions Module.

Defines role-based access control logic for leave operations.

Hierarchy:
- admin: Full access to every leave request and every student's quota
- student: Can manage their own leaves and read their own quota
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from app.core.logging import get_logger
from app.core.security import ROLE_ADMIN, ROLE_STUDENT, TokenData, get_current_user
from app.models.leave import Leave, LeaveStatus

logger = get_logger(__name__)


def is_admin(user: TokenData) -> bool:
    return user.role == ROLE_ADMIN


def is_student(user: TokenData) -> bool:
    return user.role == ROLE_STUDENT


def can_act_for_user(user: TokenData, target_user_id: str) -> bool:
    """
    Check if user may read quota data or submit leave for target_user_id.

    Students may only act for themselves; admins may act for anyone.
    """
    return is_admin(user) or user.sub == target_user_id


def can_view_leave(user: TokenData, leave: Leave) -> bool:
    return is_admin(user) or leave.user_id == user.sub


def can_delete_leave(user: TokenData, leave: Leave) -> tuple[bool, str | None]:
    """
    Check if user may delete a leave request.

    Rules:
    - Admins can delete any leave
    - Students can delete only their own PENDING leaves

    Returns:
        (allowed, error code when denied)
    """
    if is_admin(user):
        return True, None
    if leave.user_id != user.sub:
        return False, "FORBIDDEN"
    if leave.status != LeaveStatus.PENDING:
        return False, "CANNOT_DELETE"
    return True, None


def require_admin(user: Annotated[TokenData, Depends(get_current_user)]) -> TokenData:
    """
    Dependency that requires the user to be an administrator.

    Raises:
        HTTPException: 403 if user is not an admin
    """
    if not is_admin(user):
        logger.warning(f"Access denied: User {user.sub} is not an admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Admin access required"},
        )
    return user


def require_self_or_admin(user: TokenData, target_user_id: str, action: str) -> None:
    """
    Raise 403 unless user may act for target_user_id.

    Raises:
        HTTPException: 403 when a student targets another user
    """
    allowed = can_act_for_user(user, target_user_id)
    log_authorization_check(user, action, f"user:{target_user_id}", allowed)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "FORBIDDEN",
                "message": "You can only access your own leave data",
            },
        )


def log_authorization_check(
    user: TokenData, action: str, resource: str, allowed: bool
) -> None:
    """
    Log authorization check results for audit purposes.

    Args:
        user: Authenticated user token data
        action: Action being performed (e.g., "validate_leave", "delete_leave")
        resource: Resource being accessed (e.g., "leave:123")
        allowed: Whether access was allowed
    """
    status_str = "ALLOWED" if allowed else "DENIED"
    logger.info(
        f"Authorization {status_str}: user={user.sub}, role={user.role}, "
        f"action={action}, resource={resource}"
    )
