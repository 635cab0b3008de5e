"""Admin API endpoints for the approval queue and user management."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from user_onboard.api.dependencies import get_runtime, require_admin
from user_onboard.errors import ErrorKind, OnboardError
from user_onboard.models.auth import (
    ActiveSessions,
    AdminActionRequest,
    AuditEntryResponse,
    RevokedSessions,
    StatusCounts,
    UserPage,
)
from user_onboard.models.user import UserStatus, UserView
from user_onboard.runtime import Runtime

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/users/pending")
async def list_pending_users(
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> list[UserView]:
    """Users awaiting a decision, oldest first."""
    users = await runtime.users.list_by_status(UserStatus.PENDING)
    return [u.to_view() for u in users]


@router.get("/users")
async def list_users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> UserPage:
    """List all users newest first, one page at a time."""
    users = await runtime.users.list_users(limit=limit, offset=offset)
    total = await runtime.users.count_users()
    return UserPage(items=[u.to_view() for u in users], total=total, limit=limit, offset=offset)


@router.post("/users/{user_id}/approve")
async def approve_user(
    user_id: str,
    request: Optional[AdminActionRequest] = None,
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> UserView:
    """Approve a PENDING user.

    Raises:
        OnboardError: NOT_FOUND (404), INVALID_STATE (409) if not PENDING
    """
    reason = request.reason if request else None
    user = await runtime.onboarding.approve(user_id, admin.id, reason)
    logger.info("admin_approved_user", admin_id=admin.id, target_user_id=user_id)
    return user


@router.post("/users/{user_id}/reject")
async def reject_user(
    user_id: str,
    request: Optional[AdminActionRequest] = None,
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> UserView:
    """Reject a PENDING user.

    Raises:
        OnboardError: NOT_FOUND (404), INVALID_STATE (409) if not PENDING
    """
    reason = request.reason if request else None
    user = await runtime.onboarding.reject(user_id, admin.id, reason)
    logger.info("admin_rejected_user", admin_id=admin.id, target_user_id=user_id)
    return user


@router.get("/users/{user_id}/audit")
async def get_audit_history(
    user_id: str,
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> list[AuditEntryResponse]:
    """Audit history of one user, newest first."""
    if await runtime.users.find_by_id(user_id) is None:
        raise OnboardError(ErrorKind.NOT_FOUND, f"User not found: {user_id}")

    entries = await runtime.audit.list_for_user(user_id)
    return [AuditEntryResponse(**e.model_dump()) for e in entries]


@router.get("/users/{user_id}/sessions")
async def count_user_sessions(
    user_id: str,
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> ActiveSessions:
    """Number of refresh tokens a user could still exchange."""
    if await runtime.users.find_by_id(user_id) is None:
        raise OnboardError(ErrorKind.NOT_FOUND, f"User not found: {user_id}")

    active = await runtime.revocations.count_valid_for_user(user_id, datetime.now(timezone.utc))
    return ActiveSessions(user_id=user_id, active=active)


@router.post("/users/{user_id}/sessions/revoke")
async def revoke_user_sessions(
    user_id: str,
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> RevokedSessions:
    """Log a user out of every session."""
    if await runtime.users.find_by_id(user_id) is None:
        raise OnboardError(ErrorKind.NOT_FOUND, f"User not found: {user_id}")

    revoked = await runtime.auth.logout_all(user_id)
    logger.info(
        "admin_revoked_sessions",
        admin_id=admin.id,
        target_user_id=user_id,
        revoked=revoked,
    )
    return RevokedSessions(revoked=revoked)


@router.get("/statistics")
async def statistics(
    admin: UserView = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
) -> StatusCounts:
    """Number of users in each onboarding status."""
    counts = await runtime.users.status_counts()
    return StatusCounts(
        pending=counts[UserStatus.PENDING],
        active=counts[UserStatus.ACTIVE],
        rejected=counts[UserStatus.REJECTED],
    )
