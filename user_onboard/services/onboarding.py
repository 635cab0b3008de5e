"""Registration and admin approval workflow.

PENDING is the only non-terminal status. Every transition changes the user
and appends its audit entry inside one transaction, then publishes an event
once the transaction has committed. Publishing is fire-and-forget: a slow or
failing subscriber never delays or undoes a transition.
"""

from typing import Callable, Optional

import structlog

from user_onboard.errors import ErrorKind, OnboardError
from user_onboard.models.user import (
    ADMIN_ROLE,
    DEFAULT_ROLES,
    SYSTEM_ACTOR,
    AuditAction,
    UserStatus,
    UserView,
)
from user_onboard.services.event_bus import (
    USER_APPROVED,
    USER_REGISTERED,
    USER_REJECTED,
    EventBus,
    user_event,
)

logger = structlog.get_logger(__name__)

REGISTRATION_REASON = "User registered via API"
SETUP_REASON = "Initial admin created during setup"
DEFAULT_APPROVE_REASON = "Approved by admin"
DEFAULT_REJECT_REASON = "Rejected by admin"

# status reached and audit action written by each decision
_DECISIONS = {
    UserStatus.ACTIVE: (AuditAction.APPROVED, USER_APPROVED, "approvedBy"),
    UserStatus.REJECTED: (AuditAction.REJECTED, USER_REJECTED, "rejectedBy"),
}


class OnboardingStateMachine:
    """Drives users from PENDING to ACTIVE or REJECTED."""

    def __init__(self, users, audit, events: EventBus, transaction: Callable):
        """
        Args:
            users: UserDirectory (Postgres or memory)
            audit: AuditTrail (Postgres or memory)
            events: EventBus for lifecycle notifications
            transaction: Factory of async context managers yielding a
                connection on which all writes commit atomically
        """
        self.users = users
        self.audit = audit
        self.events = events
        self.transaction = transaction

    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str],
        last_name: Optional[str],
        phone: Optional[str] = None,
    ) -> UserView:
        """Create a PENDING user and its CREATED audit entry.

        Raises:
            OnboardError: DUPLICATE_EMAIL if the email exists in any casing
        """
        async with self.transaction() as conn:
            user = await self.users.create(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                roles=DEFAULT_ROLES,
                status=UserStatus.PENDING,
                conn=conn,
            )
            await self.audit.record(
                user_id=user.id,
                action=AuditAction.CREATED,
                actor_id=SYSTEM_ACTOR,
                old_status=None,
                new_status=UserStatus.PENDING,
                reason=REGISTRATION_REASON,
                conn=conn,
            )

        view = user.to_view()
        self.events.publish(USER_REGISTERED, user_event(USER_REGISTERED, view))
        logger.info("user_registered", user_id=view.id, email=view.email)
        return view

    async def approve(
        self, user_id: str, actor_id: str, reason: Optional[str] = None
    ) -> UserView:
        """Move a PENDING user to ACTIVE.

        Raises:
            OnboardError: NOT_FOUND for an unknown user, INVALID_STATE if the
                user is not PENDING
        """
        return await self._decide(
            user_id, actor_id, UserStatus.ACTIVE, reason or DEFAULT_APPROVE_REASON
        )

    async def reject(
        self, user_id: str, actor_id: str, reason: Optional[str] = None
    ) -> UserView:
        """Move a PENDING user to REJECTED.

        Raises:
            OnboardError: NOT_FOUND for an unknown user, INVALID_STATE if the
                user is not PENDING
        """
        return await self._decide(
            user_id, actor_id, UserStatus.REJECTED, reason or DEFAULT_REJECT_REASON
        )

    async def _decide(
        self, user_id: str, actor_id: str, new_status: UserStatus, reason: str
    ) -> UserView:
        action, topic, actor_field = _DECISIONS[new_status]

        async with self.transaction() as conn:
            user = await self.users.find_by_id(user_id, conn=conn, for_update=True)
            if user is None:
                raise OnboardError(
                    ErrorKind.NOT_FOUND,
                    f"User not found: {user_id}",
                    detail={"user_id": user_id},
                )
            if user.status != UserStatus.PENDING:
                raise _not_pending(user_id, user.status)

            updated = await self.users.update_status(
                user_id,
                new_status,
                expected_status=UserStatus.PENDING,
                conn=conn,
            )
            if updated is None:
                # another decision committed between the read and the update
                raise _not_pending(user_id, None)

            await self.audit.record(
                user_id=user_id,
                action=action,
                actor_id=actor_id,
                old_status=UserStatus.PENDING,
                new_status=new_status,
                reason=reason,
                conn=conn,
            )

        view = updated.to_view()
        extra = {actor_field: actor_id}
        if new_status == UserStatus.REJECTED:
            extra["reason"] = reason
        self.events.publish(topic, user_event(topic, view, **extra))

        logger.info(
            f"user_{action.value.lower()}",
            user_id=user_id,
            performed_by=actor_id,
        )
        return view

    async def bootstrap_admin(
        self,
        email: str,
        password: str,
        first_name: Optional[str],
        last_name: Optional[str],
        phone: Optional[str] = None,
    ) -> UserView:
        """Create the first, already ACTIVE, admin account.

        Raises:
            OnboardError: INVALID_STATE if any user already exists
        """
        async with self.transaction() as conn:
            if await self.users.count_users(conn=conn, lock=True) > 0:
                raise OnboardError(
                    ErrorKind.INVALID_STATE,
                    "Setup already completed. Users already exist.",
                )
            user = await self.users.create(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                roles=f"{DEFAULT_ROLES},{ADMIN_ROLE}",
                status=UserStatus.ACTIVE,
                conn=conn,
            )
            await self.audit.record(
                user_id=user.id,
                action=AuditAction.CREATED,
                actor_id=SYSTEM_ACTOR,
                old_status=None,
                new_status=UserStatus.ACTIVE,
                reason=SETUP_REASON,
                conn=conn,
            )

        logger.info("admin_setup_completed", user_id=user.id, email=user.email)
        return user.to_view()


def _not_pending(user_id: str, status: Optional[UserStatus]) -> OnboardError:
    current = status.value if status else "unknown"
    return OnboardError(
        ErrorKind.INVALID_STATE,
        f"User is not in PENDING status. Current status: {current}",
        detail={"user_id": user_id, "status": current},
    )
