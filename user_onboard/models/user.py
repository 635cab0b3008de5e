"""User, refresh token and audit log models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

SYSTEM_ACTOR = "system"
DEFAULT_ROLES = "USER"
ADMIN_ROLE = "ADMIN"


class UserStatus(str, Enum):
    """Onboarding status. ACTIVE and REJECTED are terminal."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    CREATED = "CREATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def split_roles(roles: str) -> list[str]:
    """Split a comma-joined role string into its roles."""
    return [r.strip() for r in roles.split(",") if r.strip()]


def join_roles(roles) -> str:
    """Normalize a role list or comma-joined string into a comma-joined string.

    Raises:
        ValueError: If no role remains after normalization
    """
    if isinstance(roles, str):
        parts = split_roles(roles)
    else:
        parts = [r.strip() for r in roles if r and r.strip()]
    if not parts:
        raise ValueError("A user needs at least one role")
    return ",".join(parts)


class UserView(BaseModel):
    """A user as returned to callers. Never carries the credential."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    roles: str = DEFAULT_ROLES
    status: UserStatus = UserStatus.PENDING
    created_at: datetime
    updated_at: datetime

    @property
    def role_list(self) -> list[str]:
        return split_roles(self.roles)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.role_list

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class User(UserView):
    """A stored user record including the bcrypt password hash."""

    password_hash: str = Field(repr=False)

    def to_view(self) -> UserView:
        """Strip the credential for responses and events."""
        return UserView(**self.model_dump(exclude={"password_hash"}))


class RefreshTokenRecord(BaseModel):
    """A stored refresh token. Only the SHA-256 hash of the token is kept."""

    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    revoked: bool = False
    created_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


class AuditLogEntry(BaseModel):
    """One append-only record of a user status transition."""

    id: str
    user_id: str
    action: AuditAction
    performed_by: str
    old_status: Optional[UserStatus] = None
    new_status: UserStatus
    reason: Optional[str] = None
    created_at: datetime
