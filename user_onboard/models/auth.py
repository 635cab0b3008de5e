"""Auth and admin request/response models with validation."""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from user_onboard.models.user import AuditAction, UserStatus, UserView

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# bcrypt only looks at the first 72 bytes of a password
PASSWORD_MAX_BYTES = 72


def _check_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Email address is not valid")
    return v


def _check_password(v: str) -> str:
    if not v.strip():
        raise ValueError("Password cannot be empty or whitespace only")
    if len(v.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password cannot be longer than {PASSWORD_MAX_BYTES} bytes")
    return v


class RegisterRequest(BaseModel):
    """Self-service registration.

    Attributes:
        email: Login email, unique regardless of casing
        password: Password (8-72 bytes)
        first_name: Given name
        last_name: Family name
        phone: Optional phone number
    """

    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        """Ensure the email has a plausible shape."""
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def password_valid(cls, v: str) -> str:
        """Ensure password is not blank and fits bcrypt's input limit."""
        return _check_password(v)


class SetupRequest(RegisterRequest):
    """Initial admin account setup request. Same fields as registration."""


class LoginRequest(BaseModel):
    """Login credentials.

    No length rules beyond non-empty: a failed login must look the same
    whatever was typed.
    """

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    """Refresh token presented for exchange or revocation."""

    refresh_token: str = Field(..., min_length=1)


class AdminActionRequest(BaseModel):
    """Reason attached to an approval or rejection."""

    reason: Optional[str] = Field(default=None, max_length=500)


class LoginResponse(BaseModel):
    """Successful authentication response.

    Attributes:
        access_token: Short-lived RS256 JWT
        refresh_token: Long-lived token for obtaining new access tokens;
            omitted on refresh unless rotation is enabled
        token_type: Always "bearer"
        expires_in: Access token lifetime in seconds
        user: The authenticated user
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int = Field(ge=0, description="Access token lifetime in seconds")
    user: UserView


class UserPage(BaseModel):
    """One page of users for the admin listing."""

    items: list[UserView]
    total: int
    limit: int
    offset: int


class AuditEntryResponse(BaseModel):
    """Audit trail entry as shown to admins."""

    id: str
    user_id: str
    action: AuditAction
    performed_by: str
    old_status: Optional[UserStatus] = None
    new_status: UserStatus
    reason: Optional[str] = None
    created_at: datetime


class StatusCounts(BaseModel):
    """Number of users per onboarding status."""

    pending: int = 0
    active: int = 0
    rejected: int = 0


class RevokedSessions(BaseModel):
    """Result of a logout-everywhere call."""

    revoked: int


class ActiveSessions(BaseModel):
    """Refresh tokens of a user that are neither revoked nor expired."""

    user_id: str
    active: int
