"""Models package exports."""

from user_onboard.models.user import (
    AuditAction,
    AuditLogEntry,
    RefreshTokenRecord,
    User,
    UserStatus,
    UserView,
)

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "RefreshTokenRecord",
    "User",
    "UserStatus",
    "UserView",
]
