"""Error kinds shared by the onboarding and authentication services.

Every failure the services surface to callers is an ``OnboardError`` tagged
with an ``ErrorKind``. Callers branch on ``error.kind`` instead of catching
subclasses. Token failures additionally carry a ``TokenFailure`` cause so
logs can say *why* a token was refused while the HTTP layer keeps answering
with one uniform message.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Categories of failures raised by the core services."""

    DUPLICATE_EMAIL = "duplicate_email"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_NOT_ACTIVE = "account_not_active"
    INVALID_TOKEN = "invalid_token"
    CONFIGURATION = "configuration"


class TokenFailure(str, Enum):
    """Specific reason a token was refused."""

    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    WRONG_TYPE = "wrong_type"
    SUBJECT_MISMATCH = "subject_mismatch"
    UNKNOWN_SUBJECT = "unknown_subject"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"


class OnboardError(Exception):
    """A typed service failure.

    Attributes:
        kind: Failure category
        message: Human-readable description (safe to log, not always safe to show)
        cause: Token failure sub-cause, for INVALID_TOKEN errors
        detail: Extra structured context for logging
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[TokenFailure] = None,
        detail: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.detail = detail or {}

    def __repr__(self) -> str:
        return f"OnboardError(kind={self.kind.value!r}, message={self.message!r}, cause={self.cause})"


def configuration_error(message: str, **detail: Any) -> OnboardError:
    """Build a startup-fatal configuration error."""
    return OnboardError(ErrorKind.CONFIGURATION, message, detail=detail)


def invalid_token(cause: TokenFailure, message: str = "Invalid or expired token") -> OnboardError:
    """Build an INVALID_TOKEN error with its specific cause."""
    return OnboardError(ErrorKind.INVALID_TOKEN, message, cause=cause)
