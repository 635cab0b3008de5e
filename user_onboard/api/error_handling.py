"""Translation of service errors into HTTP responses."""

from uuid import uuid4

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

from user_onboard.errors import ErrorKind, OnboardError

logger = structlog.get_logger(__name__)

STATUS_BY_KIND = {
    ErrorKind.DUPLICATE_EMAIL: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ACCOUNT_NOT_ACTIVE: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Shown instead of the error's own message, which may name the failure cause
PUBLIC_MESSAGES = {
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorKind.INVALID_TOKEN: "Invalid or expired token",
    ErrorKind.CONFIGURATION: "Server configuration error",
}


def http_status_for(error: OnboardError) -> int:
    return STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def public_message(error: OnboardError) -> str:
    return PUBLIC_MESSAGES.get(error.kind, error.message)


async def onboard_error_handler(request: Request, exc: OnboardError) -> JSONResponse:
    """Render an OnboardError as ``{"error", "detail", "correlation_id"}``."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    status_code = http_status_for(exc)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        kind=exc.kind.value,
        cause=exc.cause.value if exc.cause else None,
        status_code=status_code,
        message=exc.message,
    )

    headers = {"X-Correlation-Id": correlation_id}
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.kind.value,
            "detail": public_message(exc),
            "correlation_id": correlation_id,
        },
        headers=headers,
    )
