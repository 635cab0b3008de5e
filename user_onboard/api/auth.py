"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, Response, status
import structlog

from user_onboard.api.dependencies import get_current_user, get_runtime
from user_onboard.models.auth import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RegisterRequest,
    RevokedSessions,
    SetupRequest,
)
from user_onboard.models.user import UserView
from user_onboard.runtime import Runtime

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/status")
async def auth_status(runtime: Runtime = Depends(get_runtime)) -> dict:
    """Check if first-run setup is needed.

    Returns whether any users exist, so a client can choose between the
    setup page and the login page.
    """
    count = await runtime.users.count_users()
    return {"setup_required": count == 0}


@router.post("/setup", status_code=status.HTTP_201_CREATED)
async def setup(
    request: SetupRequest, runtime: Runtime = Depends(get_runtime)
) -> LoginResponse:
    """First-run admin account setup.

    Creates an ACTIVE admin and logs it in. Only works when no users exist.

    Raises:
        OnboardError: INVALID_STATE (409) if users already exist
    """
    await runtime.onboarding.bootstrap_admin(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
    )
    return await runtime.auth.login(request.email, request.password)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest, runtime: Runtime = Depends(get_runtime)
) -> UserView:
    """Self-service registration. The account stays PENDING until an admin decides.

    Raises:
        OnboardError: DUPLICATE_EMAIL (409) if the email is taken in any casing
    """
    return await runtime.onboarding.register(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
    )


@router.post("/login")
async def login(
    request: LoginRequest, runtime: Runtime = Depends(get_runtime)
) -> LoginResponse:
    """Login with email and password.

    Raises:
        OnboardError: INVALID_CREDENTIALS (401), ACCOUNT_NOT_ACTIVE (403)
    """
    return await runtime.auth.login(request.email, request.password)


@router.post("/refresh")
async def refresh(
    request: RefreshRequest, runtime: Runtime = Depends(get_runtime)
) -> LoginResponse:
    """Exchange a refresh token for a new access token.

    A replacement refresh token is only returned when rotation is enabled.

    Raises:
        OnboardError: INVALID_TOKEN (401) for unknown, revoked or expired tokens
    """
    return await runtime.auth.refresh(request.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: RefreshRequest, runtime: Runtime = Depends(get_runtime)
) -> Response:
    """Revoke one refresh token. Always succeeds."""
    await runtime.auth.logout(request.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/logout-all")
async def logout_all(
    current_user: UserView = Depends(get_current_user),
    runtime: Runtime = Depends(get_runtime),
) -> RevokedSessions:
    """Revoke every refresh token of the current user."""
    revoked = await runtime.auth.logout_all(current_user.id)
    return RevokedSessions(revoked=revoked)


@router.get("/me")
async def get_me(current_user: UserView = Depends(get_current_user)) -> UserView:
    """Get current authenticated user info."""
    return current_user
