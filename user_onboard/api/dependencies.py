"""FastAPI dependencies for service access, authentication and authorization."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from user_onboard.models.user import UserView
from user_onboard.runtime import Runtime

bearer_scheme = HTTPBearer(auto_error=False)


def get_runtime(request: Request) -> Runtime:
    """Return the services built during application startup."""
    return request.app.state.runtime


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    runtime: Runtime = Depends(get_runtime),
) -> UserView:
    """Resolve the ACTIVE user behind the Bearer access token.

    Raises:
        HTTPException 401: If no Bearer token was sent
        OnboardError: INVALID_TOKEN or ACCOUNT_NOT_ACTIVE from authentication
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await runtime.auth.authenticate(credentials.credentials)


async def require_admin(
    current_user: UserView = Depends(get_current_user),
) -> UserView:
    """Require the current user to hold the ADMIN role.

    Raises:
        HTTPException 403: If user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
