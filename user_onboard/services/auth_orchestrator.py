"""Login, refresh and logout on top of tokens, revocation and the directory."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from user_onboard.errors import ErrorKind, OnboardError, TokenFailure, invalid_token
from user_onboard.models.auth import LoginResponse
from user_onboard.models.user import User, UserView
from user_onboard.services.durations import parse_duration
from user_onboard.services.token_service import ACCESS_TOKEN_TYPE, TokenService, hash_token

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthOrchestrator:
    """Issues, exchanges and revokes sessions.

    Refresh tokens are not rotated by default: exchanging one returns a new
    access token and leaves the refresh token valid until it expires or is
    revoked. With ``rotate_refresh_tokens`` the presented token is revoked on
    use and a replacement is returned.
    """

    def __init__(
        self,
        tokens: TokenService,
        revocations,
        users,
        rotate_refresh_tokens: bool = False,
        revoked_retention: str = "30d",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tokens = tokens
        self.revocations = revocations
        self.users = users
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.revoked_retention: timedelta = parse_duration(revoked_retention)
        self._clock = clock

    async def login(self, email: str, password: str) -> LoginResponse:
        """Check credentials and open a new session.

        Raises:
            OnboardError: INVALID_CREDENTIALS for an unknown email or wrong
                password (indistinguishable to the caller),
                ACCOUNT_NOT_ACTIVE for a PENDING or REJECTED user
        """
        user = await self.users.verify_credential(email, password)
        if user is None:
            raise OnboardError(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

        if not user.is_active:
            logger.warning("login_rejected_inactive", user_id=user.id, status=user.status.value)
            raise OnboardError(
                ErrorKind.ACCOUNT_NOT_ACTIVE,
                f"User account is not active. Status: {user.status.value}",
                detail={"user_id": user.id, "status": user.status.value},
            )

        access_token = self._access_token_for(user)
        refresh_token = await self._open_session(user.id)

        logger.info("user_logged_in", user_id=user.id)
        return LoginResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.tokens.access_ttl_seconds,
            user=user.to_view(),
        )

    async def refresh(self, refresh_token: str) -> LoginResponse:
        """Exchange a refresh token for a new access token.

        User details are read from the directory, never from the token.

        Raises:
            OnboardError: INVALID_TOKEN if the token is unknown, revoked or
                expired; NOT_FOUND if its user no longer exists
        """
        token_hash = hash_token(refresh_token)
        record, failure = await self.revocations.lookup(token_hash, self._clock())

        if failure is not None:
            logger.warning(
                "refresh_rejected",
                cause=failure.value,
                user_id=record.user_id if record else None,
            )
            raise invalid_token(failure)

        user = await self.users.find_by_id(record.user_id)
        if user is None:
            logger.warning("refresh_user_missing", user_id=record.user_id)
            raise OnboardError(
                ErrorKind.NOT_FOUND,
                "User not found",
                detail={"user_id": record.user_id},
            )

        new_refresh_token = None
        if self.rotate_refresh_tokens:
            if await self.revocations.revoke_by_hash(token_hash) == 0:
                # a concurrent exchange of the same token won the race
                logger.warning("refresh_rotation_lost_race", user_id=user.id)
                raise invalid_token(TokenFailure.REVOKED)
            new_refresh_token = await self._open_session(user.id)

        access_token = self._access_token_for(user)
        logger.debug("access_token_refreshed", user_id=user.id, rotated=self.rotate_refresh_tokens)

        return LoginResponse(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=self.tokens.access_ttl_seconds,
            user=user.to_view(),
        )

    async def logout(self, refresh_token: str) -> None:
        """Revoke one session. Succeeds even if the token was already unusable."""
        revoked = await self.revocations.revoke_by_hash(hash_token(refresh_token))
        logger.info("user_logged_out", revoked=revoked)

    async def logout_all(self, user_id: str) -> int:
        """Revoke every session of a user.

        Returns:
            Number of sessions revoked
        """
        revoked = await self.revocations.revoke_all_for_user(user_id)
        logger.info("user_logged_out_everywhere", user_id=user_id, revoked=revoked)
        return revoked

    async def authenticate(self, access_token: str) -> UserView:
        """Resolve the user behind an access token.

        Raises:
            OnboardError: INVALID_TOKEN if the token is bad, is not an access
                token, or names a user that no longer exists;
                ACCOUNT_NOT_ACTIVE if the user is not ACTIVE
        """
        claims = self.tokens.decode(access_token, expected_type=ACCESS_TOKEN_TYPE)

        user = await self.users.find_by_id(claims["sub"])
        if user is None:
            raise invalid_token(TokenFailure.UNKNOWN_SUBJECT)
        if not user.is_active:
            raise OnboardError(
                ErrorKind.ACCOUNT_NOT_ACTIVE,
                f"User account is not active. Status: {user.status.value}",
            )
        return user.to_view()

    async def purge_stale_tokens(self, now: Optional[datetime] = None) -> int:
        """Delete expired records and revoked records past the retention window.

        Returns:
            Number of records deleted
        """
        now = now or self._clock()
        expired = await self.revocations.purge_expired_before(now)
        revoked = await self.revocations.purge_revoked_before(now - self.revoked_retention)
        logger.info("stale_refresh_tokens_purged", expired=expired, revoked=revoked)
        return expired + revoked

    def _access_token_for(self, user: User) -> str:
        return self.tokens.issue_access_token(user.id, user.email, user.roles)

    async def _open_session(self, user_id: str) -> str:
        refresh_token = self.tokens.issue_refresh_token(user_id)
        await self.revocations.store(
            user_id,
            hash_token(refresh_token),
            self.tokens.refresh_expiry(refresh_token),
        )
        return refresh_token
