"""Issuance and validation of RS256-signed access and refresh tokens."""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Union
from uuid import uuid4

import jwt
import structlog

from user_onboard.errors import OnboardError, TokenFailure, invalid_token
from user_onboard.models.user import join_roles
from user_onboard.services.durations import parse_duration
from user_onboard.services.key_material import KeyMaterial

logger = structlog.get_logger(__name__)

JWT_ALGORITHM = "RS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
DEFAULT_ACCESS_TOKEN_TTL = "15m"
DEFAULT_REFRESH_TOKEN_TTL = "7d"

REQUIRED_CLAIMS = ["sub", "type", "iat", "exp"]

ClaimSelector = Union[str, Callable[[dict], Any]]


def hash_token(raw_token: str) -> str:
    """Hex SHA-256 of a raw token, the only form in which tokens are stored.

    Lone surrogates are hashed rather than rejected: a string that can never
    match a stored token just produces an unknown hash.
    """
    return hashlib.sha256(raw_token.encode("utf-8", "surrogatepass")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Signs and verifies JWTs with an injected RSA key pair.

    Expiry and signature are checked on every decode unless a caller
    explicitly asks for the claims of an expired token (``allow_expired``),
    which only ever relaxes the expiry check, never the signature check.
    """

    def __init__(
        self,
        keys: Optional[KeyMaterial] = None,
        access_ttl: str = DEFAULT_ACCESS_TOKEN_TTL,
        refresh_ttl: str = DEFAULT_REFRESH_TOKEN_TTL,
        settings=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if keys is None and settings is None:
            raise ValueError("TokenService needs key material or settings to load it from")
        self._keys = keys
        self._settings = settings
        self._clock = clock
        self.access_ttl: timedelta = parse_duration(access_ttl)
        self.refresh_ttl: timedelta = parse_duration(refresh_ttl)

    @classmethod
    def from_settings(cls, settings, keys: Optional[KeyMaterial] = None) -> "TokenService":
        return cls(
            keys=keys,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            settings=settings,
        )

    @property
    def keys(self) -> KeyMaterial:
        """Key pair, loaded from the configured paths on first use if not injected."""
        if self._keys is None:
            logger.warning("jwt_keys_lazy_load", note="keys accessed before startup initialization")
            self._keys = KeyMaterial.from_settings(self._settings)
        return self._keys

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    def _sign(self, payload: dict) -> str:
        return jwt.encode(payload, self.keys.private_key, algorithm=JWT_ALGORITHM)

    def issue_access_token(
        self, user_id: str, email: str, roles: Union[str, Iterable[str]]
    ) -> str:
        """Create a signed access token.

        Args:
            user_id: User id (placed in 'sub')
            email: User email
            roles: Role list or comma-joined role string

        Returns:
            Encoded JWT string
        """
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "email": email,
            "roles": join_roles(roles),
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
            "jti": uuid4().hex,
        }
        token = self._sign(payload)
        logger.debug(
            "access_token_issued",
            user_id=str(user_id),
            expires_seconds=self.access_ttl_seconds,
        )
        return token

    def issue_refresh_token(self, user_id: str) -> str:
        """Create a signed refresh token.

        Carries no email or roles; user details are re-read from the
        directory whenever the token is exchanged. The random ``jti`` keeps
        two tokens issued in the same second from hashing to the same value.
        """
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "type": REFRESH_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.refresh_ttl,
            "jti": uuid4().hex,
        }
        token = self._sign(payload)
        logger.debug("refresh_token_issued", user_id=str(user_id))
        return token

    def refresh_expiry(self, token: str) -> datetime:
        """Expiry of a refresh token, as an aware datetime."""
        exp = self.extract_claim(token, "exp", allow_expired=True)
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def decode(
        self,
        token: str,
        *,
        expected_type: Optional[str] = None,
        allow_expired: bool = False,
    ) -> dict:
        """Verify a token and return its claims.

        Args:
            token: Encoded JWT
            expected_type: Reject the token unless its 'type' claim matches
            allow_expired: Return claims of a correctly signed but expired
                token (for error paths that need to know who held it)

        Returns:
            Decoded claims dict

        Raises:
            OnboardError: INVALID_TOKEN with cause EXPIRED, BAD_SIGNATURE,
                MALFORMED or WRONG_TYPE
        """
        try:
            claims = jwt.decode(
                token,
                self.keys.public_key,
                algorithms=[JWT_ALGORITHM],
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": not allow_expired,
                },
            )
        except jwt.ExpiredSignatureError:
            raise invalid_token(TokenFailure.EXPIRED, "Token has expired")
        except jwt.InvalidSignatureError:
            raise invalid_token(TokenFailure.BAD_SIGNATURE, "Token signature verification failed")
        except jwt.InvalidTokenError as e:
            raise invalid_token(TokenFailure.MALFORMED, f"Malformed token: {e}")

        if expected_type is not None and claims.get("type") != expected_type:
            raise invalid_token(
                TokenFailure.WRONG_TYPE,
                f"Expected a {expected_type} token, got {claims.get('type')!r}",
            )
        return claims

    def validate(
        self, token: str, expected_user_id: str, expected_type: Optional[str] = None
    ) -> bool:
        """Check signature, expiry and subject. Fails closed.

        Returns:
            True only if the token is correctly signed, unexpired, and was
            issued to ``expected_user_id``
        """
        try:
            claims = self.decode(token, expected_type=expected_type)
        except OnboardError as e:
            logger.info("token_validation_failed", cause=e.cause.value if e.cause else None)
            return False

        if claims.get("sub") != str(expected_user_id):
            logger.warning(
                "token_validation_failed",
                cause=TokenFailure.SUBJECT_MISMATCH.value,
                expected_user_id=str(expected_user_id),
            )
            return False
        return True

    def extract_claim(
        self, token: str, selector: ClaimSelector, *, allow_expired: bool = False
    ) -> Any:
        """Read one claim from a verified token.

        Args:
            token: Encoded JWT
            selector: Claim name, or a callable applied to the claims dict
            allow_expired: See ``decode``

        Raises:
            OnboardError: INVALID_TOKEN as in ``decode``
        """
        claims = self.decode(token, allow_expired=allow_expired)
        if callable(selector):
            return selector(claims)
        return claims.get(selector)

    def extract_user_id(self, token: str, *, allow_expired: bool = False) -> str:
        return self.extract_claim(token, "sub", allow_expired=allow_expired)
