"""Unit tests for RS256 token issuance and validation."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from user_onboard.config import Settings
from user_onboard.errors import ErrorKind, OnboardError, TokenFailure
from user_onboard.services.token_service import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenService,
    hash_token,
)


def _past_clock(delta: timedelta):
    fixed = datetime.now(timezone.utc) - delta
    return lambda: fixed


@pytest.fixture
def tokens(key_material) -> TokenService:
    return TokenService(keys=key_material)


class TestIssue:
    """Tests for access and refresh token issuance."""

    def test_access_token_claims(self, tokens, key_material):
        token = tokens.issue_access_token("user-1", "a@x.com", ["USER", "ADMIN"])

        claims = jwt.decode(token, key_material.public_key, algorithms=["RS256"])
        assert claims["sub"] == "user-1"
        assert claims["email"] == "a@x.com"
        assert claims["roles"] == "USER,ADMIN"
        assert claims["type"] == ACCESS_TOKEN_TYPE
        assert claims["exp"] - claims["iat"] == 15 * 60

    def test_refresh_token_carries_no_profile(self, tokens, key_material):
        token = tokens.issue_refresh_token("user-1")

        claims = jwt.decode(token, key_material.public_key, algorithms=["RS256"])
        assert claims["type"] == REFRESH_TOKEN_TYPE
        assert "email" not in claims
        assert "roles" not in claims
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_header_names_rs256(self, tokens):
        token = tokens.issue_access_token("user-1", "a@x.com", "USER")
        assert jwt.get_unverified_header(token)["alg"] == "RS256"

    def test_refresh_tokens_issued_together_hash_differently(self, tokens):
        first = tokens.issue_refresh_token("user-1")
        second = tokens.issue_refresh_token("user-1")
        assert hash_token(first) != hash_token(second)

    def test_custom_ttls(self, key_material):
        service = TokenService(keys=key_material, access_ttl="5m", refresh_ttl="1h")
        assert service.access_ttl_seconds == 300
        assert service.refresh_ttl == timedelta(hours=1)

    def test_invalid_ttl_rejected(self, key_material):
        with pytest.raises(OnboardError) as exc_info:
            TokenService(keys=key_material, access_ttl="fifteen")
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_requires_keys_or_settings(self):
        with pytest.raises(ValueError):
            TokenService()

    def test_refresh_expiry_matches_claim(self, tokens):
        token = tokens.issue_refresh_token("user-1")
        expiry = tokens.refresh_expiry(token)
        remaining = expiry - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)


class TestLazyKeys:
    """Keys are loaded from the configured paths on first use."""

    def _settings(self, tmp_path) -> Settings:
        return Settings(
            jwt_private_key_path=str(tmp_path / "keys" / "private_key.pem"),
            jwt_public_key_path=str(tmp_path / "keys" / "public_key.pem"),
        )

    def test_loads_keys_on_first_issue(self, tmp_path, key_material):
        settings = self._settings(tmp_path)
        key_material.write(settings.jwt_private_key_path, settings.jwt_public_key_path)

        service = TokenService.from_settings(settings)
        token = service.issue_access_token("user-1", "a@x.com", "USER")

        assert service.validate(token, "user-1") is True
        assert TokenService(keys=key_material).validate(token, "user-1") is True

    def test_missing_keys_fail_on_first_use(self, tmp_path):
        service = TokenService.from_settings(self._settings(tmp_path))

        with pytest.raises(OnboardError) as exc_info:
            service.issue_access_token("user-1", "a@x.com", "USER")
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_load_is_retried_after_failure(self, tmp_path, key_material):
        settings = self._settings(tmp_path)
        service = TokenService.from_settings(settings)
        with pytest.raises(OnboardError):
            service.issue_refresh_token("user-1")

        key_material.write(settings.jwt_private_key_path, settings.jwt_public_key_path)

        token = service.issue_refresh_token("user-1")
        assert service.extract_user_id(token) == "user-1"


class TestDecode:
    """Tests for signature, expiry and type checks."""

    def test_token_signed_by_other_key_is_rejected(self, tokens, other_key_material):
        forger = TokenService(keys=other_key_material)
        forged = forger.issue_access_token("user-1", "a@x.com", "USER,ADMIN")

        with pytest.raises(OnboardError) as exc_info:
            tokens.decode(forged)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN
        assert exc_info.value.cause == TokenFailure.BAD_SIGNATURE

    def test_expired_token_is_rejected(self, key_material):
        issuer = TokenService(keys=key_material, clock=_past_clock(timedelta(hours=1)))
        token = issuer.issue_access_token("user-1", "a@x.com", "USER")

        with pytest.raises(OnboardError) as exc_info:
            TokenService(keys=key_material).decode(token)
        assert exc_info.value.cause == TokenFailure.EXPIRED

    def test_garbage_is_malformed(self, tokens):
        with pytest.raises(OnboardError) as exc_info:
            tokens.decode("not.a.jwt")
        assert exc_info.value.cause == TokenFailure.MALFORMED

    def test_hs256_token_is_rejected(self, tokens):
        token = jwt.encode(
            {"sub": "user-1", "type": "access", "iat": 0, "exp": 9999999999},
            "shared-secret",
            algorithm="HS256",
        )
        with pytest.raises(OnboardError) as exc_info:
            tokens.decode(token)
        assert exc_info.value.kind == ErrorKind.INVALID_TOKEN

    def test_missing_required_claim_is_malformed(self, tokens, key_material):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "user-1", "iat": now, "exp": now + timedelta(minutes=5)},
            key_material.private_key,
            algorithm="RS256",
        )
        with pytest.raises(OnboardError) as exc_info:
            tokens.decode(token)
        assert exc_info.value.cause == TokenFailure.MALFORMED

    def test_wrong_type_is_rejected(self, tokens):
        refresh = tokens.issue_refresh_token("user-1")
        with pytest.raises(OnboardError) as exc_info:
            tokens.decode(refresh, expected_type=ACCESS_TOKEN_TYPE)
        assert exc_info.value.cause == TokenFailure.WRONG_TYPE


class TestValidate:
    """Tests for TokenService.validate."""

    def test_valid_for_its_subject(self, tokens):
        token = tokens.issue_access_token("user-1", "a@x.com", "USER")
        assert tokens.validate(token, "user-1") is True

    def test_subject_mismatch(self, tokens):
        token = tokens.issue_access_token("user-1", "a@x.com", "USER")
        assert tokens.validate(token, "user-2") is False

    def test_expired_is_invalid(self, key_material):
        issuer = TokenService(keys=key_material, clock=_past_clock(timedelta(minutes=16)))
        token = issuer.issue_access_token("user-1", "a@x.com", "USER")
        assert TokenService(keys=key_material).validate(token, "user-1") is False

    def test_just_before_expiry_is_valid(self, key_material):
        issuer = TokenService(keys=key_material, clock=_past_clock(timedelta(minutes=14)))
        token = issuer.issue_access_token("user-1", "a@x.com", "USER")
        assert TokenService(keys=key_material).validate(token, "user-1") is True

    def test_forged_is_invalid(self, tokens, other_key_material):
        forged = TokenService(keys=other_key_material).issue_access_token("user-1", "a@x.com", "USER")
        assert tokens.validate(forged, "user-1") is False


class TestExtractClaim:
    """Tests for claim extraction."""

    def test_by_name(self, tokens):
        token = tokens.issue_access_token("user-1", "a@x.com", "USER")
        assert tokens.extract_claim(token, "email") == "a@x.com"
        assert tokens.extract_user_id(token) == "user-1"

    def test_by_callable(self, tokens):
        token = tokens.issue_access_token("user-1", "a@x.com", "USER,ADMIN")
        roles = tokens.extract_claim(token, lambda claims: claims["roles"].split(","))
        assert roles == ["USER", "ADMIN"]

    def test_missing_claim_is_none(self, tokens):
        token = tokens.issue_refresh_token("user-1")
        assert tokens.extract_claim(token, "email") is None

    def test_expired_only_with_allow_expired(self, key_material):
        issuer = TokenService(keys=key_material, clock=_past_clock(timedelta(hours=1)))
        token = issuer.issue_access_token("user-1", "a@x.com", "USER")
        service = TokenService(keys=key_material)

        with pytest.raises(OnboardError):
            service.extract_claim(token, "sub")
        assert service.extract_claim(token, "sub", allow_expired=True) == "user-1"

    def test_allow_expired_still_checks_signature(self, tokens, other_key_material):
        forged = TokenService(keys=other_key_material).issue_access_token("user-1", "a@x.com", "USER")
        with pytest.raises(OnboardError) as exc_info:
            tokens.extract_claim(forged, "sub", allow_expired=True)
        assert exc_info.value.cause == TokenFailure.BAD_SIGNATURE


class TestHashToken:
    """Tests for hash_token."""

    def test_is_hex_sha256(self):
        digest = hash_token("abc")
        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_deterministic(self):
        assert hash_token("token") == hash_token("token")

    def test_lone_surrogate_hashes(self):
        digest = hash_token("\ud800abc")
        assert len(digest) == 64
        assert digest != hash_token("abc")
