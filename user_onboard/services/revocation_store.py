"""Hashed refresh token records backed by PostgreSQL."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog

from user_onboard.database import connection
from user_onboard.errors import TokenFailure
from user_onboard.models.user import RefreshTokenRecord

logger = structlog.get_logger(__name__)

TOKEN_COLUMNS = "id, user_id, token_hash, expires_at, revoked, created_at"


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row["id"],
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        expires_at=row["expires_at"],
        revoked=row["revoked"],
        created_at=row["created_at"],
    )


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as 'UPDATE 3'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def classify(record: Optional[RefreshTokenRecord], now: datetime) -> Optional[TokenFailure]:
    """Why a looked-up record cannot be used, or None if it is valid."""
    if record is None:
        return TokenFailure.NOT_FOUND
    if record.revoked:
        return TokenFailure.REVOKED
    if now >= record.expires_at:
        return TokenFailure.EXPIRED
    return None


class RevocationStore:
    """Service for the refresh token lifecycle: store, look up, revoke, purge."""

    async def store(
        self, user_id: str, token_hash: str, expires_at: datetime, conn=None
    ) -> RefreshTokenRecord:
        """Insert a new, unrevoked refresh token record.

        Args:
            user_id: Owning user id
            token_hash: SHA-256 hex digest of the raw token
            expires_at: When the token stops being accepted

        Returns:
            Stored RefreshTokenRecord
        """
        record_id = str(uuid4())
        now = datetime.now(timezone.utc)

        async with connection(conn) as c:
            await c.execute(
                """
                INSERT INTO refresh_tokens (id, user_id, token_hash, expires_at, revoked, created_at)
                VALUES ($1, $2, $3, $4, FALSE, $5)
                """,
                record_id,
                user_id,
                token_hash,
                expires_at,
                now,
            )

        logger.info(
            "refresh_token_stored",
            user_id=user_id,
            record_id=record_id,
            expires_at=expires_at.isoformat(),
        )

        return RefreshTokenRecord(
            id=record_id,
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            revoked=False,
            created_at=now,
        )

    async def lookup(
        self, token_hash: str, now: datetime
    ) -> tuple[Optional[RefreshTokenRecord], Optional[TokenFailure]]:
        """Fetch a record by hash and say why it is unusable, if it is.

        Returns:
            (record, None) for a valid record, otherwise (record or None, cause)
        """
        async with connection() as c:
            row = await c.fetchrow(
                f"SELECT {TOKEN_COLUMNS} FROM refresh_tokens WHERE token_hash = $1",
                token_hash,
            )

        record = _row_to_record(row) if row is not None else None
        return record, classify(record, now)

    async def find_valid(self, token_hash: str, now: datetime) -> Optional[RefreshTokenRecord]:
        """Return the record only if it is unrevoked and unexpired.

        Revoked and expired records both come back as None; the difference
        is only visible in the logs.
        """
        record, failure = await self.lookup(token_hash, now)

        if failure is not None:
            logger.warning(
                f"refresh_token_{failure.value}",
                user_id=record.user_id if record else None,
            )
            return None

        return record

    async def revoke_by_hash(self, token_hash: str, conn=None) -> int:
        """Revoke one token. Revoking an unknown or revoked hash is a no-op.

        Returns:
            Number of records newly revoked (0 or 1)
        """
        async with connection(conn) as c:
            status = await c.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE token_hash = $1 AND revoked = FALSE
                """,
                token_hash,
            )

        revoked = _affected(status)
        logger.info("refresh_token_revoked", revoked=revoked)
        return revoked

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every unrevoked token of a user (logout everywhere).

        Returns:
            Number of records newly revoked
        """
        async with connection() as c:
            status = await c.execute(
                """
                UPDATE refresh_tokens
                SET revoked = TRUE
                WHERE user_id = $1 AND revoked = FALSE
                """,
                user_id,
            )

        revoked = _affected(status)
        logger.info("all_refresh_tokens_revoked", user_id=user_id, revoked=revoked)
        return revoked

    async def purge_expired_before(self, now: datetime) -> int:
        """Delete records that expired at or before ``now``.

        A record past its expiry can never satisfy ``find_valid``, so this is
        safe to run alongside lookups.
        """
        async with connection() as c:
            status = await c.execute(
                "DELETE FROM refresh_tokens WHERE expires_at <= $1",
                now,
            )

        deleted = _affected(status)
        logger.info("expired_refresh_tokens_purged", deleted=deleted)
        return deleted

    async def purge_revoked_before(self, before: datetime) -> int:
        """Delete revoked records created before ``before``."""
        async with connection() as c:
            status = await c.execute(
                "DELETE FROM refresh_tokens WHERE revoked = TRUE AND created_at < $1",
                before,
            )

        deleted = _affected(status)
        logger.info("revoked_refresh_tokens_purged", deleted=deleted)
        return deleted

    async def count_valid_for_user(self, user_id: str, now: datetime) -> int:
        """Number of sessions a user could still refresh."""
        async with connection() as c:
            return await c.fetchval(
                """
                SELECT COUNT(*) FROM refresh_tokens
                WHERE user_id = $1 AND revoked = FALSE AND expires_at > $2
                """,
                user_id,
                now,
            )
