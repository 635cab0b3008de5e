"""In-memory backing store for development and tests.

Implements the same methods as the PostgreSQL services. Writes to users and
the audit log are serialized by one asyncio lock; ``transaction()`` holds
that lock for its whole block and restores a snapshot if the block raises,
so a status change and its audit entry land together or not at all.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional
import asyncio
from uuid import uuid4

import structlog

from user_onboard.errors import TokenFailure
from user_onboard.models.user import (
    DEFAULT_ROLES,
    AuditAction,
    AuditLogEntry,
    RefreshTokenRecord,
    User,
    UserStatus,
    join_roles,
)
from user_onboard.services.password_hasher import PasswordHasher
from user_onboard.services.revocation_store import classify
from user_onboard.services.user_directory import duplicate_email

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """Tables shared by the memory directory, audit trail and revocation store."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.user_ids_by_email: dict[str, str] = {}
        self.audit_log: list[AuditLogEntry] = []
        self.refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self._write_lock = asyncio.Lock()

    def _snapshot(self):
        return dict(self.users), dict(self.user_ids_by_email), list(self.audit_log)

    def _restore(self, snapshot) -> None:
        self.users, self.user_ids_by_email, self.audit_log = snapshot

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["MemoryStore"]:
        """Serialize a block of user/audit writes and roll it back on error."""
        async with self._write_lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self._restore(snapshot)
                logger.info("memory_transaction_rolled_back")
                raise

    @asynccontextmanager
    async def writing(self, conn) -> AsyncIterator[None]:
        """Take the write lock unless the caller's transaction already holds it."""
        if conn is not None:
            yield
            return
        async with self._write_lock:
            yield

    async def health_check(self) -> bool:
        return True


class MemoryUserDirectory:
    """UserDirectory over a MemoryStore."""

    def __init__(self, store: MemoryStore, hasher: Optional[PasswordHasher] = None):
        self.tables = store
        self.hasher = hasher or PasswordHasher()

    async def create(
        self,
        email: str,
        password: str,
        first_name: Optional[str],
        last_name: Optional[str],
        phone: Optional[str] = None,
        roles: str = DEFAULT_ROLES,
        status: UserStatus = UserStatus.PENDING,
        conn=None,
    ) -> User:
        normalized_email = email.strip().lower()
        password_hash = self.hasher.hash(password)

        async with self.tables.writing(conn):
            if normalized_email in self.tables.user_ids_by_email:
                logger.warning("user_create_duplicate_email", email=normalized_email)
                raise duplicate_email(normalized_email)

            now = _utcnow()
            user = User(
                id=str(uuid4()),
                email=normalized_email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                roles=join_roles(roles),
                status=status,
                created_at=now,
                updated_at=now,
            )
            self.tables.users[user.id] = user
            self.tables.user_ids_by_email[normalized_email] = user.id

        logger.info("user_created", user_id=user.id, email=normalized_email, status=status.value)
        return user

    async def find_by_id(
        self, user_id: str, conn=None, for_update: bool = False
    ) -> Optional[User]:
        return self.tables.users.get(user_id)

    async def find_by_email(self, email: str, conn=None) -> Optional[User]:
        user_id = self.tables.user_ids_by_email.get(email.strip().lower())
        return self.tables.users.get(user_id) if user_id else None

    async def verify_credential(self, email: str, password: str) -> Optional[User]:
        user = await self.find_by_email(email)

        if user is None:
            self.hasher.burn(password)
            logger.info("credential_check_failed", reason="unknown_email")
            return None

        if not self.hasher.matches(password, user.password_hash):
            logger.info("credential_check_failed", reason="wrong_password", user_id=user.id)
            return None

        return user

    async def update_status(
        self,
        user_id: str,
        new_status: UserStatus,
        expected_status: Optional[UserStatus] = None,
        conn=None,
    ) -> Optional[User]:
        async with self.tables.writing(conn):
            user = self.tables.users.get(user_id)
            if user is None or (expected_status is not None and user.status != expected_status):
                logger.warning(
                    "user_status_update_no_match",
                    user_id=user_id,
                    new_status=new_status.value,
                )
                return None

            updated = user.model_copy(update={"status": new_status, "updated_at": _utcnow()})
            self.tables.users[user_id] = updated

        logger.info("user_status_updated", user_id=user_id, new_status=new_status.value)
        return updated

    async def list_by_status(self, status: UserStatus) -> list[User]:
        users = [u for u in self.tables.users.values() if u.status == status]
        return sorted(users, key=lambda u: u.created_at)

    async def list_users(self, limit: int = 50, offset: int = 0) -> list[User]:
        users = sorted(self.tables.users.values(), key=lambda u: u.created_at, reverse=True)
        return users[offset : offset + limit]

    async def count_users(self, conn=None, lock: bool = False) -> int:
        # transaction() already holds the write lock
        return len(self.tables.users)

    async def status_counts(self) -> dict[UserStatus, int]:
        counts = {status: 0 for status in UserStatus}
        for user in self.tables.users.values():
            counts[user.status] += 1
        return counts


class MemoryAuditTrail:
    """AuditTrail over a MemoryStore."""

    def __init__(self, store: MemoryStore):
        self.tables = store

    async def record(
        self,
        user_id: str,
        action: AuditAction,
        actor_id: str,
        old_status: Optional[UserStatus],
        new_status: UserStatus,
        reason: Optional[str] = None,
        conn=None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=str(uuid4()),
            user_id=user_id,
            action=action,
            performed_by=actor_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
            created_at=_utcnow(),
        )
        async with self.tables.writing(conn):
            self.tables.audit_log.append(entry)

        logger.info(
            "audit_entry_recorded",
            user_id=user_id,
            action=action.value,
            performed_by=actor_id,
        )
        return entry

    async def list_for_user(self, user_id: str) -> list[AuditLogEntry]:
        return [e for e in reversed(self.tables.audit_log) if e.user_id == user_id]


class MemoryRevocationStore:
    """RevocationStore over a MemoryStore, keyed by token hash."""

    def __init__(self, store: MemoryStore):
        self.tables = store

    async def store(
        self, user_id: str, token_hash: str, expires_at: datetime, conn=None
    ) -> RefreshTokenRecord:
        if token_hash in self.tables.refresh_tokens:
            raise ValueError("Refresh token hash already stored")

        record = RefreshTokenRecord(
            id=str(uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            revoked=False,
            created_at=_utcnow(),
        )
        self.tables.refresh_tokens[token_hash] = record
        logger.info("refresh_token_stored", user_id=user_id, record_id=record.id)
        return record

    async def lookup(
        self, token_hash: str, now: datetime
    ) -> tuple[Optional[RefreshTokenRecord], Optional[TokenFailure]]:
        record = self.tables.refresh_tokens.get(token_hash)
        return record, classify(record, now)

    async def find_valid(self, token_hash: str, now: datetime) -> Optional[RefreshTokenRecord]:
        record, failure = await self.lookup(token_hash, now)
        if failure is not None:
            logger.warning(
                f"refresh_token_{failure.value}",
                user_id=record.user_id if record else None,
            )
            return None
        return record

    def _revoke(self, record: RefreshTokenRecord) -> None:
        self.tables.refresh_tokens[record.token_hash] = record.model_copy(update={"revoked": True})

    async def revoke_by_hash(self, token_hash: str, conn=None) -> int:
        record = self.tables.refresh_tokens.get(token_hash)
        revoked = 0
        if record is not None and not record.revoked:
            self._revoke(record)
            revoked = 1
        logger.info("refresh_token_revoked", revoked=revoked)
        return revoked

    async def revoke_all_for_user(self, user_id: str) -> int:
        targets = [
            r for r in self.tables.refresh_tokens.values()
            if r.user_id == user_id and not r.revoked
        ]
        for record in targets:
            self._revoke(record)
        logger.info("all_refresh_tokens_revoked", user_id=user_id, revoked=len(targets))
        return len(targets)

    async def purge_expired_before(self, now: datetime) -> int:
        stale = [h for h, r in self.tables.refresh_tokens.items() if r.expires_at <= now]
        for token_hash in stale:
            del self.tables.refresh_tokens[token_hash]
        logger.info("expired_refresh_tokens_purged", deleted=len(stale))
        return len(stale)

    async def purge_revoked_before(self, before: datetime) -> int:
        stale = [
            h for h, r in self.tables.refresh_tokens.items()
            if r.revoked and r.created_at < before
        ]
        for token_hash in stale:
            del self.tables.refresh_tokens[token_hash]
        logger.info("revoked_refresh_tokens_purged", deleted=len(stale))
        return len(stale)

    async def count_valid_for_user(self, user_id: str, now: datetime) -> int:
        return sum(
            1 for r in self.tables.refresh_tokens.values()
            if r.user_id == user_id and r.is_valid(now)
        )
