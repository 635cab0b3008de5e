"""Unit tests for the in-memory storage backend."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from user_onboard.errors import ErrorKind, OnboardError, TokenFailure
from user_onboard.models.user import AuditAction, UserStatus
from user_onboard.storage.memory import (
    MemoryAuditTrail,
    MemoryRevocationStore,
    MemoryStore,
    MemoryUserDirectory,
)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def users(store, fast_hasher) -> MemoryUserDirectory:
    return MemoryUserDirectory(store, fast_hasher)


@pytest.fixture
def revocations(store) -> MemoryRevocationStore:
    return MemoryRevocationStore(store)


async def _create(users, email="a@x.com"):
    return await users.create(email, "secret-password", "Ada", "Lovelace")


class TestMemoryUserDirectory:
    """Tests for MemoryUserDirectory."""

    async def test_duplicate_email_any_casing(self, users):
        await _create(users, "a@x.com")

        with pytest.raises(OnboardError) as exc_info:
            await _create(users, "A@X.COM")
        assert exc_info.value.kind == ErrorKind.DUPLICATE_EMAIL
        assert await users.count_users() == 1

    async def test_concurrent_registrations_one_wins(self, users):
        results = await asyncio.gather(
            _create(users, "race@x.com"),
            _create(users, "RACE@x.com"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, OnboardError)]
        assert len(errors) == 1
        assert await users.count_users() == 1

    async def test_find_by_email_case_insensitive(self, users):
        created = await _create(users, "Mixed@Case.com")
        found = await users.find_by_email("MIXED@case.COM")
        assert found.id == created.id

    async def test_update_status_with_expectation(self, users):
        user = await _create(users)

        assert await users.update_status(user.id, UserStatus.ACTIVE, UserStatus.REJECTED) is None
        updated = await users.update_status(user.id, UserStatus.ACTIVE, UserStatus.PENDING)

        assert updated.status == UserStatus.ACTIVE
        assert user.status == UserStatus.PENDING
        assert (await users.find_by_id(user.id)).status == UserStatus.ACTIVE

    async def test_verify_credential(self, users):
        await _create(users)
        assert await users.verify_credential("A@x.com", "secret-password") is not None
        assert await users.verify_credential("a@x.com", "wrong-password") is None
        assert await users.verify_credential("nobody@x.com", "secret-password") is None

    async def test_listing_and_counts(self, users):
        first = await _create(users, "first@x.com")
        second = await _create(users, "second@x.com")
        await users.update_status(second.id, UserStatus.REJECTED)

        pending = await users.list_by_status(UserStatus.PENDING)
        counts = await users.status_counts()
        page = await users.list_users(limit=1, offset=0)

        assert [u.id for u in pending] == [first.id]
        assert counts == {UserStatus.PENDING: 1, UserStatus.ACTIVE: 0, UserStatus.REJECTED: 1}
        assert len(page) == 1


class TestTransaction:
    """Tests for MemoryStore.transaction."""

    async def test_rolls_back_on_error(self, store, users):
        audit = MemoryAuditTrail(store)

        with pytest.raises(RuntimeError):
            async with store.transaction() as conn:
                user = await users.create("a@x.com", "secret-password", "Ada", "Lovelace", conn=conn)
                await audit.record(user.id, AuditAction.CREATED, "system", None, UserStatus.PENDING, conn=conn)
                raise RuntimeError("abort")

        assert await users.count_users() == 0
        assert await users.find_by_email("a@x.com") is None
        assert store.audit_log == []

    async def test_commits_on_success(self, store, users):
        async with store.transaction() as conn:
            await users.create("a@x.com", "secret-password", "Ada", "Lovelace", conn=conn)

        assert await users.count_users() == 1

    async def test_writes_wait_for_open_transaction(self, store, users):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold_transaction():
            async with store.transaction():
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold_transaction())
        await entered.wait()
        writer = asyncio.create_task(_create(users))
        await asyncio.sleep(0.01)

        assert not writer.done()
        release.set()
        await asyncio.gather(holder, writer)
        assert await users.count_users() == 1


class TestMemoryRevocationStore:
    """Tests for MemoryRevocationStore."""

    async def test_lifecycle(self, revocations):
        now = datetime.now(timezone.utc)
        await revocations.store("u-1", "hash-1", now + timedelta(days=7))

        assert (await revocations.find_valid("hash-1", now)).user_id == "u-1"
        assert await revocations.revoke_by_hash("hash-1") == 1
        assert await revocations.revoke_by_hash("hash-1") == 0
        assert await revocations.find_valid("hash-1", now) is None

        _, failure = await revocations.lookup("hash-1", now)
        assert failure == TokenFailure.REVOKED

    async def test_duplicate_hash_rejected(self, revocations):
        expires = datetime.now(timezone.utc) + timedelta(days=1)
        await revocations.store("u-1", "hash-1", expires)
        with pytest.raises(ValueError):
            await revocations.store("u-1", "hash-1", expires)

    async def test_revoke_all_for_user(self, revocations):
        now = datetime.now(timezone.utc)
        for i in range(3):
            await revocations.store("u-1", f"hash-{i}", now + timedelta(days=1))
        await revocations.store("u-2", "other", now + timedelta(days=1))

        assert await revocations.revoke_all_for_user("u-1") == 3
        assert await revocations.count_valid_for_user("u-1", now) == 0
        assert await revocations.count_valid_for_user("u-2", now) == 1

    async def test_purge_expired_keeps_live_records(self, revocations):
        now = datetime.now(timezone.utc)
        await revocations.store("u-1", "old", now - timedelta(minutes=1))
        await revocations.store("u-1", "live", now + timedelta(days=1))

        assert await revocations.purge_expired_before(now) == 1
        assert await revocations.find_valid("live", now) is not None
        _, failure = await revocations.lookup("old", now)
        assert failure == TokenFailure.NOT_FOUND

    async def test_purge_revoked_before(self, revocations):
        now = datetime.now(timezone.utc)
        await revocations.store("u-1", "revoked", now + timedelta(days=1))
        await revocations.revoke_by_hash("revoked")

        assert await revocations.purge_revoked_before(now - timedelta(days=1)) == 0
        assert await revocations.purge_revoked_before(now + timedelta(seconds=1)) == 1
