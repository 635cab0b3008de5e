"""User records and credential verification backed by PostgreSQL."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import asyncpg
import structlog

from user_onboard.database import connection
from user_onboard.errors import ErrorKind, OnboardError
from user_onboard.models.user import DEFAULT_ROLES, User, UserStatus, join_roles
from user_onboard.services.password_hasher import PasswordHasher

logger = structlog.get_logger(__name__)

USER_COLUMNS = (
    "id, email, password_hash, first_name, last_name, phone, roles, status, created_at, updated_at"
)


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone=row["phone"],
        roles=row["roles"],
        status=UserStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def duplicate_email(email: str) -> OnboardError:
    return OnboardError(
        ErrorKind.DUPLICATE_EMAIL,
        f"User with email {email} already exists",
        detail={"email": email},
    )


class UserDirectory:
    """Service for user persistence and credential checks."""

    def __init__(self, hasher: Optional[PasswordHasher] = None):
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
        """Insert a new user with a hashed password.

        Uniqueness is enforced by the unique index on LOWER(email), so two
        concurrent registrations of the same address cannot both succeed.

        Args:
            email: Login email (stored lower-cased)
            password: Plain-text password (will be hashed)
            first_name: Given name
            last_name: Family name
            phone: Optional phone number
            roles: Comma-joined role string
            status: Initial onboarding status
            conn: Connection of an enclosing transaction, if any

        Returns:
            Created User

        Raises:
            OnboardError: DUPLICATE_EMAIL if the email is taken in any casing
        """
        user_id = str(uuid4())
        now = datetime.now(timezone.utc)
        normalized_email = email.strip().lower()
        password_hash = self.hasher.hash(password)
        roles = join_roles(roles)

        try:
            async with connection(conn) as c:
                await c.execute(
                    """
                    INSERT INTO users (id, email, password_hash, first_name, last_name, phone, roles, status, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                    """,
                    user_id,
                    normalized_email,
                    password_hash,
                    first_name,
                    last_name,
                    phone,
                    roles,
                    status.value,
                    now,
                    now,
                )
        except asyncpg.UniqueViolationError as e:
            logger.warning("user_create_duplicate_email", email=normalized_email)
            raise duplicate_email(normalized_email) from e

        logger.info("user_created", user_id=user_id, email=normalized_email, status=status.value)

        return User(
            id=user_id,
            email=normalized_email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            roles=roles,
            status=status,
            created_at=now,
            updated_at=now,
        )

    async def find_by_id(
        self, user_id: str, conn=None, for_update: bool = False
    ) -> Optional[User]:
        """Get a user by id.

        Args:
            user_id: User id
            conn: Connection of an enclosing transaction, if any
            for_update: Lock the row until the enclosing transaction ends

        Returns:
            User or None if not found
        """
        query = f"SELECT {USER_COLUMNS} FROM users WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"

        async with connection(conn) as c:
            row = await c.fetchrow(query, user_id)

        return _row_to_user(row) if row is not None else None

    async def find_by_email(self, email: str, conn=None) -> Optional[User]:
        """Get a user by email (case-insensitive)."""
        async with connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT {USER_COLUMNS} FROM users WHERE LOWER(email) = LOWER($1)",
                email.strip(),
            )

        return _row_to_user(row) if row is not None else None

    async def verify_credential(self, email: str, password: str) -> Optional[User]:
        """Return the user if the password matches, otherwise None.

        Unknown emails still pay for one bcrypt comparison so response time
        does not reveal whether an account exists.
        """
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
        """Set a user's status.

        Args:
            user_id: User id
            new_status: Status to set
            expected_status: Only update if the current status is this one
            conn: Connection of an enclosing transaction, if any

        Returns:
            Updated User, or None if no row matched
        """
        now = datetime.now(timezone.utc)
        query = """
            UPDATE users
            SET status = $1, updated_at = $2
            WHERE id = $3
        """
        params = [new_status.value, now, user_id]
        if expected_status is not None:
            query += " AND status = $4"
            params.append(expected_status.value)
        query += f" RETURNING {USER_COLUMNS}"

        async with connection(conn) as c:
            row = await c.fetchrow(query, *params)

        if row is None:
            logger.warning(
                "user_status_update_no_match",
                user_id=user_id,
                new_status=new_status.value,
                expected_status=expected_status.value if expected_status else None,
            )
            return None

        logger.info("user_status_updated", user_id=user_id, new_status=new_status.value)
        return _row_to_user(row)

    async def list_by_status(self, status: UserStatus) -> list[User]:
        """Users in one status, oldest first (the approval queue for PENDING)."""
        async with connection() as c:
            rows = await c.fetch(
                f"""
                SELECT {USER_COLUMNS}
                FROM users
                WHERE status = $1
                ORDER BY created_at ASC
                """,
                status.value,
            )

        return [_row_to_user(row) for row in rows]

    async def list_users(self, limit: int = 50, offset: int = 0) -> list[User]:
        """Return users newest first."""
        async with connection() as c:
            rows = await c.fetch(
                f"""
                SELECT {USER_COLUMNS}
                FROM users
                ORDER BY created_at DESC
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )

        return [_row_to_user(row) for row in rows]

    async def count_users(self, conn=None, lock: bool = False) -> int:
        """Count all users.

        With ``lock``, first takes a table lock that blocks concurrent inserts
        until the enclosing transaction ends, so a decision based on the count
        cannot race another writer. Only meaningful inside a transaction.
        """
        async with connection(conn) as c:
            if lock:
                await c.execute("LOCK TABLE users IN SHARE ROW EXCLUSIVE MODE")
            return await c.fetchval("SELECT COUNT(*) FROM users")

    async def status_counts(self) -> dict[UserStatus, int]:
        """Number of users per status; statuses with no users count as zero."""
        async with connection() as c:
            rows = await c.fetch("SELECT status, COUNT(*) AS n FROM users GROUP BY status")

        counts = {status: 0 for status in UserStatus}
        for row in rows:
            counts[UserStatus(row["status"])] = row["n"]
        return counts
