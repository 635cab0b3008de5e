"""Append-only audit trail of user status transitions."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog

from user_onboard.database import connection
from user_onboard.models.user import AuditAction, AuditLogEntry, UserStatus

logger = structlog.get_logger(__name__)


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row["id"],
        user_id=row["user_id"],
        action=AuditAction(row["action"]),
        performed_by=row["performed_by"],
        old_status=UserStatus(row["old_status"]) if row["old_status"] else None,
        new_status=UserStatus(row["new_status"]),
        reason=row["reason"],
        created_at=row["created_at"],
    )


class AuditTrail:
    """Writes and reads audit entries. There is no update or delete."""

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
        """Append one entry.

        Pass the connection of the transaction that changes the user's
        status so the change and its entry commit together.
        """
        entry_id = str(uuid4())
        now = datetime.now(timezone.utc)

        async with connection(conn) as c:
            await c.execute(
                """
                INSERT INTO user_audit_log (id, user_id, action, performed_by, old_status, new_status, reason, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                entry_id,
                user_id,
                action.value,
                actor_id,
                old_status.value if old_status else None,
                new_status.value,
                reason,
                now,
            )

        logger.info(
            "audit_entry_recorded",
            user_id=user_id,
            action=action.value,
            performed_by=actor_id,
        )

        return AuditLogEntry(
            id=entry_id,
            user_id=user_id,
            action=action,
            performed_by=actor_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
            created_at=now,
        )

    async def list_for_user(self, user_id: str) -> list[AuditLogEntry]:
        """All entries for a user, newest first."""
        async with connection() as c:
            rows = await c.fetch(
                """
                SELECT id, user_id, action, performed_by, old_status, new_status, reason, created_at
                FROM user_audit_log
                WHERE user_id = $1
                ORDER BY created_at DESC
                """,
                user_id,
            )

        return [_row_to_entry(row) for row in rows]
