# notifier/infra/pg_notification_repo_async.py
"""
Async PostgreSQL notification repository (asyncpg).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from notifier.core.domain import Notification, SenderType, Severity
from notifier.infra.db_resilience_async import safe_db_conn
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = "id, recipient_id, content, severity, sender_type, sender_id, created_at, expires_at, recognized"

_INSERT = f"""
    INSERT INTO notifications
        (recipient_id, content, severity, sender_type, sender_id, created_at, expires_at, recognized)
    VALUES ($1, $2, $3, $4, $5, COALESCE($6::timestamptz, now()), $7, $8)
    RETURNING {_COLUMNS}
"""


def _insert_args(n: Notification) -> tuple:
    return (
        n.recipient_id, n.content, n.severity.value, n.sender_type.value,
        n.sender_id, n.created_at, n.expires_at, n.recognized,
    )


def _row_to_notification(row) -> Notification:
    """Convert an asyncpg Record to a Notification."""
    return Notification(
        id=row["id"],
        recipient_id=row["recipient_id"],
        content=row["content"],
        severity=Severity(row["severity"]),
        sender_type=SenderType(row["sender_type"]),
        sender_id=row["sender_id"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        recognized=row["recognized"],
    )


class _Where:
    """Accumulates AND-ed conditions with positional asyncpg parameters."""

    def __init__(self) -> None:
        self.conditions: list[str] = []
        self.args: list[Any] = []

    def add(self, template: str, value: Any) -> None:
        self.args.append(value)
        self.conditions.append(template.format(f"${len(self.args)}"))

    def sql(self) -> str:
        return ("WHERE " + " AND ".join(self.conditions)) if self.conditions else ""


class AsyncPostgresNotificationRepository:
    """Notification storage plus the accumulator query used by the dispatcher."""

    async def create(self, notification: Notification) -> Notification:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(_INSERT, *_insert_args(notification))
        return _row_to_notification(row)

    async def create_many(self, notifications: list[Notification]) -> list[Notification]:
        """Insert a batch in one transaction, returning stored records in input order."""
        stored: list[Notification] = []
        async with safe_db_conn(autocommit=False) as conn:
            for n in notifications:
                row = await conn.fetchrow(_INSERT, *_insert_args(n))
                stored.append(_row_to_notification(row))
        logger.debug(f"Stored {len(stored)} notification(s)")
        return stored

    async def get(self, notification_id: int) -> Optional[Notification]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM notifications WHERE id = $1",
                notification_id,
            )
        return _row_to_notification(row) if row else None

    async def search(
        self,
        *,
        recipient_id: str | None = None,
        sender_id: str | None = None,
        sender_type: SenderType | None = None,
        severity: Severity | None = None,
        recognized: bool | None = None,
        created_from: datetime | None = None,
        created_until: datetime | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Notification], int]:
        """
        Filtered, paged listing (newest first).

        Returns:
            (page of notifications, total number of matches)
        """
        where = _Where()
        if recipient_id is not None:
            where.add("recipient_id = {}", recipient_id)
        if sender_id is not None:
            where.add("sender_id = {}", sender_id)
        if sender_type is not None:
            where.add("sender_type = {}", SenderType(sender_type).value)
        if severity is not None:
            where.add("severity = {}", Severity(severity).value)
        if recognized is not None:
            where.add("recognized = {}", recognized)
        if created_from is not None:
            where.add("created_at >= {}", created_from)
        if created_until is not None:
            where.add("created_at <= {}", created_until)

        n = len(where.args)
        async with safe_db_conn() as conn:
            total = await conn.fetchval(
                f"SELECT count(*) FROM notifications {where.sql()}",
                *where.args,
            )
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM notifications {where.sql()}
                ORDER BY created_at DESC, id DESC
                LIMIT ${n + 1} OFFSET ${n + 2}
                """,
                *where.args, limit, offset,
            )
        return [_row_to_notification(r) for r in rows], int(total or 0)

    async def set_recognized(self, notification_id: int, recognized: bool) -> Optional[Notification]:
        """Update the recognized flag; None if the notification does not exist."""
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE notifications SET recognized = $2
                WHERE id = $1
                RETURNING {_COLUMNS}
                """,
                notification_id,
                recognized,
            )
        return _row_to_notification(row) if row else None

    async def delete(self, notification_id: int) -> bool:
        async with safe_db_conn() as conn:
            status = await conn.execute("DELETE FROM notifications WHERE id = $1", notification_id)
        return status.endswith(" 1")

    async def find_by_recipient_created_after(
        self,
        recipient_id: str,
        since: Optional[datetime],
        until: Optional[datetime] = None,
    ) -> list[Notification]:
        """Notifications with ``since < created_at <= until``, oldest first."""
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM notifications
                WHERE recipient_id = $1
                  AND ($2::timestamptz IS NULL OR created_at > $2)
                  AND ($3::timestamptz IS NULL OR created_at <= $3)
                ORDER BY created_at, id
                """,
                recipient_id,
                since,
                until,
            )
        return [_row_to_notification(r) for r in rows]
