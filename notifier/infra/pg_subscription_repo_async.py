# notifier/infra/pg_subscription_repo_async.py
"""
Async PostgreSQL subscription repository (asyncpg).

Subscription properties are stored as a JSON text column and decoded into a
``dict[str, str]`` on read. A row whose properties cannot be decoded is still
returned, with empty properties, so it fails handler validation instead of
breaking the whole query.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from notifier.core.domain import (
    Frequency,
    InvalidPropertiesError,
    Subscription,
    decode_properties,
    encode_properties,
)
from notifier.infra.db_resilience_async import safe_db_conn
from notifier.infra.logging_config import get_logger
from notifier.infra.metrics import inc_counter

logger = get_logger(__name__)

_COLUMNS = (
    "id, subscription_name, recipient_id, properties, frequency, "
    "fired_last, fires_next, disabled, created_at"
)


def _row_to_subscription(row) -> Subscription:
    """Convert an asyncpg Record to a Subscription."""
    try:
        properties = decode_properties(row["properties"])
    except InvalidPropertiesError as exc:
        logger.debug(f"Subscription {row['id']}: {exc}")
        inc_counter("subscription_properties_invalid")
        properties = {}
    return Subscription(
        id=row["id"],
        subscription_name=row["subscription_name"],
        recipient_id=row["recipient_id"],
        properties=properties,
        frequency=Frequency(row["frequency"]),
        fired_last=row["fired_last"],
        fires_next=row["fires_next"],
        disabled=row["disabled"],
        created_at=row["created_at"],
    )


class AsyncPostgresSubscriptionRepository:
    """Subscription CRUD plus the due query and batch save used by the dispatcher."""

    async def create(self, subscription: Subscription) -> Subscription:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO subscriptions
                    (subscription_name, recipient_id, properties, frequency,
                     fired_last, fires_next, disabled, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, COALESCE($8::timestamptz, now()))
                RETURNING {_COLUMNS}
                """,
                subscription.subscription_name,
                subscription.recipient_id,
                encode_properties(subscription.properties),
                Frequency(subscription.frequency).value,
                subscription.fired_last,
                subscription.fires_next,
                subscription.disabled,
                subscription.created_at,
            )
        created = _row_to_subscription(row)
        logger.info(
            f"Subscription created: id={created.id}, handler={created.subscription_name}",
            extra={"subscription_id": created.id, "recipient_id": created.recipient_id},
        )
        return created

    async def get(self, subscription_id: int) -> Optional[Subscription]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM subscriptions WHERE id = $1",
                subscription_id,
            )
        return _row_to_subscription(row) if row else None

    async def list_page(self, *, offset: int = 0, limit: int = 20) -> tuple[list[Subscription], int]:
        """Paged listing ordered by id; returns (page, total)."""
        async with safe_db_conn() as conn:
            total = await conn.fetchval("SELECT count(*) FROM subscriptions")
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM subscriptions ORDER BY id LIMIT $1 OFFSET $2",
                limit,
                offset,
            )
        return [_row_to_subscription(r) for r in rows], int(total or 0)

    async def update(self, subscription: Subscription) -> Optional[Subscription]:
        """Write every mutable column; None if the row is gone."""
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE subscriptions
                SET subscription_name = $2,
                    recipient_id = $3,
                    properties = $4,
                    frequency = $5,
                    fired_last = $6,
                    fires_next = $7,
                    disabled = $8
                WHERE id = $1
                RETURNING {_COLUMNS}
                """,
                *self._update_args(subscription),
            )
        return _row_to_subscription(row) if row else None

    async def delete(self, subscription_id: int) -> bool:
        async with safe_db_conn() as conn:
            status = await conn.execute("DELETE FROM subscriptions WHERE id = $1", subscription_id)
        return status.endswith(" 1")

    async def find_due(self, handler_names: Sequence[str], now: datetime) -> list[Subscription]:
        """
        Subscriptions of the given handlers with ``fires_next`` unset or not after
        ``now``, ordered by recipient then id. Disabled rows are included.
        """
        if not handler_names:
            return []
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM subscriptions
                WHERE subscription_name = ANY($1::text[])
                  AND (fires_next IS NULL OR fires_next <= $2)
                ORDER BY recipient_id, id
                """,
                list(handler_names),
                now,
            )
        return [_row_to_subscription(r) for r in rows]

    async def save_all(self, subscriptions: Sequence[Subscription]) -> None:
        """
        Persist the schedule of a batch of subscriptions in a single transaction.

        Only ``fired_last`` and ``fires_next`` are written; the dispatcher never
        changes anything else.
        """
        if not subscriptions:
            return
        async with safe_db_conn(autocommit=False) as conn:
            await conn.executemany(
                "UPDATE subscriptions SET fired_last = $2, fires_next = $3 WHERE id = $1",
                [(s.id, s.fired_last, s.fires_next) for s in subscriptions],
            )
        logger.debug(f"Saved {len(subscriptions)} subscription(s)")

    @staticmethod
    def _update_args(s: Subscription) -> tuple:
        return (
            s.id,
            s.subscription_name,
            s.recipient_id,
            encode_properties(s.properties),
            Frequency(s.frequency).value,
            s.fired_last,
            s.fires_next,
            s.disabled,
        )
