# tests/test_repos.py
"""
Tests for the asyncpg repositories with a mocked connection:
- row conversion
- due query and batch save used by the dispatcher
- accumulator and search queries
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from notifier.core.domain import Frequency, SenderType, Severity, Subscription
from notifier.infra.pg_notification_repo_async import (
    AsyncPostgresNotificationRepository,
    _row_to_notification,
)
from notifier.infra.pg_subscription_repo_async import (
    AsyncPostgresSubscriptionRepository,
    _row_to_subscription,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

SUB_REPO = "notifier.infra.pg_subscription_repo_async.safe_db_conn"
NOTIF_REPO = "notifier.infra.pg_notification_repo_async.safe_db_conn"


def _subscription_row(overrides: dict | None = None) -> dict:
    """Dict mimicking an asyncpg Record from the subscriptions table."""
    row = {
        "id": 1,
        "subscription_name": "email",
        "recipient_id": "alice",
        "properties": '{"details": "FULL", "email": "alice@example.org"}',
        "frequency": "HOURLY",
        "fired_last": T0,
        "fires_next": T0,
        "disabled": False,
        "created_at": T0,
    }
    if overrides:
        row.update(overrides)
    return row


def _notification_row(overrides: dict | None = None) -> dict:
    row = {
        "id": 10,
        "recipient_id": "alice",
        "content": "hello",
        "severity": "WARN",
        "sender_type": "USER",
        "sender_id": "bob",
        "created_at": T0,
        "expires_at": None,
        "recognized": False,
    }
    if overrides:
        row.update(overrides)
    return row


def _patch_conn(target: str, conn: AsyncMock):
    ctx = patch(target)
    mock_ctx = ctx.start()
    mock_ctx.return_value.__aenter__ = AsyncMock(return_value=conn)
    mock_ctx.return_value.__aexit__ = AsyncMock(return_value=False)
    return ctx, mock_ctx


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

class TestRowConversion:
    def test_row_to_subscription_decodes_properties(self):
        sub = _row_to_subscription(_subscription_row())
        assert sub.properties == {"details": "FULL", "email": "alice@example.org"}
        assert sub.frequency is Frequency.HOURLY

    def test_row_to_subscription_with_malformed_properties(self):
        sub = _row_to_subscription(_subscription_row({"properties": "{broken"}))
        assert sub.properties == {}
        assert sub.id == 1

    def test_row_to_notification(self):
        n = _row_to_notification(_notification_row())
        assert n.severity is Severity.WARN
        assert n.sender_type is SenderType.USER
        assert n.sender_id == "bob"


# ---------------------------------------------------------------------------
# Subscription repository
# ---------------------------------------------------------------------------

class TestSubscriptionRepository:
    @pytest.mark.asyncio
    async def test_find_due_filters_by_handler_and_time(self):
        repo = AsyncPostgresSubscriptionRepository()
        conn = AsyncMock()
        conn.fetch = AsyncMock(return_value=[_subscription_row()])

        ctx, _ = _patch_conn(SUB_REPO, conn)
        try:
            subs = await repo.find_due(["email", "logfile"], T0)
        finally:
            ctx.stop()

        assert [s.id for s in subs] == [1]
        sql, names, now = conn.fetch.call_args[0]
        assert "ANY($1::text[])" in sql
        assert "fires_next IS NULL OR fires_next <= $2" in sql
        assert "disabled" not in sql.split("WHERE", 1)[1]
        assert names == ["email", "logfile"]
        assert now == T0

    @pytest.mark.asyncio
    async def test_find_due_without_handlers_skips_query(self):
        repo = AsyncPostgresSubscriptionRepository()
        with patch(SUB_REPO) as mock_ctx:
            assert await repo.find_due([], T0) == []
        mock_ctx.assert_not_called()

    @pytest.mark.asyncio
    async def test_save_all_writes_schedule_in_one_transaction(self):
        repo = AsyncPostgresSubscriptionRepository()
        conn = AsyncMock()
        later = T0.replace(hour=13)
        subs = [
            Subscription(id=1, subscription_name="email", recipient_id="alice", fired_last=T0, fires_next=later),
            Subscription(id=2, subscription_name="logfile", recipient_id="alice", fired_last=None, fires_next=None),
        ]

        ctx, mock_ctx = _patch_conn(SUB_REPO, conn)
        try:
            await repo.save_all(subs)
        finally:
            ctx.stop()

        mock_ctx.assert_called_once_with(autocommit=False)
        sql, args = conn.executemany.call_args[0]
        assert "fired_last = $2" in sql and "fires_next = $3" in sql
        assert "properties" not in sql
        assert args == [(1, T0, later), (2, None, None)]

    @pytest.mark.asyncio
    async def test_create_encodes_properties(self):
        repo = AsyncPostgresSubscriptionRepository()
        conn = AsyncMock()
        conn.fetchrow = AsyncMock(return_value=_subscription_row({"id": 5}))
        sub = Subscription(
            subscription_name="email",
            recipient_id="alice",
            properties={"email": "alice@example.org", "details": "FULL"},
            fired_last=T0,
            fires_next=T0,
        )

        ctx, _ = _patch_conn(SUB_REPO, conn)
        try:
            created = await repo.create(sub)
        finally:
            ctx.stop()

        assert created.id == 5
        args = conn.fetchrow.call_args[0]
        assert "INSERT INTO subscriptions" in args[0]
        assert json.loads(args[3]) == {"email": "alice@example.org", "details": "FULL"}
        assert args[4] == "HOURLY"

    @pytest.mark.asyncio
    async def test_delete_reports_whether_row_existed(self):
        repo = AsyncPostgresSubscriptionRepository()
        conn = AsyncMock()
        conn.execute = AsyncMock(side_effect=["DELETE 1", "DELETE 0"])

        ctx, _ = _patch_conn(SUB_REPO, conn)
        try:
            assert await repo.delete(1) is True
            assert await repo.delete(1) is False
        finally:
            ctx.stop()


# ---------------------------------------------------------------------------
# Notification repository
# ---------------------------------------------------------------------------

class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_accumulator_query_window(self):
        repo = AsyncPostgresNotificationRepository()
        conn = AsyncMock()
        conn.fetch = AsyncMock(return_value=[_notification_row()])
        until = T0.replace(hour=13)

        ctx, _ = _patch_conn(NOTIF_REPO, conn)
        try:
            found = await repo.find_by_recipient_created_after("alice", T0, until)
        finally:
            ctx.stop()

        assert [n.id for n in found] == [10]
        sql, recipient, since, upper = conn.fetch.call_args[0]
        assert "created_at > $2" in sql
        assert "created_at <= $3" in sql
        assert "ORDER BY created_at, id" in sql
        assert (recipient, since, upper) == ("alice", T0, until)

    @pytest.mark.asyncio
    async def test_search_builds_filters_and_paging(self):
        repo = AsyncPostgresNotificationRepository()
        conn = AsyncMock()
        conn.fetchval = AsyncMock(return_value=42)
        conn.fetch = AsyncMock(return_value=[_notification_row()])

        ctx, _ = _patch_conn(NOTIF_REPO, conn)
        try:
            items, total = await repo.search(
                recipient_id="alice",
                severity=Severity.WARN,
                recognized=False,
                offset=20,
                limit=10,
            )
        finally:
            ctx.stop()

        assert total == 42
        assert len(items) == 1
        count_sql, *count_args = conn.fetchval.call_args[0]
        assert "recipient_id = $1 AND severity = $2 AND recognized = $3" in count_sql
        assert count_args == ["alice", "WARN", False]
        page_sql, *page_args = conn.fetch.call_args[0]
        assert "LIMIT $4 OFFSET $5" in page_sql
        assert page_args == ["alice", "WARN", False, 10, 20]

    @pytest.mark.asyncio
    async def test_search_without_filters(self):
        repo = AsyncPostgresNotificationRepository()
        conn = AsyncMock()
        conn.fetchval = AsyncMock(return_value=0)
        conn.fetch = AsyncMock(return_value=[])

        ctx, _ = _patch_conn(NOTIF_REPO, conn)
        try:
            items, total = await repo.search()
        finally:
            ctx.stop()

        assert (items, total) == ([], 0)
        assert "WHERE" not in conn.fetchval.call_args[0][0]

    @pytest.mark.asyncio
    async def test_set_recognized_missing_returns_none(self):
        repo = AsyncPostgresNotificationRepository()
        conn = AsyncMock()
        conn.fetchrow = AsyncMock(return_value=None)

        ctx, _ = _patch_conn(NOTIF_REPO, conn)
        try:
            assert await repo.set_recognized(99, True) is None
        finally:
            ctx.stop()
