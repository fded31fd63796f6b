# notifier/core/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Protocol, Optional, Sequence
from notifier.core.domain import Notification, Subscription


class AsyncNotificationStore(Protocol):
    async def find_by_recipient_created_after(
        self,
        recipient_id: str,
        since: Optional[datetime],
        until: Optional[datetime] = None,
    ) -> list[Notification]:
        """
        Notifications for ``recipient_id`` with ``since < created_at <= until``,
        oldest first. ``None`` leaves the respective bound open.
        """
        ...


class AsyncSubscriptionStore(Protocol):
    async def find_due(self, handler_names: Sequence[str], now: datetime) -> list[Subscription]:
        """
        Subscriptions for any of ``handler_names`` whose ``fires_next`` is null or
        not after ``now``. Disabled subscriptions are included.
        """
        ...

    async def save_all(self, subscriptions: Sequence[Subscription]) -> None: ...
