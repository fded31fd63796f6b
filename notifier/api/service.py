# notifier/api/service.py
"""
Application services behind the management API.

Responsibilities:
    1. Apply creation defaults and business rules
    2. Call the repositories for persistence
    3. Return response DTOs

The transport layer stays a thin adapter:
    parse request → call service → map ServiceError → return JSON.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from notifier.api.errors import NotFoundError, ValidationError
from notifier.api.models import (
    HandlerPropertiesResponse,
    NotificationRequest,
    NotificationResponse,
    Page,
    SubscriptionRequest,
    SubscriptionResponse,
)
from notifier.core.domain import (
    Frequency,
    Notification,
    SenderType,
    Severity,
    Subscription,
)
from notifier.core.handlers.base import SubscriptionHandler
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SENDER_ID = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def page_bounds(page: int, size: int) -> tuple[int, int]:
    """Offset and Content-Range end for a zero-based page."""
    start = page * size
    return start, start + size


class NotificationService:
    """Create, query and acknowledge notifications."""

    def __init__(self, repo, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repo = repo
        self._clock = clock

    def prepare(self, request: NotificationRequest) -> Notification:
        """Apply creation rules to one request item."""
        if not request.content:
            raise ValidationError("Empty notifications are not supported.")
        if request.recipient_id is None:
            raise ValidationError("Empty recipient is not allowed.")

        if request.sender_type is None:
            sender_type, sender_id = SenderType.SYSTEM, DEFAULT_SENDER_ID
        else:
            sender_type, sender_id = request.sender_type, request.sender_id or DEFAULT_SENDER_ID

        return Notification(
            recipient_id=request.recipient_id,
            content=request.content,
            severity=request.severity or Severity.INFO,
            sender_type=sender_type,
            sender_id=sender_id,
            created_at=request.created_at or self._clock(),
            expires_at=request.expires_at,
            recognized=False,
        )

    async def create(self, requests: Sequence[NotificationRequest]) -> list[NotificationResponse]:
        """Validate every item first; store nothing if any item is rejected."""
        prepared = [self.prepare(r) for r in requests]
        stored = await self._repo.create_many(prepared)
        logger.info(f"Created {len(stored)} notification(s)")
        return [NotificationResponse.from_domain(n) for n in stored]

    async def get(self, notification_id: int) -> NotificationResponse:
        notification = await self._repo.get(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification #{notification_id} not found.")
        return NotificationResponse.from_domain(notification)

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
        page: int = 0,
        size: int = 20,
    ) -> Page:
        start, end = page_bounds(page, size)
        items, total = await self._repo.search(
            recipient_id=recipient_id,
            sender_id=sender_id,
            sender_type=sender_type,
            severity=severity,
            recognized=recognized,
            created_from=created_from,
            created_until=created_until,
            offset=start,
            limit=size,
        )
        return Page(
            items=[NotificationResponse.from_domain(n) for n in items],
            total=total,
            start=start,
            end=end,
        )

    async def set_recognized(self, notification_id: int, recognized: bool) -> NotificationResponse:
        current = await self._repo.get(notification_id)
        if current is None:
            raise NotFoundError(f"Notification #{notification_id} not found.")
        if current.recognized == recognized:
            return NotificationResponse.from_domain(current)
        updated = await self._repo.set_recognized(notification_id, recognized)
        if updated is None:
            raise NotFoundError(f"Notification #{notification_id} not found.")
        return NotificationResponse.from_domain(updated)

    async def delete(self, notification_id: int) -> None:
        """Idempotent: deleting a missing notification is not an error."""
        if not await self._repo.delete(notification_id):
            logger.debug(f"No notification with id {notification_id} to delete")


class SubscriptionService:
    """
    Manage subscriptions against the set of configured handlers.

    ``handlers`` is the name → handler mapping offered to the dispatcher;
    a subscription may only name one of them.
    """

    def __init__(
        self,
        repo,
        handlers: Mapping[str, SubscriptionHandler],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._handlers = dict(handlers)
        self._clock = clock

    def _handler(self, name: str | None) -> SubscriptionHandler:
        handler = self._handlers.get(name) if name else None
        if handler is None:
            raise ValidationError(f"Invalid subscription handler {name} provided.")
        return handler

    @staticmethod
    def _check(handler: SubscriptionHandler, subscription: Subscription) -> None:
        if not handler.validate(subscription):
            raise ValidationError("Missing or invalid attribute in subscription properties.")

    async def create(self, request: SubscriptionRequest) -> SubscriptionResponse:
        handler = self._handler(request.subscription_name)
        if request.recipient_id is None:
            raise ValidationError("Mandatory attribute recipient_id is missing.")

        # Start the window now so the first dispatch does not replay old notifications
        now = truncate_to_millis(self._clock())
        subscription = Subscription(
            subscription_name=handler.name,
            recipient_id=request.recipient_id,
            properties=dict(request.properties or {}),
            frequency=request.frequency or Frequency.HOURLY,
            disabled=request.disabled or False,
            fired_last=now,
            fires_next=now,
            created_at=now,
        )
        self._check(handler, subscription)

        created = await self._repo.create(subscription)
        return SubscriptionResponse.from_domain(created)

    async def get(self, subscription_id: int) -> SubscriptionResponse:
        subscription = await self._repo.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription #{subscription_id} not found.")
        return SubscriptionResponse.from_domain(subscription)

    async def list_page(self, *, page: int = 0, size: int = 20) -> Page:
        start, end = page_bounds(page, size)
        items, total = await self._repo.list_page(offset=start, limit=size)
        return Page(
            items=[SubscriptionResponse.from_domain(s) for s in items],
            total=total,
            start=start,
            end=end,
        )

    async def update(self, subscription_id: int, request: SubscriptionRequest) -> SubscriptionResponse:
        """
        Partial update. Schedule fields are never touched here.

        When the handler or the properties change, the merged subscription must
        pass the (new) handler's validation.
        """
        subscription = await self._repo.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription #{subscription_id} not found.")

        if request.frequency is not None:
            subscription.frequency = request.frequency
        if request.recipient_id is not None:
            subscription.recipient_id = request.recipient_id
        if request.disabled is not None:
            subscription.disabled = request.disabled

        if request.subscription_name is not None or request.properties is not None:
            handler = self._handler(request.subscription_name or subscription.subscription_name)
            subscription.subscription_name = handler.name
            if request.properties is not None:
                subscription.properties = dict(request.properties)
            self._check(handler, subscription)

        updated = await self._repo.update(subscription)
        if updated is None:
            raise NotFoundError(f"Subscription #{subscription_id} not found.")
        logger.info(
            f"Subscription updated: id={subscription_id}",
            extra={"subscription_id": subscription_id, "handler": updated.subscription_name},
        )
        return SubscriptionResponse.from_domain(updated)

    async def delete(self, subscription_id: int) -> None:
        """Idempotent: deleting a missing subscription is not an error."""
        if not await self._repo.delete(subscription_id):
            logger.debug(f"No subscription with id {subscription_id} to delete")

    def handler_descriptions(self) -> list[HandlerPropertiesResponse]:
        descriptions = []
        for name, handler in self._handlers.items():
            props = handler.declared_properties()
            props.handler_name = name
            descriptions.append(HandlerPropertiesResponse.from_domain(props))
        return descriptions
