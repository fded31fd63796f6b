# notifier/core/dispatch/processor.py
"""
Subscription dispatch loop.

One ``tick()`` selects the due subscriptions of endorsed handlers, collects the
notifications each one still owes its recipient, hands them to the handler and
reschedules the subscription on success. Everything that can go wrong for a
single subscription is logged and contained; ``tick()`` itself never raises.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Sequence

from notifier.core.domain import Subscription
from notifier.core.handlers.base import DeliveryError
from notifier.core.handlers.registry import HandlerRegistry
from notifier.core.ports import AsyncNotificationStore, AsyncSubscriptionStore
from notifier.core.schedule import next_fire_time
from notifier.infra.logging_config import LogContext, get_logger
from notifier.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


class Outcome(str, Enum):
    DISPATCHED_OK = "dispatched_ok"
    DISPATCH_FAILED = "dispatch_failed"
    SKIPPED_EMPTY = "skipped_empty"
    NOT_ENDORSED = "not_endorsed"


@dataclass
class TickReport:
    """Summary of a single tick"""
    started_at: datetime | None = None
    skipped: bool = False
    recipients: int = 0
    selected: int = 0
    disabled: int = 0
    dispatched: int = 0
    failed: int = 0
    skipped_empty: int = 0

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.DISPATCHED_OK:
            self.dispatched += 1
        elif outcome is Outcome.DISPATCH_FAILED:
            self.failed += 1
        elif outcome is Outcome.SKIPPED_EMPTY:
            self.skipped_empty += 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def group_by_recipient(subscriptions: Sequence[Subscription]) -> dict[str, list[Subscription]]:
    """Group subscriptions by recipient, keeping first-seen recipient order."""
    groups: dict[str, list[Subscription]] = {}
    for subscription in subscriptions:
        groups.setdefault(subscription.recipient_id, []).append(subscription)
    return groups


def dispatchable(subscriptions: Sequence[Subscription], now: datetime) -> list[Subscription]:
    """Drop disabled subscriptions and any that are not due yet."""
    return [s for s in subscriptions if not s.disabled and s.is_due(now)]


class SubscriptionProcessor:
    """
    Dispatch engine driven by a fixed-rate scheduler.

    Usage:
        processor = SubscriptionProcessor(
            subscriptions=subscription_repo,
            notifications=notification_repo,
            registry=HandlerRegistry(build_handlers()),
        )
        report = await processor.tick()
    """

    def __init__(
        self,
        subscriptions: AsyncSubscriptionStore,
        notifications: AsyncNotificationStore,
        registry: HandlerRegistry,
        *,
        delivery_timeout: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._subscriptions = subscriptions
        self._notifications = notifications
        self._registry = registry
        self._delivery_timeout = delivery_timeout
        self._clock = clock
        self._tick_lock = asyncio.Lock()
        self._no_handlers_warned = False
        self._invalid_config_warned: set[int | None] = set()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def running(self) -> bool:
        return self._tick_lock.locked()

    async def tick(self) -> TickReport:
        """Run one dispatch pass. Overlapping calls are skipped, never queued."""
        if self._tick_lock.locked():
            logger.warning("Dispatch tick still running, skipping overlapping tick")
            DispatchMetrics.tick_overlap()
            return TickReport(skipped=True)

        async with self._tick_lock:
            report = TickReport(started_at=self._clock())
            try:
                with DispatchMetrics.track_tick():
                    await self._run(report)
            except Exception:
                logger.error("Dispatch tick aborted by unexpected error", exc_info=True)
            return report

    async def _run(self, report: TickReport) -> None:
        now = report.started_at

        if not self._registry.has_candidates:
            if not self._no_handlers_warned:
                logger.warning("No subscription handlers registered. Skip processing all subscriptions.")
                self._no_handlers_warned = True
            report.skipped = True
            return

        endorsed = await self._registry.ensure_endorsed()
        if not endorsed:
            if not self._no_handlers_warned:
                logger.warning("No subscription handler passed configuration. Skip processing all subscriptions.")
                self._no_handlers_warned = True
            report.skipped = True
            return

        try:
            due = await self._subscriptions.find_due(list(endorsed.keys()), now)
        except Exception:
            logger.error("Failed to query due subscriptions", exc_info=True)
            DispatchMetrics.database_error("find_due")
            return

        active = dispatchable(due, now)
        report.disabled = sum(1 for s in due if s.disabled)
        report.selected = len(active)
        groups = group_by_recipient(active)
        report.recipients = len(groups)
        logger.debug(f"Handling {report.selected} subscription(s) for {report.recipients} recipient(s)")

        for recipient_id, subscriptions in groups.items():
            for subscription in subscriptions:
                outcome = await self._process(subscription, now)
                report.record(outcome)

            try:
                await self._subscriptions.save_all(subscriptions)
            except Exception:
                logger.error(
                    f"Failed to persist {len(subscriptions)} subscription(s)",
                    extra={"recipient_id": recipient_id},
                    exc_info=True,
                )
                DispatchMetrics.database_error("save_all")

        DispatchMetrics.tick_completed(report.recipients, report.selected, report.disabled)
        logger.info(
            f"Dispatch tick done: recipients={report.recipients}, selected={report.selected}, "
            f"dispatched={report.dispatched}, failed={report.failed}, empty={report.skipped_empty}"
        )

    async def _process(self, subscription: Subscription, now: datetime) -> Outcome:
        """Run one subscription through fetch → deliver → reschedule."""
        name = subscription.subscription_name
        log = LogContext(
            logger,
            subscription_id=subscription.id,
            recipient_id=subscription.recipient_id,
            handler=name,
        )

        handler = self._registry.get(name)
        if handler is None:
            log.debug("Subscription refers to a handler that is not endorsed")
            return Outcome.NOT_ENDORSED

        try:
            notifications = await self._notifications.find_by_recipient_created_after(
                subscription.recipient_id, subscription.window_start(), now,
            )
        except Exception:
            log.error("Failed to load notifications", exc_info=True)
            DispatchMetrics.database_error("find_notifications")
            return Outcome.DISPATCH_FAILED

        if not notifications:
            log.debug("No new notifications")
            DispatchMetrics.skipped_empty(name)
            return Outcome.SKIPPED_EMPTY

        if not handler.validate(subscription):
            if subscription.id not in self._invalid_config_warned:
                log.warning("Subscription properties are missing or invalid, not dispatching")
                self._invalid_config_warned.add(subscription.id)
            DispatchMetrics.failed(name, "invalid_config")
            return Outcome.DISPATCH_FAILED
        self._invalid_config_warned.discard(subscription.id)

        try:
            delivered = await asyncio.wait_for(
                handler.deliver(notifications, dict(subscription.properties)),
                timeout=self._delivery_timeout,
            )
        except asyncio.TimeoutError:
            log.error(f"Delivery timed out after {self._delivery_timeout}s")
            DispatchMetrics.failed(name, "timeout")
            return Outcome.DISPATCH_FAILED
        except DeliveryError as exc:
            log.error(f"Failed to deliver notifications: {exc}")
            DispatchMetrics.failed(name, "delivery_error")
            return Outcome.DISPATCH_FAILED
        except Exception as exc:
            log.error(f"Failed to deliver notifications: {exc.__class__.__name__}", exc_info=True)
            DispatchMetrics.failed(name, "exception")
            return Outcome.DISPATCH_FAILED

        if not delivered:
            log.error("Failed to deliver notifications. Handler returned False.")
            DispatchMetrics.failed(name, "rejected")
            return Outcome.DISPATCH_FAILED

        subscription.fired_last = now
        subscription.fires_next = next_fire_time(subscription.frequency, now)
        DispatchMetrics.dispatched(name, len(notifications))
        log.info(
            f"Delivered {len(notifications)} notification(s), next fire at "
            f"{subscription.fires_next.isoformat()}"
        )
        return Outcome.DISPATCHED_OK
