# notifier/core/__init__.py
"""
Core dispatch engine -- storage- and transport-agnostic domain logic.

This package contains the domain models, the store protocols (ports), the
reschedule policy, the delivery handlers and the subscription processor.

Canonical imports:
    from notifier.core import SubscriptionProcessor, TickReport
    from notifier.core.domain import Notification, Subscription, Frequency
    from notifier.core.ports import AsyncNotificationStore, AsyncSubscriptionStore
"""
from notifier.core.domain import (  # noqa: F401
    Frequency,
    HandlerProperties,
    Notification,
    SenderType,
    Severity,
    Subscription,
)
from notifier.core.ports import (  # noqa: F401
    AsyncNotificationStore,
    AsyncSubscriptionStore,
)
from notifier.core.schedule import next_fire_time  # noqa: F401
from notifier.core.dispatch import SubscriptionProcessor, TickReport  # noqa: F401
