# notifier/core/dispatch/__init__.py
from notifier.core.dispatch.processor import (  # noqa: F401
    Outcome,
    SubscriptionProcessor,
    TickReport,
    dispatchable,
    group_by_recipient,
)
