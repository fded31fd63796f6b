# notifier/core/handlers/__init__.py
from notifier.core.handlers.base import DeliveryError, SubscriptionHandler
from notifier.core.handlers.registry import HandlerRegistry, build_handlers, endorse_handlers

__all__ = [
    "DeliveryError",
    "SubscriptionHandler",
    "HandlerRegistry",
    "build_handlers",
    "endorse_handlers",
]
