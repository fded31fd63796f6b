# notifier/core/handlers/base.py
"""
Subscription handler abstraction.

A handler is a delivery mechanism (email, log file, ...) addressed by a unique
name. Subscriptions reference it through ``Subscription.subscription_name`` and
carry the handler-specific configuration in ``Subscription.properties``.
"""
from __future__ import annotations

import abc
from typing import Sequence

from notifier.core.domain import HandlerProperties, Notification, Subscription


class DeliveryError(Exception):
    """A handler could not deliver a batch of notifications."""


class SubscriptionHandler(abc.ABC):
    """Abstract base class for subscription handlers"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique handler name that subscriptions refer to"""
        pass

    @abc.abstractmethod
    def declared_properties(self) -> HandlerProperties:
        """Configuration keys this handler expects from a subscription"""
        pass

    @abc.abstractmethod
    def validate(self, subscription: Subscription) -> bool:
        """Check if the subscription carries everything this handler needs"""
        pass

    async def configure(self) -> bool:
        """
        One-time self-configuration, run before the first dispatch.

        Returns:
            True if the handler is usable, False to have it dropped
        """
        return True

    @abc.abstractmethod
    async def deliver(
        self,
        notifications: Sequence[Notification],
        properties: dict[str, str],
    ) -> bool:
        """
        Deliver a batch of notifications using the subscription's properties.

        Returns:
            True if delivered, False otherwise

        Raises:
            DeliveryError: on malformed properties or transport faults
        """
        pass
