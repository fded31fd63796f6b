# notifier/core/handlers/registry.py
"""
Subscription handler registration and endorsement.

Handlers are built from an explicit name → class table, limited to the names
listed in ``ENABLED_HANDLERS``. The resulting candidates are endorsed lazily:
the first dispatch tick runs each handler's ``configure()`` once and keeps only
the handlers that succeed, for the lifetime of the process.

Usage at startup::

    from notifier.core.handlers.registry import HandlerRegistry, build_handlers
    registry = HandlerRegistry(build_handlers())
"""
from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Mapping, Sequence

from notifier.core.handlers.base import SubscriptionHandler

logger = logging.getLogger(__name__)

# Map of known handler name → lazy import path + class name.
_KNOWN_HANDLERS: dict[str, tuple[str, str]] = {
    "email": (
        "notifier.core.handlers.email_handler",
        "EmailHandler",
    ),
    "logfile": (
        "notifier.core.handlers.logfile_handler",
        "LogFileHandler",
    ),
}


def known_handler_names() -> list[str]:
    return list(_KNOWN_HANDLERS.keys())


def parse_enabled_handlers() -> list[str]:
    """Parse ``ENABLED_HANDLERS`` from settings into a list of handler names."""
    from notifier.config import parse_handler_names, settings
    return parse_handler_names(settings.enabled_handlers)


def build_handlers(enabled: Sequence[str] | None = None) -> dict[str, SubscriptionHandler]:
    """
    Instantiate the requested handlers.

    Args:
        enabled: Handler names to build.
                 If *None*, falls back to ``parse_enabled_handlers()``.

    Returns:
        Mapping of handler name to handler instance, in the requested order.
    """
    if enabled is None:
        enabled = parse_enabled_handlers()

    handlers: dict[str, SubscriptionHandler] = {}

    for name in enabled:
        if name in handlers:
            continue

        spec = _KNOWN_HANDLERS.get(name)
        if spec is None:
            logger.error(
                "Unknown handler '%s' in ENABLED_HANDLERS, skipping. "
                "Known handlers: %s",
                name, ", ".join(_KNOWN_HANDLERS.keys()),
            )
            continue

        module_path, class_name = spec
        try:
            mod = importlib.import_module(module_path)
            cls = getattr(mod, class_name)
            handlers[name] = cls()
            logger.info("Built subscription handler: %s", name)
        except Exception:
            logger.error(
                "Failed to build subscription handler '%s'",
                name,
                exc_info=True,
            )

    if not handlers:
        logger.warning("No subscription handlers built! Check ENABLED_HANDLERS setting.")

    return handlers


async def endorse_handlers(
    candidates: Mapping[str, SubscriptionHandler],
) -> dict[str, SubscriptionHandler]:
    """
    Run ``configure()`` on every candidate and keep those that succeed.

    A handler whose ``configure()`` returns False or raises is dropped with a
    warning. The result is keyed by the handler's own ``name``.
    """
    endorsed: dict[str, SubscriptionHandler] = {}
    for key, handler in candidates.items():
        name = handler.name
        if name != key:
            logger.warning("Handler registered as '%s' reports name '%s'; using '%s'", key, name, name)
        logger.debug("Trying to configure handler %s", name)
        try:
            ok = await handler.configure()
        except Exception:
            logger.warning("Dropping handler %s: configure() raised", name, exc_info=True)
            continue
        if not ok:
            logger.warning("Dropping handler %s due to misconfiguration.", name)
            continue
        endorsed[name] = handler
        logger.debug("Handler %s endorsed", name)
    return endorsed


class HandlerRegistry:
    """
    Process-wide set of endorsed handlers, built once on first use.

    ``ensure_endorsed()`` is safe to call from concurrent tasks; endorsement
    runs exactly once.
    """

    def __init__(self, candidates: Mapping[str, SubscriptionHandler] | None) -> None:
        self._candidates: dict[str, SubscriptionHandler] = dict(candidates or {})
        self._endorsed: dict[str, SubscriptionHandler] = {}
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def has_candidates(self) -> bool:
        return bool(self._candidates)

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def candidates(self) -> dict[str, SubscriptionHandler]:
        """All configured handlers, endorsed or not"""
        return dict(self._candidates)

    async def ensure_endorsed(self) -> dict[str, SubscriptionHandler]:
        """Endorse candidates on first call and return the endorsed set."""
        if self._initialized:
            return dict(self._endorsed)

        async with self._lock:
            if not self._initialized:
                self._endorsed = await endorse_handlers(self._candidates)
                self._initialized = True
                logger.info(
                    "Endorsed subscription handlers: %s (of %s)",
                    list(self._endorsed.keys()), list(self._candidates.keys()),
                )
        return dict(self._endorsed)

    def get(self, name: str) -> SubscriptionHandler | None:
        """Endorsed handler by name (None before endorsement or if dropped)"""
        return self._endorsed.get(name)

    def names(self) -> list[str]:
        return list(self._endorsed.keys())
