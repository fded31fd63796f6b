# notifier/core/handlers/logfile_handler.py
"""
Log file subscription handler.

Appends one semicolon-separated line per notification to a local file named
by the subscription's ``filename`` property.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from notifier.config import Settings, settings as default_settings
from notifier.core.domain import HandlerProperties, Notification, Subscription
from notifier.core.handlers.base import DeliveryError, SubscriptionHandler
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

FILENAME_KEY = "filename"
HEADER = "severity;content;createdAt;senderType;senderId;expiresAt\n"


def _iso_utc(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _clean(text: str) -> str:
    # One record per line and no extra columns
    return text.replace("\r", " ").replace("\n", " ").replace(";", ",")


def build_line(notification: Notification) -> str:
    return ";".join([
        notification.severity.value,
        _clean(notification.content),
        _iso_utc(notification.created_at),
        notification.sender_type.value,
        _clean(notification.sender_id),
        _iso_utc(notification.expires_at),
    ]) + "\n"


class LogFileHandler(SubscriptionHandler):
    """Writes notifications to a local file, creating it with a header line."""

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings
        self._properties = HandlerProperties(handler_name=self.name).add_property(
            FILENAME_KEY, "The local filename the notifications are written to."
        )

    @property
    def name(self) -> str:
        return "logfile"

    def declared_properties(self) -> HandlerProperties:
        return self._properties

    def _base_directory(self) -> Path | None:
        if not self._settings.logfile_directory:
            return None
        return Path(self._settings.logfile_directory).resolve()

    def _resolve(self, filename: str) -> Path | None:
        """Resolve ``filename``; None if it escapes the configured base directory."""
        base = self._base_directory()
        path = Path(filename)
        if base is None:
            return path
        resolved = (base / path).resolve()
        if resolved != base and base not in resolved.parents:
            return None
        return resolved

    def validate(self, subscription: Subscription) -> bool:
        filename = subscription.properties.get(FILENAME_KEY, "").strip()
        if not filename:
            return False
        return self._resolve(filename) is not None

    async def configure(self) -> bool:
        base = self._base_directory()
        if base is not None and not base.is_dir():
            logger.warning(f"Log file directory does not exist: {base}")
            return False
        return True

    async def deliver(
        self,
        notifications: Sequence[Notification],
        properties: dict[str, str],
    ) -> bool:
        filename = properties.get(FILENAME_KEY, "").strip()
        if not filename:
            raise DeliveryError(f"Missing '{FILENAME_KEY}' property")
        path = self._resolve(filename)
        if path is None:
            raise DeliveryError(f"File {filename} is outside the log file directory")

        lines = [build_line(n) for n in notifications]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_lines, path, lines)
        logger.info(f"Wrote {len(lines)} notification(s) to {path}")
        return True

    @staticmethod
    def _write_lines(path: Path, lines: list[str]) -> None:
        """Append lines to the file (blocking)"""
        try:
            if not path.exists():
                logger.debug(f"Creating notification file at {path}")
                path.write_text(HEADER, encoding="utf-8")
            if not path.is_file():
                raise DeliveryError(f"Not a regular file: {path}")
            with path.open("a", encoding="utf-8") as fh:
                fh.writelines(lines)
        except OSError as exc:
            raise DeliveryError(f"Unable to write to file {path}: {exc}") from exc
