# notifier/core/handlers/email_handler.py
"""
Email subscription handler (SMTP).

Subscription properties:
    email   - address the notifications are sent to
    details - FULL (every notification listed) or SHORT (count only)
"""
from __future__ import annotations

import asyncio
import smtplib
from email.mime.text import MIMEText
from enum import Enum
from typing import Sequence

from notifier.config import Settings, settings as default_settings
from notifier.core.domain import (
    HandlerProperties,
    Notification,
    Subscription,
)
from notifier.core.handlers.base import DeliveryError, SubscriptionHandler
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

EMAIL_KEY = "email"
DETAILS_KEY = "details"


class Details(str, Enum):
    FULL = "FULL"
    SHORT = "SHORT"


def _format_timestamp(notification: Notification) -> str:
    if notification.created_at is None:
        return "-"
    return notification.created_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_email_body(notifications: Sequence[Notification], details: Details) -> str:
    """Render the plain-text mail body for a batch of notifications."""
    count = len(notifications)
    noun = "notification" if count == 1 else "notifications"
    header = f"You have {count} new {noun}."

    if details is Details.SHORT:
        return header + "\n"

    lines = [header, ""]
    for n in notifications:
        lines.append(
            f"[{n.severity.value}] {_format_timestamp(n)} "
            f"from {n.sender_type.value.lower()} {n.sender_id}: {n.content}"
        )
    return "\n".join(lines) + "\n"


class EmailHandler(SubscriptionHandler):
    """
    Sends one mail per delivered batch via SMTP.

    smtplib is blocking, so the send runs in the default executor.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings
        self._properties = (
            HandlerProperties(handler_name=self.name)
            .add_property(EMAIL_KEY, "The email address the notifications are sent to.")
            .add_property(
                DETAILS_KEY,
                "The detail level of the email content, either FULL (list of notifications) "
                "or SHORT (number of notifications).",
            )
        )

    @property
    def name(self) -> str:
        return "email"

    def declared_properties(self) -> HandlerProperties:
        return self._properties

    def validate(self, subscription: Subscription) -> bool:
        props = subscription.properties
        address = props.get(EMAIL_KEY, "")
        if "@" not in address:
            return False
        try:
            Details(props.get(DETAILS_KEY, ""))
        except ValueError:
            return False
        return True

    async def configure(self) -> bool:
        if not self._settings.email_enabled:
            logger.warning("Email handler not configured (smtp_host/smtp_sender missing)")
            return False
        return True

    async def deliver(
        self,
        notifications: Sequence[Notification],
        properties: dict[str, str],
    ) -> bool:
        address = properties.get(EMAIL_KEY)
        if not address:
            raise DeliveryError(f"Missing '{EMAIL_KEY}' property")
        try:
            details = Details(properties.get(DETAILS_KEY, Details.SHORT.value))
        except ValueError as exc:
            raise DeliveryError(f"Invalid '{DETAILS_KEY}' property") from exc

        msg = MIMEText(format_email_body(notifications, details), "plain", "utf-8")
        msg["From"] = self._settings.email_sender
        msg["To"] = address
        msg["Subject"] = self._settings.email_subject

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery failed: {type(exc).__name__}: {exc}") from exc

        logger.info(f"Email sent: notifications={len(notifications)}, details={details.value}")
        return True

    def _send_smtp(self, msg: MIMEText) -> None:
        """Send email via SMTP (blocking)"""
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as server:
            if s.smtp_use_tls:
                server.starttls()
            if s.smtp_user and s.smtp_password:
                server.login(s.smtp_user, s.smtp_password)
            server.send_message(msg)


__all__ = ["EmailHandler", "Details", "format_email_body"]
