# notifier/core/domain.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict


# ============================================================================
# ENUMS
# ============================================================================

class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class SenderType(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class Frequency(str, Enum):
    """How often a subscription may fire after a successful delivery."""
    LIVE = "LIVE"
    HOURLY = "HOURLY"
    DAILY = "DAILY"


# ============================================================================
# NOTIFICATION
# ============================================================================

@dataclass
class Notification:
    """
    A message addressed to a single recipient.

    Immutable after creation apart from the ``recognized`` flag.
    """
    recipient_id: str
    content: str
    severity: Severity = Severity.INFO
    sender_type: SenderType = SenderType.SYSTEM
    sender_id: str = "unknown"
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    recognized: bool = False
    id: Optional[int] = None


# ============================================================================
# SUBSCRIPTION
# ============================================================================

class InvalidPropertiesError(ValueError):
    """Stored subscription properties are not a string-keyed JSON object."""


def encode_properties(properties: Dict[str, str] | None) -> str:
    """Serialize subscription properties for storage."""
    return json.dumps(properties or {}, sort_keys=True, ensure_ascii=False)


def decode_properties(raw: str | dict | None) -> Dict[str, str]:
    """
    Parse stored subscription properties.

    Accepts the serialized text or an already-decoded mapping (asyncpg may hand
    back JSONB columns as dicts). Empty input yields an empty mapping.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidPropertiesError(f"Properties are not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise InvalidPropertiesError("Properties must be a JSON object")
    return {str(key): "" if value is None else str(value) for key, value in raw.items()}


@dataclass
class Subscription:
    """
    A recipient's standing request to receive notifications through a handler.

    ``fired_last`` is None when the subscription never fired; ``fires_next`` is
    None when it is eligible immediately.
    """
    subscription_name: str
    recipient_id: str
    properties: Dict[str, str] = field(default_factory=dict)
    frequency: Frequency = Frequency.HOURLY
    fired_last: Optional[datetime] = None
    fires_next: Optional[datetime] = None
    disabled: bool = False
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def is_due(self, now: datetime) -> bool:
        return self.fires_next is None or self.fires_next <= now

    def window_start(self) -> Optional[datetime]:
        """Lower bound (exclusive) of the notifications this subscription still owes."""
        return self.fired_last if self.fired_last is not None else self.created_at


# ============================================================================
# HANDLER PROPERTIES
# ============================================================================

@dataclass
class HandlerProperties:
    """Configuration keys a handler expects, with human-readable descriptions."""
    handler_name: str = ""
    properties: Dict[str, str] = field(default_factory=dict)

    def add_property(self, key: str, description: str) -> "HandlerProperties":
        self.properties[key] = description
        return self

    @property
    def keys(self) -> list[str]:
        return list(self.properties.keys())

    def description(self, key: str) -> Optional[str]:
        return self.properties.get(key)
