# notifier/api/models.py
"""
Pydantic request/response models for the management API.

Request models only check types; required-field and handler rules are applied
by the services so they produce the documented 400 responses.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notifier.core.domain import (
    Frequency,
    HandlerProperties,
    Notification,
    SenderType,
    Severity,
    Subscription,
)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class NotificationRequest(BaseModel):
    """One notification in a create request."""

    model_config = ConfigDict(extra="ignore")

    recipient_id: str | None = None
    content: str | None = None
    severity: Severity | None = None
    sender_type: SenderType | None = None
    sender_id: str | None = None
    created_at: datetime | None = None
    expires_at: datetime | None = None


class SubscriptionRequest(BaseModel):
    """Create or partially update a subscription."""

    model_config = ConfigDict(extra="ignore")

    subscription_name: str | None = None
    recipient_id: str | None = None
    properties: dict[str, str] | None = None
    frequency: Frequency | None = None
    disabled: bool | None = None

    @field_validator("properties", mode="before")
    @classmethod
    def stringify_values(cls, v):
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v

    def has_updates(self) -> bool:
        return any(
            v is not None
            for v in (self.subscription_name, self.recipient_id, self.properties, self.frequency, self.disabled)
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class NotificationResponse(BaseModel):
    id: int | None
    recipient_id: str
    content: str
    severity: Severity
    sender_type: SenderType
    sender_id: str
    created_at: datetime | None = None
    expires_at: datetime | None = None
    recognized: bool

    @classmethod
    def from_domain(cls, n: Notification) -> "NotificationResponse":
        return cls(
            id=n.id,
            recipient_id=n.recipient_id,
            content=n.content,
            severity=n.severity,
            sender_type=n.sender_type,
            sender_id=n.sender_id,
            created_at=n.created_at,
            expires_at=n.expires_at,
            recognized=n.recognized,
        )


class SubscriptionResponse(BaseModel):
    id: int | None
    subscription_name: str
    recipient_id: str
    properties: dict[str, str] = Field(default_factory=dict)
    frequency: Frequency
    fired_last: datetime | None = None
    fires_next: datetime | None = None
    disabled: bool
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, s: Subscription) -> "SubscriptionResponse":
        return cls(
            id=s.id,
            subscription_name=s.subscription_name,
            recipient_id=s.recipient_id,
            properties=dict(s.properties),
            frequency=s.frequency,
            fired_last=s.fired_last,
            fires_next=s.fires_next,
            disabled=s.disabled,
            created_at=s.created_at,
        )


class HandlerPropertiesResponse(BaseModel):
    """A handler and the configuration keys it reads."""

    handler_name: str
    properties: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, hp: HandlerProperties) -> "HandlerPropertiesResponse":
        return cls(handler_name=hp.handler_name, properties=dict(hp.properties))


class Page(BaseModel):
    """A slice of a listing plus what the Content-Range header needs."""

    items: list
    total: int
    start: int
    end: int

    @property
    def content_range(self) -> str:
        return f"{self.start}-{self.end}/{self.total}"
