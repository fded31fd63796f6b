# tests/test_domain.py
"""Tests for domain models and the reschedule policy"""
from datetime import datetime, timedelta, timezone

import pytest

from notifier.core.domain import (
    Frequency,
    HandlerProperties,
    InvalidPropertiesError,
    Notification,
    SenderType,
    Severity,
    Subscription,
    decode_properties,
    encode_properties,
)
from notifier.core.schedule import next_fire_time

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestNotification:
    def test_defaults(self):
        n = Notification(recipient_id="alice", content="hi")
        assert n.severity is Severity.INFO
        assert n.sender_type is SenderType.SYSTEM
        assert n.sender_id == "unknown"
        assert n.recognized is False
        assert n.id is None

    def test_enums_are_strings(self):
        assert Severity("WARN") is Severity.WARN
        assert SenderType.USER == "USER"


class TestSubscription:
    def test_is_due_when_never_scheduled(self):
        sub = Subscription(subscription_name="email", recipient_id="alice")
        assert sub.is_due(T0)

    def test_is_due_at_exact_fire_time(self):
        sub = Subscription(subscription_name="email", recipient_id="alice", fires_next=T0)
        assert sub.is_due(T0)
        assert not sub.is_due(T0 - timedelta(seconds=1))

    def test_window_start_prefers_fired_last(self):
        sub = Subscription(
            subscription_name="email",
            recipient_id="alice",
            fired_last=T0,
            created_at=T0 - timedelta(days=1),
        )
        assert sub.window_start() == T0

    def test_window_start_falls_back_to_created_at(self):
        created = T0 - timedelta(days=1)
        sub = Subscription(subscription_name="email", recipient_id="alice", created_at=created)
        assert sub.window_start() == created

    def test_default_frequency_is_hourly(self):
        sub = Subscription(subscription_name="email", recipient_id="alice")
        assert sub.frequency is Frequency.HOURLY
        assert sub.disabled is False


class TestProperties:
    def test_encode_is_stable(self):
        assert encode_properties({"b": "2", "a": "1"}) == '{"a": "1", "b": "2"}'
        assert encode_properties(None) == "{}"

    def test_decode_text(self):
        assert decode_properties('{"email": "a@b.org", "details": "FULL"}') == {
            "email": "a@b.org",
            "details": "FULL",
        }

    def test_decode_already_parsed_mapping(self):
        """asyncpg may return JSONB as a dict"""
        assert decode_properties({"retries": 3, "note": None}) == {"retries": "3", "note": ""}

    def test_decode_empty(self):
        assert decode_properties(None) == {}
        assert decode_properties("") == {}

    def test_decode_rejects_malformed_json(self):
        with pytest.raises(InvalidPropertiesError):
            decode_properties("{not json")

    def test_decode_rejects_non_object(self):
        with pytest.raises(InvalidPropertiesError):
            decode_properties('["email"]')

    def test_invalid_properties_error_is_value_error(self):
        assert issubclass(InvalidPropertiesError, ValueError)


class TestHandlerProperties:
    def test_add_property_chains(self):
        hp = HandlerProperties(handler_name="email").add_property("email", "Address").add_property("details", "Level")
        assert hp.keys == ["email", "details"]
        assert hp.description("email") == "Address"
        assert hp.description("missing") is None


class TestNextFireTime:
    def test_live_fires_again_immediately(self):
        assert next_fire_time(Frequency.LIVE, T0) == T0

    def test_hourly(self):
        assert next_fire_time(Frequency.HOURLY, T0) == T0 + timedelta(hours=1)

    def test_daily(self):
        assert next_fire_time(Frequency.DAILY, T0) == T0 + timedelta(days=1)

    def test_accepts_string_value(self):
        assert next_fire_time("DAILY", T0) == T0 + timedelta(days=1)

    def test_unknown_frequency_rejected(self):
        with pytest.raises(ValueError):
            next_fire_time("WEEKLY", T0)
